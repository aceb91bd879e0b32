# src/atlas_ci/core/traceability/__init__.py
"""Rastreabilidade de runs do Atlas CI (Manifest v1)."""

from .manifest import (
    AtlasCIManifest,
    add_event,
    create_manifest,
    job_attempt_finished,
    job_finished,
    job_started,
    load_manifest,
    pipeline_finished,
    pipeline_started,
    save_manifest,
    stage_finished,
    stage_started,
)

__all__ = [
    "AtlasCIManifest",
    "add_event",
    "create_manifest",
    "job_attempt_finished",
    "job_finished",
    "job_started",
    "load_manifest",
    "pipeline_finished",
    "pipeline_started",
    "save_manifest",
    "stage_finished",
    "stage_started",
]
