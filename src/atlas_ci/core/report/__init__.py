# src/atlas_ci/core/report/__init__.py
"""Agregação de resultados de runs do Atlas CI."""

from .aggregator import (
    JobSummary,
    PipelineSummary,
    exit_code_for,
    pipeline_status,
    stage_status,
    summarize,
    summarize_job,
)

__all__ = [
    "JobSummary",
    "PipelineSummary",
    "exit_code_for",
    "pipeline_status",
    "stage_status",
    "summarize",
    "summarize_job",
]
