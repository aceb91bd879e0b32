# src/atlas_ci/core/pipeline/__init__.py
"""
Tipos e contexto de execução do pipeline do Atlas CI.

API pública:
    - RunContext       → contexto compartilhado de um run (eventos, warnings)
    - FailureCause     → causas canônicas de falha (conjunto fechado)
    - JobStatus / StageStatus / PipelineStatus
    - ExecutionRecord  → registro imutável de uma tentativa
    - JobRun / StageRun / PipelineRun
"""

from .context import RunContext
from .types import (
    ExecutionRecord,
    FailureCause,
    JobRun,
    JobStatus,
    PipelineIdentity,
    PipelineRun,
    PipelineStatus,
    StageRun,
    StageStatus,
)

__all__ = [
    "RunContext",
    "ExecutionRecord",
    "FailureCause",
    "JobRun",
    "JobStatus",
    "PipelineIdentity",
    "PipelineRun",
    "PipelineStatus",
    "StageRun",
    "StageStatus",
]
