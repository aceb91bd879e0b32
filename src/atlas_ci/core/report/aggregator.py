# src/atlas_ci/core/report/aggregator.py
"""
Result Aggregator.

Deriva o status de cada stage a partir dos jobs e o status do pipeline a
partir dos stages, e expõe um resumo somente leitura para colaboradores
externos de notificação e relatório.

Regras de stage (precedência decrescente):
    1. FAILED   → algum job FAILED/TIMED_OUT cuja falha não é permitida
    2. CANCELED → algum job CANCELED
    3. SUCCEEDED_WITH_ALLOWED_FAILURES → alguma falha permitida
    4. SUCCEEDED

Regras de pipeline (precedência decrescente):
    FAILED > CANCELED > SUCCEEDED_WITH_ALLOWED_FAILURES > SUCCEEDED

Stages SKIPPED não alteram o status do pipeline: eles só existem porque
um stage anterior já determinou FAILED ou CANCELED.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from atlas_ci.core.pipeline.types import (
    JobRun,
    JobStatus,
    PipelineRun,
    PipelineStatus,
    StageRun,
    StageStatus,
)


SUCCESS_STATUSES = frozenset({PipelineStatus.SUCCEEDED, PipelineStatus.SUCCEEDED_WITH_ALLOWED_FAILURES})


def stage_status(jobs: Iterable[JobRun]) -> StageStatus:
    jobs = list(jobs)
    if any(j.status in (JobStatus.FAILED, JobStatus.TIMED_OUT) and not j.failure_allowed for j in jobs):
        return StageStatus.FAILED
    if any(j.status is JobStatus.CANCELED for j in jobs):
        return StageStatus.CANCELED
    if any(j.failure_allowed for j in jobs):
        return StageStatus.SUCCEEDED_WITH_ALLOWED_FAILURES
    return StageStatus.SUCCEEDED


def pipeline_status(stages: Iterable[StageRun]) -> PipelineStatus:
    statuses = [s.status for s in stages]
    if StageStatus.FAILED in statuses:
        return PipelineStatus.FAILED
    if StageStatus.CANCELED in statuses:
        return PipelineStatus.CANCELED
    if StageStatus.SUCCEEDED_WITH_ALLOWED_FAILURES in statuses:
        return PipelineStatus.SUCCEEDED_WITH_ALLOWED_FAILURES
    return PipelineStatus.SUCCEEDED


def exit_code_for(status: PipelineStatus) -> int:
    return 0 if status in SUCCESS_STATUSES else 1


@dataclass(frozen=True)
class JobSummary:
    job: str
    stage: str
    status: JobStatus
    allow_failure: bool
    failure_allowed: bool
    duration_seconds: float
    retry_count: int
    attempts: int
    failure_cause: Optional[str] = None
    exit_code: Optional[int] = None
    output: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "stage": self.stage,
            "status": self.status.value,
            "allow_failure": self.allow_failure,
            "failure_allowed": self.failure_allowed,
            "duration_seconds": round(self.duration_seconds, 3),
            "retry_count": self.retry_count,
            "attempts": self.attempts,
            "failure_cause": self.failure_cause,
            "exit_code": self.exit_code,
            "output": self.output,
        }


@dataclass(frozen=True)
class PipelineSummary:
    """Resumo somente leitura de um run."""

    run_id: str
    project: str
    ref: str
    status: PipelineStatus
    stages: Tuple[Tuple[str, StageStatus], ...]
    jobs: Tuple[JobSummary, ...]
    duration_seconds: float

    @property
    def exit_code(self) -> int:
        return exit_code_for(self.status)

    def job(self, name: str) -> JobSummary:
        for j in self.jobs:
            if j.job == name:
                return j
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "project": self.project,
            "ref": self.ref,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration_seconds": round(self.duration_seconds, 3),
            "stages": [{"name": n, "status": s.value} for n, s in self.stages],
            "jobs": [j.to_dict() for j in self.jobs],
        }


def summarize_job(run: JobRun) -> JobSummary:
    last = run.records[-1] if run.records else None
    return JobSummary(
        job=run.job,
        stage=run.stage,
        status=run.status,
        allow_failure=run.allow_failure,
        failure_allowed=run.failure_allowed,
        duration_seconds=run.duration_seconds,
        retry_count=run.retry_count,
        attempts=len(run.records),
        failure_cause=last.failure_cause.value if last and last.failure_cause else None,
        exit_code=last.exit_code if last else None,
        output=last.output if last else "",
    )


def summarize(run: PipelineRun) -> PipelineSummary:
    return PipelineSummary(
        run_id=run.run_id,
        project=run.identity.project,
        ref=run.identity.ref,
        status=run.status,
        stages=tuple((s.name, s.status) for s in run.stages),
        jobs=tuple(summarize_job(j) for s in run.stages for j in s.jobs),
        duration_seconds=max(0.0, (run.finished_at - run.started_at).total_seconds()),
    )
