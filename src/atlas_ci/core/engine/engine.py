# src/atlas_ci/core/engine/engine.py
"""
Scheduler de execução do Atlas CI.

O Engine percorre os stages de um `PipelinePlan` em ordem estrita. Cada
stage despacha todos os seus jobs em um `ThreadPoolExecutor` limitado
por `engine.max_parallelism` e só termina quando todos os jobs têm
registro terminal (barreira). O status do stage decide se o pipeline
avança:

    - SUCCEEDED / SUCCEEDED_WITH_ALLOWED_FAILURES → próximo stage
    - FAILED   → interrompe, exceto com `engine.continue_on_failure`
    - CANCELED → sempre interrompe

Stages não iniciados terminam como SKIPPED, com jobs SKIPPED sem registros.

Cancelamento:
    - `cancel()` cancela o token do run; jobs em execução terminam o
      comando e liberam ambiente e lock de cache, jobs na fila geram
      registro CANCELED sem adquirir nada
    - `preempt()` (chamado pelo RunRegistry quando um run mais novo do
      mesmo ref é registrado) cancela apenas os jobs interruptíveis,
      em execução ou ainda não despachados

Rastreabilidade:
    - Eventos estruturados em `RunContext.log`
    - Manifest opcional: pipeline/stage/job/tentativa, com chamadas
      serializadas por um lock do Engine (workers registram em paralelo)

Invariantes:
    - Nenhum job do stage N+1 inicia antes de o stage N ser terminal
    - Jobs preservam a ordem de declaração no resultado
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Dict, List, Optional

from atlas_ci.core.config.settings import EngineSettings
from atlas_ci.core.errors import engine_execution_error
from atlas_ci.core.pipeline.context import RunContext
from atlas_ci.core.pipeline.types import (
    ExecutionRecord,
    FailureCause,
    JobRun,
    JobStatus,
    PipelineRun,
    StageRun,
    StageStatus,
)
from atlas_ci.core.report.aggregator import exit_code_for, pipeline_status, stage_status
from atlas_ci.core.traceability import manifest as mf

from .cancellation import CancellationToken
from .executor import JobExecutor
from .preemption import RunRegistry
from .resolver import PipelinePlan, PlannedStage, ResolvedJob


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Engine:
    """Scheduler canônico do Atlas CI (barreira por stage + pool de workers)."""

    def __init__(
        self,
        *,
        plan: PipelinePlan,
        ctx: RunContext,
        executor: JobExecutor,
        settings: Optional[EngineSettings] = None,
        registry: Optional[RunRegistry] = None,
        manifest: Optional[mf.AtlasCIManifest] = None,
    ):
        self.plan = plan
        self.ctx = ctx
        self.executor = executor
        self.settings = settings or executor.settings
        self.registry = registry
        self.manifest = manifest

        self.token = CancellationToken()
        self._job_tokens: Dict[str, CancellationToken] = {
            job.name: self.token.child() for job in plan.jobs
        }
        self._manifest_lock = threading.Lock()
        self._stage_status: Dict[str, StageStatus] = {s.name: StageStatus.PENDING for s in plan.stages}

    @property
    def run_id(self) -> str:
        return self.ctx.run_id

    def stage_status(self, name: str) -> StageStatus:
        return self._stage_status[name]

    # ------------------------------------------------------------------
    # Cancelamento
    # ------------------------------------------------------------------

    def cancel(self, reason: str = "pipeline canceled") -> None:
        self.ctx.log(job=None, level="WARNING", message="pipeline cancel requested", reason=reason)
        self.token.cancel(reason)

    def preempt(self, reason: str) -> None:
        interruptible = [j.name for j in self.plan.jobs if j.interruptible]
        self.ctx.log(job=None, level="WARNING", message="pipeline preempted", reason=reason, jobs=interruptible)
        for name in interruptible:
            self._job_tokens[name].cancel(reason)

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def _record(self, fn, **kwargs) -> None:
        if self.manifest is None:
            return
        with self._manifest_lock:
            fn(self.manifest, ts=_now(), **kwargs)

    # ------------------------------------------------------------------
    # Execução
    # ------------------------------------------------------------------

    def run(self) -> PipelineRun:
        identity = self.plan.identity
        started_at = _now()
        if self.registry is not None:
            preempted = self.registry.register(identity.project, identity.ref, self)
            if preempted:
                self.ctx.log(job=None, level="INFO", message="preempted older runs", runs=preempted)

        self._record(mf.pipeline_started, stages=[s.name for s in self.plan.stages])
        self.ctx.log(job=None, level="INFO", message="pipeline started", stages=len(self.plan.stages))

        stage_runs: List[StageRun] = []
        halted = False
        try:
            for stage in self.plan.stages:
                if halted:
                    stage_runs.append(self._skip_stage(stage))
                    continue
                stage_run = self._run_stage(stage)
                stage_runs.append(stage_run)
                if stage_run.status is StageStatus.CANCELED:
                    halted = True
                elif stage_run.status is StageStatus.FAILED and not self.settings.continue_on_failure:
                    halted = True
        finally:
            if self.registry is not None:
                self.registry.unregister(identity.project, identity.ref, self)

        status = pipeline_status(stage_runs)
        self._record(mf.pipeline_finished, status=status.value, exit_code=exit_code_for(status))
        self.ctx.log(job=None, level="INFO", message="pipeline finished", status=status.value)

        return PipelineRun(
            run_id=self.run_id,
            identity=identity,
            status=status,
            stages=tuple(stage_runs),
            started_at=started_at,
            finished_at=_now(),
        )

    def _skip_stage(self, stage: PlannedStage) -> StageRun:
        self._stage_status[stage.name] = StageStatus.SKIPPED
        jobs = tuple(
            JobRun(job=j.name, stage=j.stage, allow_failure=j.allow_failure, allowed_exit_codes=j.allowed_exit_codes)
            for j in stage.jobs
        )
        self._record(mf.stage_finished, stage=stage.name, status=StageStatus.SKIPPED.value)
        self.ctx.log(job=None, level="INFO", message="stage skipped", stage=stage.name)
        return StageRun(name=stage.name, ordinal=stage.ordinal, status=StageStatus.SKIPPED, jobs=jobs)

    def _run_stage(self, stage: PlannedStage) -> StageRun:
        self._stage_status[stage.name] = StageStatus.RUNNING
        self._record(mf.stage_started, stage=stage.name)
        self.ctx.log(job=None, level="INFO", message="stage started", stage=stage.name, jobs=len(stage.jobs))

        job_runs: List[JobRun] = []
        if stage.jobs:
            workers = min(self.settings.max_parallelism, len(stage.jobs))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"atlas-ci-{stage.name}") as pool:
                futures = [pool.submit(self._run_job, job) for job in stage.jobs]
                # barreira: resultado coletado na ordem de declaração
                for job, future in zip(stage.jobs, futures):
                    try:
                        job_runs.append(future.result())
                    except Exception as e:
                        job_runs.append(self._crashed_job(job, e))

        status = stage_status(job_runs)
        self._stage_status[stage.name] = status
        self._record(mf.stage_finished, stage=stage.name, status=status.value)
        self.ctx.log(job=None, level="INFO", message="stage finished", stage=stage.name, status=status.value)
        return StageRun(name=stage.name, ordinal=stage.ordinal, status=status, jobs=tuple(job_runs))

    def _run_job(self, job: ResolvedJob) -> JobRun:
        self._record(mf.job_started, job=job.name, stage=job.stage)

        def on_attempt(record: ExecutionRecord) -> None:
            self._record(mf.job_attempt_finished, job=job.name, stage=job.stage, record=record.to_dict())

        run = self.executor.run(job, self.ctx, self._job_tokens[job.name], on_attempt=on_attempt)
        self._record(
            mf.job_finished,
            job=job.name,
            stage=job.stage,
            status=run.status.value,
            retry_count=run.retry_count,
            failure_allowed=run.failure_allowed,
            warnings=self.ctx.warnings.get(job.name, []),
        )
        return run

    def _crashed_job(self, job: ResolvedJob, exc: Exception) -> JobRun:
        """JobRun FAILED para uma falha fora do Executor (ex.: callback de manifest)."""
        now = _now()
        self.ctx.log(job=job.name, level="ERROR", message="job worker crashed", exc_type=type(exc).__name__)
        record = ExecutionRecord(
            job=job.name,
            stage=job.stage,
            attempt=1,
            status=JobStatus.FAILED,
            started_at=now,
            finished_at=now,
            failure_cause=FailureCause.UNKNOWN_FAILURE,
            error=engine_execution_error(job=job.name, exc_type=type(exc).__name__, exc_message=str(exc)).to_dict(),
        )
        return JobRun(
            job=job.name,
            stage=job.stage,
            allow_failure=job.allow_failure,
            records=(record,),
            allowed_exit_codes=job.allowed_exit_codes,
        )
