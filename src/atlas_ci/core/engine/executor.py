# src/atlas_ci/core/engine/executor.py
"""
Executor de jobs.

Executa um único `ResolvedJob` até um desfecho terminal, aplicando a
política de retry. Cada tentativa percorre as etapas:

    (a) adquirir um ambiente compatível com image/tags
    (b) injetar variáveis (+ CI_JOB_ATTEMPT + variável de cache)
    (c) sob o lock da chave de cache, executar before_script e script
        linha a linha, abortando na primeira saída != 0
    (d) executar after_script (não altera o status; ignorado se cancelado)
    (e) classificar o desfecho e liberar o ambiente

Classificação:
    - sucesso                      → SUCCESS
    - linha com saída != 0         → FAILED / script_failure
    - sem ambiente na espera       → FAILED / runner_system_failure
    - erro da API de ambiente      → FAILED / api_failure
    - timeout de parede do job     → TIMED_OUT / job_execution_timeout
    - cancelamento ou preempção    → CANCELED (nunca re-tentado)
    - exceção inesperada           → FAILED / unknown_failure

Invariantes:
    - Um registro por tentativa, anexado em ordem, nunca substituído
    - Com `retry.max = R` há no máximo R+1 registros
    - O ambiente adquirido é sempre liberado, inclusive em término anormal
    - Um job cujo token já está cancelado gera um registro CANCELED sem
      adquirir ambiente nem lock de cache

Limites explícitos:
    - Não decide status de stage (responsabilidade do aggregator)
    - Não conhece outros jobs do stage
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from atlas_ci.core.cache.manager import CacheManager
from atlas_ci.core.cache.store import CacheKey
from atlas_ci.core.config.settings import EngineSettings
from atlas_ci.core.errors import (
    ENVIRONMENT_API_ERROR,
    ENVIRONMENT_UNAVAILABLE,
    ErrorPayload,
    engine_execution_error,
    job_canceled,
    job_stuck,
    job_timed_out,
    script_execution_error,
)
from atlas_ci.core.exceptions import (
    AtlasCIException,
    EnvironmentApiError,
    EnvironmentUnavailableError,
    JobCanceledError,
    JobStuckError,
    JobTimedOutError,
    ScriptExecutionError,
)
from atlas_ci.core.pipeline.context import RunContext
from atlas_ci.core.pipeline.types import ExecutionRecord, FailureCause, JobRun, JobStatus
from atlas_ci.core.runtime.protocols import EnvironmentHandle, EnvironmentProvider

from .cancellation import CancellationToken
from .resolver import ResolvedJob


AttemptCallback = Callable[[ExecutionRecord], None]

_ERROR_TYPES = {
    EnvironmentUnavailableError: ENVIRONMENT_UNAVAILABLE,
    EnvironmentApiError: ENVIRONMENT_API_ERROR,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Attempt:
    """Estado mutável de uma tentativa em andamento (local à thread do job)."""

    def __init__(self, job: ResolvedJob, number: int):
        self.job = job
        self.number = number
        self.started_at = _now()
        self.output: List[str] = []
        self.exit_code: Optional[int] = None
        self.runner: Optional[str] = None
        self.cache_location: Optional[str] = None

    def record(
        self,
        status: JobStatus,
        *,
        cause: Optional[FailureCause] = None,
        error: Optional[ErrorPayload] = None,
    ) -> ExecutionRecord:
        return ExecutionRecord(
            job=self.job.name,
            stage=self.job.stage,
            attempt=self.number,
            status=status,
            started_at=self.started_at,
            finished_at=_now(),
            exit_code=self.exit_code,
            failure_cause=cause,
            output="".join(self.output),
            error=error.to_dict() if error else None,
            runner=self.runner,
            cache_location=self.cache_location,
        )


class JobExecutor:
    """Executa jobs resolvidos contra um EnvironmentProvider e um CacheManager."""

    def __init__(
        self,
        *,
        provider: EnvironmentProvider,
        cache: CacheManager,
        settings: Optional[EngineSettings] = None,
    ):
        self.provider = provider
        self.cache = cache
        self.settings = settings or EngineSettings()

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    def run(
        self,
        job: ResolvedJob,
        ctx: RunContext,
        token: CancellationToken,
        *,
        on_attempt: Optional[AttemptCallback] = None,
    ) -> JobRun:
        """
        Executa `job` até um desfecho terminal.

        Args:
            job: job resolvido (variáveis expandidas).
            ctx: contexto do run (eventos, warnings).
            token: token de cancelamento do job (filho do token do run).
            on_attempt: chamado após cada tentativa, na thread do job.

        Returns:
            JobRun com um ExecutionRecord por tentativa.
        """
        records: List[ExecutionRecord] = []
        attempt = 0
        while True:
            attempt += 1
            record = self._attempt(job, ctx, token, attempt)
            records.append(record)
            if on_attempt is not None:
                on_attempt(record)

            if record.status is JobStatus.SUCCESS or record.failure_cause is None:
                break
            if token.is_cancelled or not job.retry.allows(record.failure_cause, attempt):
                break
            ctx.log(
                job=job.name,
                level="INFO",
                message="retrying job",
                attempt=attempt + 1,
                cause=record.failure_cause.value,
            )

        return JobRun(
            job=job.name,
            stage=job.stage,
            allow_failure=job.allow_failure,
            records=tuple(records),
            allowed_exit_codes=job.allowed_exit_codes,
        )

    # ------------------------------------------------------------------
    # Tentativa
    # ------------------------------------------------------------------

    def _attempt(self, job: ResolvedJob, ctx: RunContext, token: CancellationToken, number: int) -> ExecutionRecord:
        state = _Attempt(job, number)
        handle: Optional[EnvironmentHandle] = None
        env: Dict[str, str] = dict(job.variables)
        env["CI_JOB_ATTEMPT"] = str(number)

        try:
            try:
                if token.is_cancelled:
                    raise JobCanceledError(
                        message="Job cancelado antes do despacho", details={"reason": token.reason}
                    )
                handle = self.provider.acquire(
                    job.image,
                    job.tags,
                    timeout=self.settings.environment_wait_seconds,
                    token=token,
                )
                state.runner = getattr(handle, "runner", None)
                ctx.log(job=job.name, level="INFO", message="environment acquired", attempt=number, runner=state.runner)
                self._run_script_phase(handle, job, ctx, token, env, state)
                state.exit_code = 0
                record = state.record(JobStatus.SUCCESS)
            except Exception as e:
                record = self._classify(e, job, token, state)

            if handle is not None and job.after_script and not token.is_cancelled:
                self._run_after_script(handle, job, ctx, env, token)
        finally:
            if handle is not None:
                handle.release()

        self._log_record(ctx, record)
        return record

    def _run_script_phase(
        self,
        handle: EnvironmentHandle,
        job: ResolvedJob,
        ctx: RunContext,
        token: CancellationToken,
        env: Dict[str, str],
        state: _Attempt,
    ) -> None:
        key = CacheKey(
            project=env.get("CI_PROJECT_NAME", ""),
            ref=env.get("CI_COMMIT_REF_NAME", ""),
            job=job.name,
        )
        timeout = job.timeout_seconds or self.settings.default_job_timeout_seconds
        deadline = None if timeout is None else time.monotonic() + timeout
        with self.cache.checkout(key, ctx, token, timeout=timeout) as location:
            state.cache_location = location
            env[self.settings.cache_variable] = location
            self._run_lines(handle, job.before_script + job.script, env, deadline, timeout, token, state)

    def _classify(
        self,
        exc: Exception,
        job: ResolvedJob,
        token: CancellationToken,
        state: _Attempt,
    ) -> ExecutionRecord:
        """Converte a exceção de uma tentativa em registro terminal."""
        if isinstance(exc, JobCanceledError):
            return state.record(
                JobStatus.CANCELED,
                cause=FailureCause.CANCELED,
                error=job_canceled(job=job.name, reason=token.reason or exc.message),
            )
        if isinstance(exc, JobTimedOutError):
            payload = job_stuck if isinstance(exc, JobStuckError) else job_timed_out
            return state.record(
                JobStatus.TIMED_OUT,
                cause=exc.cause,
                error=payload(job=job.name, timeout_seconds=exc.details.get("timeout_seconds")),
            )
        if isinstance(exc, ScriptExecutionError):
            state.exit_code = exc.exit_code
            return state.record(
                JobStatus.FAILED,
                cause=FailureCause.SCRIPT_FAILURE,
                error=script_execution_error(
                    job=job.name, command=exc.details.get("command", ""), exit_code=exc.exit_code
                ),
            )
        if isinstance(exc, AtlasCIException):
            return state.record(JobStatus.FAILED, cause=exc.cause, error=self._exception_to_error(exc))
        return state.record(
            JobStatus.FAILED,
            cause=FailureCause.UNKNOWN_FAILURE,
            error=engine_execution_error(job=job.name, exc_type=type(exc).__name__, exc_message=str(exc)),
        )

    def _log_record(self, ctx: RunContext, record: ExecutionRecord) -> None:
        level = "INFO" if record.status is JobStatus.SUCCESS else "ERROR"
        ctx.log(
            job=record.job,
            level=level,
            message=f"attempt {record.status.value}",
            attempt=record.attempt,
            cause=record.failure_cause.value if record.failure_cause else None,
            exit_code=record.exit_code,
        )

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------

    def _run_lines(
        self,
        handle: EnvironmentHandle,
        lines,
        env: Dict[str, str],
        deadline: Optional[float],
        timeout: Optional[float],
        token: CancellationToken,
        state: _Attempt,
    ) -> None:
        for line in lines:
            if token.is_cancelled:
                raise JobCanceledError(message="Job cancelado", details={"reason": token.reason})
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                raise JobTimedOutError(message="Timeout do job expirou", details={"timeout_seconds": timeout})

            result = handle.run(line, env=env, timeout=remaining, token=token)
            state.output.append(f"$ {line}\n{result.output}")

            if result.canceled:
                raise JobCanceledError(message="Job cancelado", details={"reason": token.reason, "command": line})
            if result.timed_out:
                raise JobTimedOutError(
                    message="Timeout do job expirou",
                    details={"timeout_seconds": timeout, "command": line},
                )
            if result.exit_code != 0:
                raise ScriptExecutionError(
                    message=f"command exited with {result.exit_code}",
                    details={"command": line},
                    exit_code=result.exit_code,
                )

    def _run_after_script(
        self,
        handle: EnvironmentHandle,
        job: ResolvedJob,
        ctx: RunContext,
        env: Dict[str, str],
        token: CancellationToken,
    ) -> None:
        deadline = time.monotonic() + self.settings.after_script_timeout_seconds
        for line in job.after_script:
            remaining = deadline - time.monotonic()
            if remaining <= 0 or token.is_cancelled:
                ctx.add_warning(job=job.name, message="after_script interrupted")
                return
            try:
                result = handle.run(line, env=env, timeout=remaining, token=token)
            except Exception as e:
                ctx.add_warning(job=job.name, message=f"after_script raised {type(e).__name__}: {e}")
                return
            if result.exit_code != 0 or result.timed_out or result.canceled:
                ctx.add_warning(
                    job=job.name,
                    message=f"after_script command failed with exit code {result.exit_code}: {line}",
                )
                return

    def _exception_to_error(self, exc: AtlasCIException) -> ErrorPayload:
        return ErrorPayload(
            type=_ERROR_TYPES.get(type(exc), exc.__class__.__name__),
            message=exc.message,
            details=dict(exc.details),
            hint=exc.hint,
        )
