# src/atlas_ci/core/pipeline/types.py
"""
Tipos canônicos do pipeline do Atlas CI.

Este módulo define as estruturas e enums fundamentais que padronizam
a comunicação entre Scheduler, Executor, Aggregator e as camadas de
rastreabilidade.

Os tipos aqui definidos representam:
    - estados de jobs, stages e do pipeline
    - causas de falha (conjunto fechado, usado pela política de retry)
    - registros imutáveis de tentativas de execução
    - resultados consolidados por job, por stage e por run

Princípios fundamentais:
    - Tipos são estáveis e serializáveis
    - Valores textuais dos enums são canônicos (persistidos no Manifest)
    - Nenhuma lógica de execução vive neste módulo

Invariantes:
    - Registros de execução são imutáveis (frozen)
    - Um JobRun acumula registros por tentativa, nunca os substitui
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class FailureCause(str, Enum):
    """
    Causas canônicas de falha de uma tentativa de job.

    O conjunto é fechado: a política de retry de um job só pode
    referenciar estes valores (mais o curinga `always`, ver `RetryWhen`).

    Causas definidas:
        - SCRIPT_FAILURE: uma linha de script retornou código != 0
        - RUNNER_SYSTEM_FAILURE: nenhum ambiente disponível / falha do runner
        - UNKNOWN_FAILURE: exceção inesperada durante a tentativa
        - API_FAILURE: falha na API de provisionamento do ambiente
        - STUCK_OR_TIMEOUT_FAILURE: timeout do job expirou aguardando o lock de cache
        - JOB_EXECUTION_TIMEOUT: timeout de parede do job expirou
        - CANCELED: cancelamento ou preempção (nunca é re-tentado)
    """

    SCRIPT_FAILURE = "script_failure"
    RUNNER_SYSTEM_FAILURE = "runner_system_failure"
    UNKNOWN_FAILURE = "unknown_failure"
    API_FAILURE = "api_failure"
    STUCK_OR_TIMEOUT_FAILURE = "stuck_or_timeout_failure"
    JOB_EXECUTION_TIMEOUT = "job_execution_timeout"
    CANCELED = "canceled"


# Valor aceito em `retry.when` que cobre todas as causas re-tentáveis.
RETRY_WHEN_ALWAYS = "always"

# Causas que podem aparecer em `retry.when` (CANCELED nunca é re-tentável).
RETRYABLE_CAUSES = frozenset(c for c in FailureCause if c is not FailureCause.CANCELED)


class JobStatus(str, Enum):
    """
    Estados terminais de uma tentativa ou de um job.

    Estados definidos:
        - SUCCESS: before_script e script terminaram com código 0
        - FAILED: falha terminal (script, runner, api, desconhecida)
        - TIMED_OUT: timeout de parede do job expirou
        - CANCELED: cancelamento do pipeline ou preempção
        - SKIPPED: job nunca despachado (stage anterior interrompeu o pipeline)

    SKIPPED nunca aparece em um ExecutionRecord, apenas em JobRun.
    """

    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELED = "canceled"
    SKIPPED = "skipped"


class StageStatus(str, Enum):
    """
    Máquina de estados de um stage.

    PENDING → RUNNING → {SUCCEEDED, FAILED, SUCCEEDED_WITH_ALLOWED_FAILURES, CANCELED}

    SKIPPED é atribuído a stages que nunca iniciaram porque um stage
    anterior interrompeu o pipeline.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUCCEEDED_WITH_ALLOWED_FAILURES = "succeeded_with_allowed_failures"
    CANCELED = "canceled"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self not in (StageStatus.PENDING, StageStatus.RUNNING)


class PipelineStatus(str, Enum):
    """Status agregado de um run de pipeline."""

    SUCCEEDED = "succeeded"
    SUCCEEDED_WITH_ALLOWED_FAILURES = "succeeded_with_allowed_failures"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(frozen=True)
class PipelineIdentity:
    """
    Identidade de um run: projeto, ref e id do pipeline.

    Usada para injetar variáveis de identidade (CI_PROJECT_NAME,
    CI_COMMIT_REF_NAME, ...), para compor chaves de cache e para
    preempção de runs antigos do mesmo ref.
    """

    project: str
    ref: str
    pipeline_id: str
    commit_depth: int = 0


@dataclass(frozen=True)
class ExecutionRecord:
    """
    Registro imutável de uma tentativa de execução de um job.

    Campos:
        - job / stage: identidade do job
        - attempt: número da tentativa (começa em 1)
        - status: estado terminal da tentativa
        - started_at / finished_at: timestamps UTC
        - exit_code: código da linha que encerrou o script (se houver)
        - failure_cause: causa classificada (None em caso de sucesso)
        - output: saída capturada das linhas executadas
        - error: ErrorPayload serializado (None em caso de sucesso)
        - runner: nome do runner que forneceu o ambiente
        - cache_location: local de cache exposto ao job
    """

    job: str
    stage: str
    attempt: int
    status: JobStatus
    started_at: datetime
    finished_at: datetime
    exit_code: Optional[int] = None
    failure_cause: Optional[FailureCause] = None
    output: str = ""
    error: Optional[Dict[str, Any]] = None
    runner: Optional[str] = None
    cache_location: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "stage": self.stage,
            "attempt": self.attempt,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "exit_code": self.exit_code,
            "failure_cause": self.failure_cause.value if self.failure_cause else None,
            "output": self.output,
            "error": self.error,
            "runner": self.runner,
            "cache_location": self.cache_location,
        }


@dataclass(frozen=True)
class JobRun:
    """
    Resultado consolidado de um job dentro de um run.

    `records` contém uma entrada por tentativa, na ordem de execução.
    O status do job é o status do último registro, ou SKIPPED quando
    o job nunca foi despachado.
    """

    job: str
    stage: str
    allow_failure: bool = False
    records: Tuple[ExecutionRecord, ...] = field(default_factory=tuple)
    allowed_exit_codes: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def status(self) -> JobStatus:
        if not self.records:
            return JobStatus.SKIPPED
        return self.records[-1].status

    @property
    def retry_count(self) -> int:
        return max(0, len(self.records) - 1)

    @property
    def duration_seconds(self) -> float:
        return sum(r.duration_seconds for r in self.records)

    @property
    def failure_allowed(self) -> bool:
        """True quando o job falhou, mas a falha é permitida pela política."""
        if self.status not in (JobStatus.FAILED, JobStatus.TIMED_OUT):
            return False
        if not self.allow_failure:
            return False
        if not self.allowed_exit_codes:
            return True
        return self.records[-1].exit_code in self.allowed_exit_codes


@dataclass(frozen=True)
class StageRun:
    """Resultado de um stage: status terminal e jobs na ordem de declaração."""

    name: str
    ordinal: int
    status: StageStatus
    jobs: Tuple[JobRun, ...] = field(default_factory=tuple)

    def job(self, name: str) -> JobRun:
        for j in self.jobs:
            if j.job == name:
                return j
        raise KeyError(name)


@dataclass(frozen=True)
class PipelineRun:
    """Resultado completo de um run de pipeline."""

    run_id: str
    identity: PipelineIdentity
    status: PipelineStatus
    stages: Tuple[StageRun, ...]
    started_at: datetime
    finished_at: datetime

    def stage(self, name: str) -> StageRun:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)

    def job(self, name: str) -> JobRun:
        for s in self.stages:
            for j in s.jobs:
                if j.job == name:
                    return j
        raise KeyError(name)
