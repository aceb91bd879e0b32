"""
Atlas CI: Canonical Error Structures (v1)

Este módulo define o padrão canônico de erros do Atlas CI.
Erros registrados em execution records são artefatos de domínio e fazem
parte do contrato operacional do engine, devendo ser:

- explícitos
- serializáveis
- rastreáveis
- acionáveis
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


# ---------------------------------------------------------------------------
# Payload canônico
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ErrorPayload:
    """
    Payload canônico de erro do Atlas CI.

    Campos:
    - type: código estável do erro (não é texto livre)
    - message: mensagem curta, humana e objetiva
    - details: dados estruturados relevantes para diagnóstico
    - hint: ação sugerida ao operador (onde corrigir)
    """

    type: str
    message: str
    details: Dict[str, Any]
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Retorna representação serializável do erro."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Catálogo canônico de tipos de erro (v1)
# ---------------------------------------------------------------------------

# Execução de jobs
ENVIRONMENT_UNAVAILABLE = "ENVIRONMENT_UNAVAILABLE"
ENVIRONMENT_API_ERROR = "ENVIRONMENT_API_ERROR"
SCRIPT_EXECUTION_ERROR = "SCRIPT_EXECUTION_ERROR"
JOB_TIMED_OUT = "JOB_TIMED_OUT"
JOB_STUCK = "JOB_STUCK"
JOB_CANCELED = "JOB_CANCELED"

# Engine
ENGINE_EXECUTION_ERROR = "ENGINE_EXECUTION_ERROR"


# ---------------------------------------------------------------------------
# Helpers de fábrica
# ---------------------------------------------------------------------------

def script_execution_error(
    *,
    job: str,
    command: str,
    exit_code: int,
    hint: str = "Inspecione a saída capturada do job; a linha indicada retornou código diferente de zero.",
) -> ErrorPayload:
    return ErrorPayload(
        type=SCRIPT_EXECUTION_ERROR,
        message="Script do job terminou com código diferente de zero",
        details={"job": job, "command": command, "exit_code": exit_code},
        hint=hint,
    )


def job_timed_out(
    *,
    job: str,
    timeout_seconds: float,
    hint: str = "Aumente `timeout` do job ou investigue o passo que não termina.",
) -> ErrorPayload:
    return ErrorPayload(
        type=JOB_TIMED_OUT,
        message="Job excedeu o tempo máximo de execução",
        details={"job": job, "timeout_seconds": timeout_seconds},
        hint=hint,
    )


def job_stuck(
    *,
    job: str,
    timeout_seconds: float,
    hint: str = "Outro job com a mesma chave de cache ocupou o lock até o timeout; verifique jobs presos ou aumente `timeout`.",
) -> ErrorPayload:
    return ErrorPayload(
        type=JOB_STUCK,
        message="Job preso aguardando recursos até o timeout",
        details={"job": job, "timeout_seconds": timeout_seconds},
        hint=hint,
    )


def job_canceled(*, job: str, reason: Optional[str] = None) -> ErrorPayload:
    return ErrorPayload(
        type=JOB_CANCELED,
        message="Job cancelado",
        details={"job": job, "reason": reason},
        hint=None,
    )


def engine_execution_error(
    *,
    job: Optional[str] = None,
    exc_type: Optional[str] = None,
    exc_message: Optional[str] = None,
    hint: str = "Verifique os eventos do run para diagnosticar a falha. Nenhum fallback é aplicado automaticamente.",
) -> ErrorPayload:
    return ErrorPayload(
        type=ENGINE_EXECUTION_ERROR,
        message="Falha inesperada durante a execução do job",
        details={
            "job": job,
            "exc_type": exc_type,
            "exc_message": exc_message,
        },
        hint=hint,
    )
