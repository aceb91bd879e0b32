"""
Atlas CI: Canonical Exceptions (v1)

Este módulo define exceções tipadas de execução do Atlas CI.

Objetivo:
- Permitir que colaboradores (ambientes, cache) e o Executor levantem
  exceções semânticas tipadas
- Facilitar o mapeamento determinístico para ErrorPayload e FailureCause
- Evitar ValueError/RuntimeError genéricos em caminhos críticos

Regras:
- Exceções carregam apenas dados estruturados (serializáveis).
- Erros de documento e de resolução vivem em `core.document.errors`
  e `core.engine.variables` (são fatais antes do pipeline iniciar).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional

from atlas_ci.core.pipeline.types import FailureCause


@dataclass(eq=False)
class AtlasCIException(Exception):
    """Base class para exceções de execução do Atlas CI.

    Importante:
    - Sempre carregar dados estruturados em `details`
    - Mensagem deve ser curta e humana
    - `cause` é a causa de falha usada pela política de retry
    """

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None

    cause: ClassVar[FailureCause] = FailureCause.UNKNOWN_FAILURE

    def __str__(self) -> str:  # pragma: no cover
        return self.message


# ---------------------------------------------------------------------------
# Ambiente de execução
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class EnvironmentUnavailableError(AtlasCIException):
    """Nenhum runner compatível liberou capacidade dentro da espera máxima."""

    cause: ClassVar[FailureCause] = FailureCause.RUNNER_SYSTEM_FAILURE


@dataclass(eq=False)
class EnvironmentApiError(AtlasCIException):
    """A API de provisionamento respondeu com erro."""

    cause: ClassVar[FailureCause] = FailureCause.API_FAILURE


# ---------------------------------------------------------------------------
# Script
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class ScriptExecutionError(AtlasCIException):
    """Uma linha de before_script/script terminou com código != 0."""

    exit_code: int = 1

    cause: ClassVar[FailureCause] = FailureCause.SCRIPT_FAILURE


@dataclass(eq=False)
class JobTimedOutError(AtlasCIException):
    """O timeout de parede do job expirou durante a fase de script."""

    cause: ClassVar[FailureCause] = FailureCause.JOB_EXECUTION_TIMEOUT


@dataclass(eq=False)
class JobStuckError(JobTimedOutError):
    """O timeout do job expirou antes de obter um recurso exclusivo (lock de cache)."""

    cause: ClassVar[FailureCause] = FailureCause.STUCK_OR_TIMEOUT_FAILURE


@dataclass(eq=False)
class JobCanceledError(AtlasCIException):
    """O job recebeu sinal de cancelamento (pipeline cancelado ou preempção)."""

    cause: ClassVar[FailureCause] = FailureCause.CANCELED


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class CacheReadError(AtlasCIException):
    """Entrada de cache ilegível ou corrompida (recuperada localmente)."""
