# src/atlas_ci/core/runtime/protocols.py
"""
Contratos dos colaboradores externos do engine.

O engine não implementa o runtime de containers, o armazenamento de
cache nem o sistema de controle de versão; ele os consome por meio dos
protocolos abaixo. A conformidade é estrutural (duck typing,
`@runtime_checkable`), sem herança obrigatória.

Colaboradores:
    - EnvironmentProvider / EnvironmentHandle → provisionamento de ambientes
    - CacheStore                              → localização persistente por chave
    - SourceControl                           → metadados de ref e commit

Decisões arquiteturais:
    - Operações bloqueantes recebem `timeout` e `token` explícitos
    - Falhas de provisionamento são exceções tipadas
      (`EnvironmentUnavailableError`, `EnvironmentApiError`)
    - O resultado de um comando é um valor (`CommandResult`), nunca exceção;
      a classificação é responsabilidade do Executor

Limites explícitos:
    - Não define políticas de retry
    - Não conhece jobs, stages ou o documento
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, Optional, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:  # pragma: no cover
    from atlas_ci.core.cache.store import CacheKey
    from atlas_ci.core.engine.cancellation import CancellationToken


@dataclass(frozen=True)
class CommandResult:
    """
    Resultado de um comando executado em um ambiente.

    `timed_out` e `canceled` indicam que o comando foi interrompido pelo
    ambiente; nesses casos `exit_code` reflete o sinal de término.
    """

    exit_code: int
    output: str = ""
    timed_out: bool = False
    canceled: bool = False


@runtime_checkable
class EnvironmentHandle(Protocol):
    """Ambiente isolado adquirido para uma tentativa de job."""

    runner: str

    def run(
        self,
        command: str,
        *,
        env: Mapping[str, str],
        timeout: Optional[float],
        token: "CancellationToken",
    ) -> CommandResult: ...

    def release(self) -> None: ...


@runtime_checkable
class EnvironmentProvider(Protocol):
    """
    Provisionador de ambientes.

    `acquire` bloqueia até um ambiente compatível com `image`/`tags` ficar
    disponível, até `timeout` segundos.

    Raises:
        EnvironmentUnavailableError: sem capacidade compatível na espera.
        EnvironmentApiError: falha da API de provisionamento.
        JobCanceledError: `token` cancelado durante a espera.
    """

    def acquire(
        self,
        image: Optional[str],
        tags: Sequence[str],
        *,
        timeout: float,
        token: "CancellationToken",
    ) -> EnvironmentHandle: ...


@runtime_checkable
class CacheStore(Protocol):
    """
    Armazenamento de locais de cache por chave (projeto, ref, job).

    `get` devolve o local associado à chave (criando um local vazio na
    primeira vez) ou levanta `CacheReadError` se a entrada estiver ilegível.
    `put` registra o local após o uso.
    """

    def get(self, key: "CacheKey") -> str: ...

    def put(self, key: "CacheKey", location: str) -> None: ...


@runtime_checkable
class SourceControl(Protocol):
    """Metadados de controle de versão usados na identidade do run."""

    def current_ref(self) -> str: ...

    def commit_depth(self) -> int: ...
