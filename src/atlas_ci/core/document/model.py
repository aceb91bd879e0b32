# src/atlas_ci/core/document/model.py
"""
Modelo canônico do documento de pipeline.

Este módulo define as estruturas imutáveis produzidas pelo loader a
partir de um documento declarativo:

    - Stage          → fase ordenada do pipeline (nome + ordinal)
    - Fragment       → definição parcial de job, reutilizável via `extends`
    - RetryPolicy    → máximo de tentativas extras e causas re-tentáveis
    - JobSpec        → job com fragments já mesclados (variáveis ainda não expandidas)
    - PipelineDocument

Invariantes:
    - Ordinais de stages são estritamente crescentes (0, 1, 2, ...)
    - Todo JobSpec referencia um stage existente
    - Nenhuma estrutura é mutada após o load
    - `variables` são expostas como mappings somente leitura
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional, Tuple

from atlas_ci.core.pipeline.types import FailureCause, RETRY_WHEN_ALWAYS, RETRYABLE_CAUSES

from .errors import InvalidJobDefinitionError


EMPTY_MAPPING: Mapping[str, str] = MappingProxyType({})

_VALID_WHEN = frozenset({RETRY_WHEN_ALWAYS} | {c.value for c in RETRYABLE_CAUSES})

_DURATION_TOKEN = re.compile(
    r"(\d+(?:\.\d+)?)\s*"
    r"(h|hr|hrs|hours?|m|min|mins|minutes?|s|sec|secs|seconds?)?(?![a-z])",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Stage:
    name: str
    ordinal: int


@dataclass(frozen=True)
class Fragment:
    """Fragment nomeado (chave iniciada por `.`); corpo somente leitura."""

    name: str
    body: Mapping[str, Any]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Política de retry de um job.

    `max` é o número máximo de tentativas extras: um job com `max=R`
    produz no máximo R+1 execution records. `when` é um subconjunto do
    conjunto fechado de causas (ou `always`).

    Cancelamento nunca é re-tentado, mesmo com `always`.
    """

    max: int = 0
    when: FrozenSet[str] = frozenset({RETRY_WHEN_ALWAYS})

    def allows(self, cause: FailureCause, attempts_done: int) -> bool:
        if cause is FailureCause.CANCELED:
            return False
        if attempts_done > self.max:
            return False
        return RETRY_WHEN_ALWAYS in self.when or cause.value in self.when

    @classmethod
    def from_raw(cls, raw: Any, *, job: str) -> "RetryPolicy":
        """
        Interpreta a chave `retry` de um job.

        Formas aceitas:
            - ausente / null → sem retry
            - inteiro N      → {max: N, when: [always]}
            - mapping        → {max: N, when: causa | [causas]}
        """
        if raw is None:
            return cls()
        if isinstance(raw, bool):
            raise InvalidJobDefinitionError(f"job '{job}': retry must be an integer or mapping")
        if isinstance(raw, int):
            return cls._build(raw, [RETRY_WHEN_ALWAYS], job=job)
        if isinstance(raw, Mapping):
            when = raw.get("when", [RETRY_WHEN_ALWAYS])
            if isinstance(when, str):
                when = [when]
            if not isinstance(when, list):
                raise InvalidJobDefinitionError(f"job '{job}': retry.when must be a string or list")
            return cls._build(raw.get("max", 0), when, job=job)
        raise InvalidJobDefinitionError(f"job '{job}': retry must be an integer or mapping")

    @classmethod
    def _build(cls, max_: Any, when: list, *, job: str) -> "RetryPolicy":
        if isinstance(max_, bool) or not isinstance(max_, int) or max_ < 0:
            raise InvalidJobDefinitionError(f"job '{job}': retry.max must be an integer >= 0")
        unknown = sorted(str(w) for w in when if w not in _VALID_WHEN)
        if unknown:
            raise InvalidJobDefinitionError(
                f"job '{job}': unknown retry causes {unknown}; expected one of {sorted(_VALID_WHEN)}"
            )
        return cls(max=max_, when=frozenset(str(w) for w in when))


@dataclass(frozen=True)
class JobSpec:
    """
    Job declarado, com fragments já mesclados.

    Variáveis e `image` ainda contêm referências `$VAR`; a expansão é
    responsabilidade do resolver (`core.engine.resolver`).
    """

    name: str
    stage: str
    script: Tuple[str, ...]
    image: Optional[str] = None
    before_script: Tuple[str, ...] = ()
    after_script: Tuple[str, ...] = ()
    variables: Mapping[str, str] = field(default_factory=lambda: EMPTY_MAPPING)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    interruptible: bool = False
    tags: Tuple[str, ...] = ()
    allow_failure: bool = False
    allowed_exit_codes: Tuple[int, ...] = ()
    timeout_seconds: Optional[float] = None
    extends: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PipelineDocument:
    """Documento de pipeline carregado e estruturalmente válido."""

    stages: Tuple[Stage, ...]
    variables: Mapping[str, str]
    fragments: Mapping[str, Fragment]
    jobs: Tuple[JobSpec, ...]
    source_hash: str = ""

    def stage(self, name: str) -> Stage:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)

    def job(self, name: str) -> JobSpec:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    def jobs_in(self, stage: str) -> Tuple[JobSpec, ...]:
        return tuple(j for j in self.jobs if j.stage == stage)


# ---------------------------------------------------------------------------
# Normalização de valores
# ---------------------------------------------------------------------------

def variable_value(name: str, value: Any) -> str:
    """Converte um valor escalar de variável para string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, Mapping) and "value" in value:
        # forma estendida: {value: ..., description: ...}
        return variable_value(name, value["value"])
    raise InvalidJobDefinitionError(
        f"variable '{name}' must be a scalar, got {type(value).__name__}"
    )


def freeze_variables(raw: Any, *, owner: str) -> Mapping[str, str]:
    if raw is None:
        return EMPTY_MAPPING
    if not isinstance(raw, Mapping):
        raise InvalidJobDefinitionError(f"{owner}: variables must be a mapping")
    return MappingProxyType({str(k): variable_value(str(k), v) for k, v in raw.items()})


def flatten_script(raw: Any, *, job: str, key: str) -> Tuple[str, ...]:
    """
    Normaliza uma sequência de script.

    Aceita string única ou lista; listas aninhadas (produzidas por aliases
    YAML como `- *shared-lines`) são achatadas preservando a ordem.
    """
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if not isinstance(raw, list):
        raise InvalidJobDefinitionError(f"job '{job}': {key} must be a string or list")
    lines = []
    for item in raw:
        if isinstance(item, list):
            lines.extend(flatten_script(item, job=job, key=key))
        elif isinstance(item, (str, int, float)) and not isinstance(item, bool):
            lines.append(str(item))
        else:
            raise InvalidJobDefinitionError(f"job '{job}': {key} lines must be strings")
    return tuple(lines)


def parse_duration(raw: Any, *, job: str) -> Optional[float]:
    """
    Converte `timeout` para segundos.

    Aceita número (segundos) ou texto como "1h 30m", "90s", "2 hours".
    Números sem unidade dentro de texto são minutos, como em "10".
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise InvalidJobDefinitionError(f"job '{job}': invalid timeout {raw!r}")
    if isinstance(raw, (int, float)):
        if raw <= 0:
            raise InvalidJobDefinitionError(f"job '{job}': timeout must be positive")
        return float(raw)
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidJobDefinitionError(f"job '{job}': invalid timeout {raw!r}")

    text = raw.strip()
    total = 0.0
    matched = False
    for match in _DURATION_TOKEN.finditer(text):
        amount = float(match.group(1))
        unit = (match.group(2) or "m").lower()
        if unit.startswith("h"):
            total += amount * 3600
        elif unit.startswith("m"):
            total += amount * 60
        else:
            total += amount
        matched = True
    leftover = re.sub(r"[\s,]|and", "", _DURATION_TOKEN.sub("", text))
    if not matched or leftover or total <= 0:
        raise InvalidJobDefinitionError(f"job '{job}': invalid timeout {raw!r}")
    return total
