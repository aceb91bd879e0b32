# src/atlas_ci/core/config/settings.py
"""
Settings tipados do engine.

A configuração carregada (`load_config`) é um dicionário puro; este
módulo a combina com `DEFAULT_CONFIG` via `deep_merge` e valida o
domínio dos valores, produzindo estruturas imutáveis consumidas pelo
Scheduler, Executor, Cache Manager e pelo pool de runners.

Chaves reconhecidas (v1):

    engine:
      max_parallelism: 4                 # jobs simultâneos por stage
      continue_on_failure: false         # stage failed não interrompe os seguintes
      environment_wait_seconds: 30       # espera máxima por um ambiente
      default_job_timeout_seconds: null  # timeout de parede padrão (null = sem limite)
      after_script_timeout_seconds: 300
      poll_interval_seconds: 0.05
    cache:
      root: .atlas-ci/cache
      variable: CI_CACHE_DIR             # variável que expõe o local de cache ao job
    runners:
      - name: local
        tags: []
        slots: 4
        workdir: .atlas-ci/builds
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .errors import InvalidSettingError
from .merge import deep_merge


DEFAULT_CONFIG: Dict[str, Any] = {
    "engine": {
        "max_parallelism": 4,
        "continue_on_failure": False,
        "environment_wait_seconds": 30,
        "default_job_timeout_seconds": None,
        "after_script_timeout_seconds": 300,
        "poll_interval_seconds": 0.05,
    },
    "cache": {
        "root": ".atlas-ci/cache",
        "variable": "CI_CACHE_DIR",
    },
    "runners": [
        {
            "name": "local",
            "tags": [],
            "slots": 4,
            "workdir": ".atlas-ci/builds",
        }
    ],
}


def _positive_number(section: str, key: str, value: Any, *, allow_none: bool = False) -> Optional[float]:
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise InvalidSettingError(f"{section}.{key} deve ser número >= 0, recebido: {value!r}")
    return float(value)


@dataclass(frozen=True)
class RunnerSettings:
    """Declaração de um runner local: nome, tags atendidas e número de slots."""

    name: str
    tags: FrozenSet[str] = field(default_factory=frozenset)
    slots: int = 1
    workdir: str = ".atlas-ci/builds"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunnerSettings":
        if not isinstance(data, dict):
            raise InvalidSettingError(f"runner deve ser mapping, recebido: {type(data).__name__}")
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise InvalidSettingError("runner.name deve ser string não vazia")
        slots = data.get("slots", 1)
        if isinstance(slots, bool) or not isinstance(slots, int) or slots < 1:
            raise InvalidSettingError(f"runner '{name}': slots deve ser inteiro >= 1")
        tags = data.get("tags") or []
        if not isinstance(tags, list):
            raise InvalidSettingError(f"runner '{name}': tags deve ser lista")
        return cls(
            name=name,
            tags=frozenset(str(t) for t in tags),
            slots=slots,
            workdir=str(data.get("workdir") or ".atlas-ci/builds"),
        )


@dataclass(frozen=True)
class EngineSettings:
    """Settings efetivos e validados de um run."""

    max_parallelism: int = 4
    continue_on_failure: bool = False
    environment_wait_seconds: float = 30.0
    default_job_timeout_seconds: Optional[float] = None
    after_script_timeout_seconds: float = 300.0
    poll_interval_seconds: float = 0.05
    cache_root: str = ".atlas-ci/cache"
    cache_variable: str = "CI_CACHE_DIR"
    runners: Tuple[RunnerSettings, ...] = ()

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "EngineSettings":
        """
        Resolve settings a partir de uma configuração carregada.

        A configuração é sempre combinada com `DEFAULT_CONFIG`, de modo que
        um arquivo local precisa declarar apenas o que difere.

        Raises:
            ConfigTypeConflictError: conflito de tipo contra os defaults.
            InvalidSettingError: valor fora do domínio aceito.
        """
        effective = deep_merge(DEFAULT_CONFIG, config or {})
        engine = effective.get("engine") or {}
        cache = effective.get("cache") or {}

        max_parallelism = engine.get("max_parallelism")
        if isinstance(max_parallelism, bool) or not isinstance(max_parallelism, int) or max_parallelism < 1:
            raise InvalidSettingError(
                f"engine.max_parallelism deve ser inteiro >= 1, recebido: {max_parallelism!r}"
            )

        runners = tuple(RunnerSettings.from_dict(r) for r in effective.get("runners") or [])
        names = [r.name for r in runners]
        if len(set(names)) != len(names):
            raise InvalidSettingError(f"nomes de runner duplicados: {names}")

        variable = cache.get("variable")
        if not isinstance(variable, str) or not variable.strip():
            raise InvalidSettingError("cache.variable deve ser string não vazia")

        return cls(
            max_parallelism=max_parallelism,
            continue_on_failure=bool(engine.get("continue_on_failure")),
            environment_wait_seconds=_positive_number(
                "engine", "environment_wait_seconds", engine.get("environment_wait_seconds")
            ),
            default_job_timeout_seconds=_positive_number(
                "engine",
                "default_job_timeout_seconds",
                engine.get("default_job_timeout_seconds"),
                allow_none=True,
            ),
            after_script_timeout_seconds=_positive_number(
                "engine", "after_script_timeout_seconds", engine.get("after_script_timeout_seconds")
            ),
            poll_interval_seconds=_positive_number(
                "engine", "poll_interval_seconds", engine.get("poll_interval_seconds")
            ),
            cache_root=str(cache.get("root")),
            cache_variable=variable,
            runners=runners,
        )
