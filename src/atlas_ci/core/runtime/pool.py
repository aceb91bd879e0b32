# src/atlas_ci/core/runtime/pool.py
"""
Pool de runners locais (`EnvironmentProvider`).

`acquire` seleciona os runners cujas tags cobrem as tags do job e
percorre-os até obter um slot livre, esperando na condição de cada
runner por no máximo `poll_interval` segundos entre as voltas.

Falhas:
    - nenhum runner possui as tags pedidas → EnvironmentUnavailableError imediato
    - nenhum slot liberado até `timeout`   → EnvironmentUnavailableError
    - token cancelado durante a espera     → JobCanceledError
"""

from __future__ import annotations

import time
from typing import Iterable, List, Optional, Sequence

from atlas_ci.core.config.settings import EngineSettings
from atlas_ci.core.exceptions import EnvironmentUnavailableError, JobCanceledError

from .local import LocalShellEnvironment, LocalShellRunner


class RunnerPool:
    def __init__(self, runners: Iterable[LocalShellRunner], *, poll_interval: float = 0.05):
        self.runners: List[LocalShellRunner] = list(runners)
        self.poll_interval = poll_interval

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "RunnerPool":
        return cls(
            [LocalShellRunner(r) for r in settings.runners],
            poll_interval=settings.poll_interval_seconds,
        )

    def acquire(
        self,
        image: Optional[str],
        tags: Sequence[str],
        *,
        timeout: float,
        token,
    ) -> LocalShellEnvironment:
        candidates = [r for r in self.runners if r.matches(tags)]
        if not candidates:
            raise EnvironmentUnavailableError(
                message="Nenhum runner atende as tags do job",
                details={"tags": sorted(tags), "runners": [r.name for r in self.runners]},
                hint="Declare em `runners` um runner com todas as tags exigidas.",
            )

        deadline = time.monotonic() + timeout
        while True:
            if token is not None and token.is_cancelled:
                raise JobCanceledError(message="Cancelado aguardando ambiente", details={"reason": token.reason})
            for runner in candidates:
                env = runner.try_acquire(image, poll_interval=self.poll_interval)
                if env is not None:
                    return env
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise EnvironmentUnavailableError(
                    message="Nenhum ambiente disponível dentro da espera máxima",
                    details={
                        "tags": sorted(tags),
                        "timeout_seconds": timeout,
                        "runners": [r.name for r in candidates],
                    },
                    hint="Aumente `slots` dos runners ou `engine.environment_wait_seconds`.",
                )
            slice_ = min(self.poll_interval, remaining) / len(candidates)
            for runner in candidates:
                runner.wait_for_slot(slice_)
