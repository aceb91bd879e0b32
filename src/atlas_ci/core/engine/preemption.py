# src/atlas_ci/core/engine/preemption.py
"""
Registro de runs ativos para preempção por ref.

Quando um run novo é registrado para o mesmo (projeto, ref), os runs
anteriores ainda ativos são preemptados: o registro chama
`preempt(reason)` de cada um, e cada run cancela apenas seus jobs
interruptíveis (em execução ou ainda não despachados).

O registro é compartilhado entre Engines do mesmo processo; o acesso ao
dicionário de runs é serializado por um lock próprio, e a chamada de
`preempt` ocorre fora dele.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Protocol, Tuple


class Preemptible(Protocol):
    run_id: str

    def preempt(self, reason: str) -> None: ...


class RunRegistry:
    """Runs ativos agrupados por (projeto, ref), em ordem de registro."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: Dict[Tuple[str, str], List[Preemptible]] = {}

    def register(self, project: str, ref: str, run: Preemptible) -> List[str]:
        """
        Registra `run` e preempta os runs anteriores do mesmo ref.

        Returns:
            run_ids dos runs preemptados.
        """
        key = (project, ref)
        with self._lock:
            older = list(self._active.get(key, []))
            self._active[key] = [run]
        for previous in older:
            previous.preempt(f"superseded by pipeline {run.run_id} on {ref}")
        return [p.run_id for p in older]

    def unregister(self, project: str, ref: str, run: Preemptible) -> None:
        key = (project, ref)
        with self._lock:
            runs = [r for r in self._active.get(key, []) if r is not run]
            if runs:
                self._active[key] = runs
            else:
                self._active.pop(key, None)

    def active(self, project: str, ref: str) -> List[str]:
        with self._lock:
            return [r.run_id for r in self._active.get((project, ref), [])]
