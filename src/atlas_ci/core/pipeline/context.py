# src/atlas_ci/core/pipeline/context.py
"""
Contexto de execução compartilhado de um run.

Este módulo define o `RunContext`, a estrutura canônica passada ao
Scheduler, ao Executor e ao Cache Manager durante um run do pipeline.

O RunContext concentra:
    - identidade da execução (run_id, created_at, PipelineIdentity)
    - configuração resolvida do engine
    - log estruturado de eventos
    - warnings não fatais agrupados por job

Diferente de um contexto de execução sequencial, aqui vários jobs
escrevem eventos ao mesmo tempo; o acesso às coleções é serializado
por um lock interno.

Invariantes:
    - Logs sempre incluem `run_id` e `job`
    - Warnings são agrupados por job
    - `events` preserva a ordem de chegada
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .types import PipelineIdentity


@dataclass
class RunContext:
    """
    Contexto de execução de um run do pipeline.

    Campos canônicos:
    - run_id: identificador único da execução
    - created_at: timestamp UTC de criação do contexto
    - identity: projeto/ref/pipeline do run
    - config: configuração efetiva do engine (defaults + local deep-merge)
    - meta: metadados livres (ex.: caminho do documento, runner local)
    """

    run_id: str
    created_at: datetime
    identity: PipelineIdentity
    config: Dict[str, Any] = field(default_factory=dict)
    meta: Dict[str, Any] = field(default_factory=dict)

    events: List[Dict[str, Any]] = field(default_factory=list, init=False)
    warnings: Dict[str, List[str]] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    # -----------------------------
    # Logging & warnings
    # -----------------------------
    def log(self, *, job: Optional[str], level: str, message: str, **extra: Any) -> None:
        event = {
            "run_id": self.run_id,
            "job": job,
            "level": level,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        event.update(extra)
        with self._lock:
            self.events.append(event)

    def add_warning(self, *, job: str, message: str) -> None:
        with self._lock:
            self.warnings.setdefault(job, []).append(message)
        self.log(job=job, level="WARNING", message=message)

    def events_for(self, job: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(e) for e in self.events if e.get("job") == job]
