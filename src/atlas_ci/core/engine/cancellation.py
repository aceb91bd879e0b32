# src/atlas_ci/core/engine/cancellation.py
"""
Token de cancelamento cooperativo.

O Scheduler cria um token por run e um token filho por job. Cancelar o
token do run cancela todos os filhos; cancelar um filho (preempção de
um job interruptível) não afeta o pai nem os irmãos.

Colaboradores que bloqueiam (aquisição de ambiente, comandos de shell)
recebem o token e consultam `is_cancelled` / `wait(timeout)` em seus
pontos de suspensão. Não há sinalização externa ao processo.

Invariantes:
    - Um token cancelado nunca volta ao estado ativo
    - O primeiro motivo informado é preservado
    - Filho criado a partir de pai já cancelado nasce cancelado
"""

from __future__ import annotations

import threading
from typing import List, Optional


class CancellationToken:
    """Sinal de cancelamento compartilhado, com hierarquia pai → filhos."""

    def __init__(self, *, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None
        self._children: List["CancellationToken"] = []
        self.parent = parent

    def child(self) -> "CancellationToken":
        token = CancellationToken(parent=self)
        with self._lock:
            self._children.append(token)
            reason = self._reason if self._event.is_set() else None
        if reason is not None:
            token.cancel(reason)
        return token

    def cancel(self, reason: str = "canceled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
        for c in children:
            c.cancel(reason)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Bloqueia até o cancelamento ou até `timeout`; retorna `is_cancelled`."""
        return self._event.wait(timeout)
