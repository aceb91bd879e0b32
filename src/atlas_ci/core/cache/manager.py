# src/atlas_ci/core/cache/manager.py
"""
Cache/Artifact Manager.

Associa a chave (projeto, ref, job) a um local persistente e o expõe ao
Executor durante a fase de script, garantindo no máximo um escritor por
chave em cada instante.

Decisões arquiteturais:
    - Um `threading.Lock` por chave; o lock de registro protege apenas o
      dicionário de locks, nunca a fase de script
    - A espera pelo lock da chave consulta o token de cancelamento a cada
      `poll_interval` segundos; um job cancelado na fila desiste com
      `JobCanceledError` sem esperar o portador atual; com `timeout`, a
      espera expira com `JobStuckError` (subclasse de `JobTimedOutError`)
    - Leitura inválida (`CacheReadError` ou `OSError` do store) nunca falha
      o job: o manager recorre a um local vazio sob `<fallback_root>` (ou,
      se este também for inutilizável, sob o diretório temporário do
      sistema) e registra um warning
    - `put` é chamado em toda saída não interrompida (sucesso ou falha de
      script); cancelamento e timeout não gravam o índice
    - O lock da chave é sempre liberado, inclusive em término anormal

Invariantes:
    - Duas tentativas com a mesma chave nunca executam a fase de script
      simultaneamente
    - Chaves distintas nunca esperam umas pelas outras
"""

from __future__ import annotations

import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterator, Optional

from atlas_ci.core.exceptions import CacheReadError, JobCanceledError, JobStuckError, JobTimedOutError
from atlas_ci.core.pipeline.context import RunContext
from atlas_ci.core.runtime.protocols import CacheStore

from .store import CacheKey

if TYPE_CHECKING:  # pragma: no cover
    from atlas_ci.core.engine.cancellation import CancellationToken


class CacheManager:
    """Serializa o acesso por chave e aplica a recuperação local de leituras."""

    INTERRUPTIONS = (JobCanceledError, JobTimedOutError)

    def __init__(self, store: CacheStore, *, fallback_root: str, poll_interval: float = 0.05):
        self.store = store
        self.fallback_root = Path(fallback_root)
        self.poll_interval = poll_interval
        self._guard = threading.Lock()
        self._locks: Dict[CacheKey, threading.Lock] = {}

    def _lock_for(self, key: CacheKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _acquire(
        self,
        lock: threading.Lock,
        key: CacheKey,
        token: Optional["CancellationToken"],
        timeout: Optional[float],
    ) -> None:
        if token is None and timeout is None:
            lock.acquire()
            return
        deadline = None if timeout is None else time.monotonic() + timeout
        while not lock.acquire(timeout=self.poll_interval):
            if token is not None and token.is_cancelled:
                raise JobCanceledError(
                    message="Cancelado aguardando o lock de cache",
                    details={"key": key.to_dict(), "reason": token.reason},
                )
            if deadline is not None and time.monotonic() >= deadline:
                raise JobStuckError(
                    message="Timeout do job expirou aguardando o lock de cache",
                    details={"key": key.to_dict(), "timeout_seconds": timeout},
                )
        if token is not None and token.is_cancelled:
            lock.release()
            raise JobCanceledError(
                message="Cancelado aguardando o lock de cache",
                details={"key": key.to_dict(), "reason": token.reason},
            )

    def _fallback_location(self, key: CacheKey) -> str:
        prefix = f"{key.digest[:12]}-"
        try:
            self.fallback_root.mkdir(parents=True, exist_ok=True)
            return tempfile.mkdtemp(prefix=prefix, dir=str(self.fallback_root))
        except OSError:
            return tempfile.mkdtemp(prefix=f"atlas-ci-{prefix}")

    def _resolve(self, key: CacheKey, ctx: RunContext) -> str:
        try:
            return self.store.get(key)
        except (CacheReadError, OSError) as e:
            reason = e.message if isinstance(e, CacheReadError) else str(e)
            location = self._fallback_location(key)
            ctx.add_warning(
                job=key.job,
                message=f"cache read failed ({reason}); using empty location {location}",
            )
            return location

    @contextmanager
    def checkout(
        self,
        key: CacheKey,
        ctx: RunContext,
        token: Optional["CancellationToken"] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Iterator[str]:
        """
        Adquire o lock da chave e expõe o local de cache.

        Raises:
            JobCanceledError: `token` cancelado enquanto aguardava o lock.
            JobStuckError: `timeout` segundos se passaram sem obter o lock.

        Yields:
            Local de cache (diretório ou identificador do store).
        """
        lock = self._lock_for(key)
        self._acquire(lock, key, token, timeout)
        try:
            location = self._resolve(key, ctx)
            ctx.log(job=key.job, level="DEBUG", message="cache checked out", location=location)
            interrupted = False
            try:
                yield location
            except self.INTERRUPTIONS:
                interrupted = True
                raise
            finally:
                if not interrupted:
                    self._store(key, location, ctx)
        finally:
            lock.release()

    def _store(self, key: CacheKey, location: str, ctx: RunContext) -> None:
        try:
            self.store.put(key, location)
        except OSError as e:
            ctx.add_warning(job=key.job, message=f"cache write failed: {e}")
