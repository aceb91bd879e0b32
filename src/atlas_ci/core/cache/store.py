# src/atlas_ci/core/cache/store.py
"""
Implementações de `CacheStore`.

- DirectoryCacheStore: um diretório por chave sob `root`, com um índice
  JSON por chave (`<root>/.index/<digest>.json`) registrando o local e o
  instante da última gravação.
- MemoryCacheStore: mapa em memória; útil em testes e execuções efêmeras.

Uma entrada de índice ilegível (JSON inválido, campos ausentes), que
aponta para um local inexistente, ou uma raiz de cache inutilizável
(arquivo comum, sem permissão de escrita) é `CacheReadError`. O manager
trata o erro localmente; o store apenas o sinaliza.
"""

from __future__ import annotations

import hashlib
import json
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from atlas_ci.core.exceptions import CacheReadError


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class CacheKey:
    project: str
    ref: str
    job: str

    @property
    def digest(self) -> str:
        raw = json.dumps([self.project, self.ref, self.job], ensure_ascii=False)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def as_path(self) -> Path:
        """Caminho relativo legível: `<project>/<ref>/<job>` com caracteres seguros."""
        parts = [_UNSAFE.sub("_", p).strip(".") or "_" for p in (self.project, self.ref, self.job)]
        return Path(*parts)

    def to_dict(self) -> Dict[str, str]:
        return {"project": self.project, "ref": self.ref, "job": self.job}


class DirectoryCacheStore:
    """CacheStore em disco, com um diretório e uma entrada de índice por chave."""

    def __init__(self, root: str):
        self.root = Path(root)
        self._index_dir = self.root / ".index"

    def _entry_path(self, key: CacheKey) -> Path:
        return self._index_dir / f"{key.digest}.json"

    def _default_location(self, key: CacheKey) -> Path:
        # digest curto evita colisão entre chaves que normalizam para o mesmo caminho
        return self.root / key.as_path().with_name(f"{key.as_path().name}-{key.digest[:8]}")

    def get(self, key: CacheKey) -> str:
        entry = self._entry_path(key)
        try:
            if not entry.exists():
                location = self._default_location(key)
                location.mkdir(parents=True, exist_ok=True)
                return str(location)
        except OSError as e:
            raise CacheReadError(
                message="Raiz de cache inutilizável",
                details={"key": key.to_dict(), "root": str(self.root), "reason": str(e)},
                hint="Verifique `cache.root`: deve ser um diretório gravável.",
            ) from e

        try:
            data = json.loads(entry.read_text(encoding="utf-8"))
            location = Path(data["location"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CacheReadError(
                message="Entrada de índice de cache ilegível",
                details={"key": key.to_dict(), "entry": str(entry), "reason": str(e)},
                hint="Remova a entrada de índice para reconstruir o cache.",
            ) from e

        try:
            usable = location.is_dir()
        except OSError:
            usable = False
        if not usable:
            raise CacheReadError(
                message="Local de cache registrado não existe",
                details={"key": key.to_dict(), "location": str(location)},
            )
        return str(location)

    def put(self, key: CacheKey, location: str) -> None:
        self._index_dir.mkdir(parents=True, exist_ok=True)
        entry = {
            "key": key.to_dict(),
            "location": str(location),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        tmp = self._entry_path(key).with_suffix(".tmp")
        tmp.write_text(json.dumps(entry, ensure_ascii=False, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._entry_path(key))


class MemoryCacheStore:
    """CacheStore em memória. Locais são strings opacas `memory://...`."""

    def __init__(self, *, corrupted: Optional[set] = None):
        self._lock = threading.Lock()
        self.entries: Dict[CacheKey, str] = {}
        self.corrupted = set(corrupted or ())
        self.puts = 0

    def get(self, key: CacheKey) -> str:
        if key in self.corrupted:
            raise CacheReadError(message="Entrada de cache corrompida", details={"key": key.to_dict()})
        with self._lock:
            return self.entries.get(key, f"memory://{key.as_path().as_posix()}")

    def put(self, key: CacheKey, location: str) -> None:
        with self._lock:
            self.entries[key] = location
            self.puts += 1
