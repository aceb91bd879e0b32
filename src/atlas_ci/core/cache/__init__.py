# src/atlas_ci/core/cache/__init__.py
"""
Cache/Artifact Manager do Atlas CI.

API pública:
    - CacheKey            → (projeto, ref, job)
    - CacheManager        → lock por chave + fallback de leitura
    - DirectoryCacheStore → store em disco com índice JSON
    - MemoryCacheStore    → store em memória
"""

from .manager import CacheManager
from .store import CacheKey, DirectoryCacheStore, MemoryCacheStore

__all__ = ["CacheKey", "CacheManager", "DirectoryCacheStore", "MemoryCacheStore"]
