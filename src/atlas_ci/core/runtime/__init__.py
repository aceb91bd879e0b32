# src/atlas_ci/core/runtime/__init__.py
"""
Colaboradores externos do Atlas CI: protocolos e implementações locais.
"""

from .local import LocalShellEnvironment, LocalShellRunner
from .pool import RunnerPool
from .protocols import CacheStore, CommandResult, EnvironmentHandle, EnvironmentProvider, SourceControl
from .scm import GitSourceControl, SourceControlError, StaticSourceControl

__all__ = [
    "CacheStore",
    "CommandResult",
    "EnvironmentHandle",
    "EnvironmentProvider",
    "SourceControl",
    "LocalShellEnvironment",
    "LocalShellRunner",
    "RunnerPool",
    "GitSourceControl",
    "SourceControlError",
    "StaticSourceControl",
]
