# src/atlas_ci/core/config/__init__.py
"""
Camada de configuração do engine do Atlas CI.

Responsabilidades do pacote:
    - Carregamento de arquivos de configuração (defaults + overrides locais)
    - Resolução de configuração final via deep-merge determinístico
    - Validação de domínio dos settings do engine
    - Geração de hash canônico para rastreabilidade

Princípios fundamentais:
    - Configuração do engine é separada do documento de pipeline
    - Overrides são sempre explícitos
    - A mesma entrada sempre produz a mesma configuração final
"""

from .errors import (
    ConfigError,
    ConfigTypeConflictError,
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    InvalidSettingError,
    UnsupportedConfigFormatError,
)
from .hashing import compute_config_hash
from .loader import load_config
from .merge import deep_merge
from .settings import DEFAULT_CONFIG, EngineSettings, RunnerSettings

__all__ = [
    "ConfigError",
    "ConfigTypeConflictError",
    "DefaultsNotFoundError",
    "InvalidConfigRootTypeError",
    "InvalidSettingError",
    "UnsupportedConfigFormatError",
    "compute_config_hash",
    "load_config",
    "deep_merge",
    "DEFAULT_CONFIG",
    "EngineSettings",
    "RunnerSettings",
]
