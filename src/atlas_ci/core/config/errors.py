# src/atlas_ci/core/config/errors.py
"""
Exceções canônicas da camada de configuração do engine.

As exceções aqui definidas representam violações estruturais da
configuração do Atlas CI (arquivos de defaults/overrides e valores
de settings), e não falhas de documento de pipeline ou de jobs.

Invariantes:
    - Todas as exceções de configuração herdam de `ConfigError`
    - Nenhuma exceção representa erro de execução de job
"""


class ConfigError(Exception):
    """
    Exceção base para erros relacionados à configuração do engine.

    Permite captura genérica de erros de configuração e distinção clara
    entre falhas de configuração e falhas de documento/execução.
    """


class DefaultsNotFoundError(ConfigError):
    """
    Arquivo de configuração base (defaults) não encontrado.

    Decisões arquiteturais:
        - Quando um caminho de defaults é informado, ele é obrigatório
        - Não tenta inferir ou criar defaults automaticamente
    """


class UnsupportedConfigFormatError(ConfigError):
    """
    Formato do arquivo de configuração não suportado.

    Formatos suportados (v1):
        - YAML (.yaml, .yml)
        - JSON (.json)
    """


class InvalidConfigRootTypeError(ConfigError):
    """Conteúdo raiz da configuração não é um dicionário."""


class ConfigTypeConflictError(ConfigError):
    """
    Conflito de tipos durante o deep-merge.

    Exemplo de conflito:
        - base:     {"engine": {"max_parallelism": 4}}
        - override: {"engine": "fast"}

    Nenhum merge parcial é produzido em caso de conflito.
    """


class InvalidSettingError(ConfigError):
    """
    Valor de setting fora do domínio aceito.

    Exemplos:
        - engine.max_parallelism < 1
        - runner sem nome ou com slots < 1
        - timeout negativo
    """
