# src/atlas_ci/core/config/merge.py
"""
Deep-merge canônico da configuração do engine.

Política de merge (v1):
    - dict → merge recursivo por chave
    - list → sobrescrita total (ex.: `runners` declarados localmente
      substituem a lista inteira dos defaults)
    - escalar → sobrescrita direta
    - conflito de tipos → erro estrutural explícito

Observação:
    Este merge é usado apenas para configuração do engine. O merge de
    fragments do documento de pipeline é raso e vive em
    `core.document.fragments`.
"""

from copy import deepcopy
from typing import Any, Dict, Tuple

from .errors import ConfigTypeConflictError


def _compatible(base_value: Any, override_value: Any) -> bool:
    # None nos defaults significa "sem valor" e aceita qualquer override;
    # int e float são intercambiáveis em settings numéricos.
    if base_value is None or override_value is None:
        return True
    numeric = (int, float)
    if (
        isinstance(base_value, numeric)
        and isinstance(override_value, numeric)
        and not isinstance(base_value, bool)
        and not isinstance(override_value, bool)
    ):
        return True
    return type(base_value) is type(override_value)


def deep_merge(
    base: Dict[str, Any],
    override: Dict[str, Any],
    _path: Tuple[str, ...] = (),
) -> Dict[str, Any]:
    """
    Realiza um deep-merge determinístico entre dois dicionários de configuração.

    Nenhum dos inputs é mutado; a estrutura retornada é sempre um novo
    dicionário. Chaves ausentes no override são preservadas da base.

    Args:
        base: Configuração base (ex.: DEFAULT_CONFIG ou arquivo de defaults).
        override: Overrides explícitos.

    Returns:
        Nova configuração resultante do deep-merge.

    Raises:
        ConfigTypeConflictError: Se ocorrer conflito de tipo entre base e override.
    """

    if not isinstance(base, dict) or not isinstance(override, dict):
        raise ConfigTypeConflictError(
            f"Deep-merge requer dicts no nível raiz, recebido: "
            f"{type(base).__name__} vs {type(override).__name__}"
        )

    result: Dict[str, Any] = deepcopy(base)

    for key, override_value in override.items():
        if key not in result:
            result[key] = deepcopy(override_value)
            continue

        base_value = result[key]
        path = _path + (str(key),)

        if isinstance(base_value, dict) and isinstance(override_value, dict):
            result[key] = deep_merge(base_value, override_value, path)
            continue

        if isinstance(base_value, list) and isinstance(override_value, list):
            result[key] = deepcopy(override_value)
            continue

        if not _compatible(base_value, override_value):
            raise ConfigTypeConflictError(
                f"Conflito de tipo na chave '{'.'.join(path)}': "
                f"{type(base_value).__name__} vs {type(override_value).__name__}"
            )

        result[key] = deepcopy(override_value)

    return result
