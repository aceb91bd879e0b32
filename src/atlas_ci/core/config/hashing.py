# src/atlas_ci/core/config/hashing.py
"""
Hashing canônico de estruturas declarativas do Atlas CI.

O hash representa a identidade estrutural de:
    - a configuração efetiva do engine
    - o documento de pipeline bruto (antes da resolução)

Ambos são registrados no Manifest de cada run para auditoria.

Política de hashing (v1):
    - Serialização JSON canônica (chaves ordenadas, separadores compactos)
    - Codificação UTF-8
    - SHA-256 hexadecimal (64 caracteres)
"""

import hashlib
import json
from typing import Any, Dict


def compute_config_hash(config: Dict[str, Any]) -> str:
    """
    Gera um hash determinístico de um dicionário declarativo.

    Configurações estruturalmente equivalentes produzem o mesmo hash,
    independentemente da ordem original das chaves. Valores não
    serializáveis em JSON (ex.: datas vindas de YAML) são convertidos
    para texto.

    Raises:
        TypeError: Se o objeto fornecido não for um dicionário.
    """

    if not isinstance(config, dict):
        raise TypeError(
            f"Config para hashing deve ser dict, recebido: {type(config).__name__}"
        )

    canonical_json = json.dumps(
        config,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )

    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
