# src/atlas_ci/core/document/fragments.py
"""
Merge de fragments em jobs (template + override).

Política de merge (v1):
    - Merge raso, chave a chave: o valor do override substitui o da base
    - Sequências (linhas de script, tags) são substituídas inteiras,
      nunca concatenadas
    - Exceção explícita: chaves listadas na diretiva `append: [chave, ...]`
      do override são concatenadas (base primeiro)
    - `variables` é mesclado por nome de variável
    - As diretivas `extends` e `append` nunca aparecem no resultado

Princípios fundamentais:
    - O merge é puramente funcional: fragments e jobs não são mutados
    - Referências repetidas em `extends` são consideradas uma única vez,
      portanto aplicar o mesmo fragment duas vezes equivale a aplicá-lo uma vez
    - Ciclos de `extends` são erro estrutural fatal
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import FragmentCycleError, InvalidJobDefinitionError, UnknownFragmentError
from .model import Fragment


DIRECTIVE_KEYS = frozenset({"extends", "append"})
MAPPING_MERGE_KEYS = frozenset({"variables"})


def as_name_list(raw: Any, *, owner: str, key: str) -> List[str]:
    """Normaliza `extends`/`append` (string ou lista) preservando ordem e sem repetições."""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or not all(isinstance(x, str) for x in raw):
        raise InvalidJobDefinitionError(f"{owner}: {key} must be a string or list of strings")
    seen = set()
    out: List[str] = []
    for name in raw:
        if name not in seen:
            seen.add(name)
            out.append(name)
    return out


def merge_fragment(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Mescla `override` (job ou fragment filho) sobre `base` (fragment).

    Args:
        base: definição parcial que serve de template.
        override: definição local; seus valores vencem.

    Returns:
        Novo dicionário com o resultado do merge.
    """
    result: Dict[str, Any] = {k: v for k, v in base.items() if k not in DIRECTIVE_KEYS}
    append_keys = set(as_name_list(override.get("append"), owner="merge", key="append"))

    for key, value in override.items():
        if key in DIRECTIVE_KEYS:
            continue
        current = result.get(key)

        if key in append_keys and isinstance(current, list) and isinstance(value, list):
            result[key] = list(current) + list(value)
        elif key in MAPPING_MERGE_KEYS and isinstance(current, Mapping) and isinstance(value, Mapping):
            merged = dict(current)
            merged.update(value)
            result[key] = merged
        else:
            result[key] = value

    return result


def expand_extends(
    name: str,
    body: Mapping[str, Any],
    fragments: Mapping[str, Fragment],
    *,
    implicit: Sequence[Mapping[str, Any]] = (),
) -> Dict[str, Any]:
    """
    Resolve a cadeia de `extends` de um job e devolve a definição mesclada.

    A ordem de aplicação é: templates implícitos (ex.: seção `default`),
    depois cada fragment de `extends` na ordem declarada (os posteriores
    vencem), e por fim as chaves locais do job. Os templates implícitos
    são a base da cadeia, portanto `append` do job concatena sobre eles
    quando nenhum fragment de `extends` substitui a chave.

    Raises:
        UnknownFragmentError: `extends` referencia fragment inexistente.
        FragmentCycleError: a cadeia de `extends` volta a um nome já visitado.
    """
    base: Dict[str, Any] = {}
    for template in implicit:
        base = merge_fragment(base, template)
    return _resolve(name, body, fragments, stack=(), base=base)


def _resolve(
    name: str,
    body: Mapping[str, Any],
    fragments: Mapping[str, Fragment],
    *,
    stack: Tuple[str, ...],
    base: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    if name in stack:
        cycle = " -> ".join(stack[stack.index(name):] + (name,))
        raise FragmentCycleError(f"cyclic fragment reference: {cycle}")

    merged: Dict[str, Any] = dict(base or {})
    for ref in as_name_list(body.get("extends"), owner=name, key="extends"):
        fragment = fragments.get(ref)
        if fragment is None:
            raise UnknownFragmentError(f"'{name}' extends unknown fragment '{ref}'")
        parent = _resolve(ref, fragment.body, fragments, stack=stack + (name,))
        merged = merge_fragment(merged, parent)

    return merge_fragment(merged, body)
