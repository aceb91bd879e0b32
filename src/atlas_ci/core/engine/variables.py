# src/atlas_ci/core/engine/variables.py
"""
Camadas e expansão de variáveis.

Este módulo resolve o conjunto de variáveis visível por um job a partir
de camadas ordenadas por precedência crescente:

    identidade injetada pelo engine < `variables` globais < `variables` do job

Após o layering, cada valor tem suas referências `$NOME` e `${NOME}`
expandidas contra o próprio conjunto resultante. `$$` produz um `$`
literal; um `$` que não inicia um nome válido é mantido como está.

Decisões arquiteturais:
    - A expansão ocorre uma única vez, antes de qualquer job executar
    - Referência a variável inexistente é erro fatal (o pipeline não inicia)
    - Referências cíclicas são erro fatal, nunca expandidas parcialmente

Invariantes:
    - O resultado não contém referências pendentes
    - Camadas superiores sombreiam chaves idênticas das inferiores
    - As camadas de entrada não são mutadas

Limites explícitos:
    - Não expande linhas de script (o shell do ambiente faz isso em runtime)
    - Não lê o ambiente do processo do engine
"""

from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional, Sequence


_REFERENCE = re.compile(r"\$(?:\$|\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))")


class UnresolvedVariableError(ValueError):
    """
    Exceção levantada quando uma referência de variável não pode ser resolvida.

    Carrega o nome da variável ausente e o dono da referência (variável
    ou campo do job que a contém), para que o operador saiba onde corrigir.
    """

    def __init__(self, message: str, *, variable: str, owner: Optional[str] = None):
        super().__init__(message)
        self.variable = variable
        self.owner = owner


class VariableCycleError(UnresolvedVariableError):
    """Referências entre variáveis formam um ciclo."""


def layer_variables(layers: Sequence[Mapping[str, str]]) -> Dict[str, str]:
    """Combina camadas em ordem de precedência crescente (a última vence)."""
    merged: Dict[str, str] = {}
    for layer in layers:
        merged.update(layer)
    return merged


def expand_variables(raw: Mapping[str, str], *, owner: str = "pipeline") -> Dict[str, str]:
    """
    Expande todas as referências de um conjunto de variáveis já em camadas.

    Args:
        raw: nome → valor bruto (pode conter `$NOME` / `${NOME}`).
        owner: descrição do escopo, usada nas mensagens de erro.

    Returns:
        Novo dicionário nome → valor totalmente expandido.

    Raises:
        UnresolvedVariableError: referência a nome inexistente.
        VariableCycleError: ciclo de referências.
    """
    resolved: Dict[str, str] = {}

    def resolve(name: str, stack: List[str]) -> str:
        if name in resolved:
            return resolved[name]
        if name in stack:
            cycle = " -> ".join(stack[stack.index(name):] + [name])
            raise VariableCycleError(
                f"{owner}: cyclic variable reference: {cycle}",
                variable=name,
                owner=stack[-1],
            )
        stack.append(name)
        value = _substitute(
            raw[name],
            lookup=lambda ref: resolve(ref, stack) if ref in raw else None,
            owner=f"{owner} variable '{name}'",
        )
        stack.pop()
        resolved[name] = value
        return value

    for key in raw:
        resolve(key, [])
    return resolved


def expand_text(text: str, variables: Mapping[str, str], *, owner: str) -> str:
    """Expande referências de `text` contra um conjunto já resolvido."""
    return _substitute(text, lookup=variables.get, owner=owner)


def _substitute(text: str, *, lookup, owner: str) -> str:
    def repl(match: "re.Match[str]") -> str:
        if match.group(0) == "$$":
            return "$"
        ref = match.group(1) or match.group(2)
        value = lookup(ref)
        if value is None:
            raise UnresolvedVariableError(
                f"{owner} references undefined variable '{ref}'",
                variable=ref,
                owner=owner,
            )
        return value

    return _REFERENCE.sub(repl, text)
