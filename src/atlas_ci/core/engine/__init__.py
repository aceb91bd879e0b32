# src/atlas_ci/core/engine/__init__.py
"""
Engine do Atlas CI.

Este pacote contém o que transforma um documento carregado em um run:

    - variables    → camadas e expansão de variáveis
    - resolver     → plano ordenado de stages e jobs resolvidos
    - executor     → execução de um job com retry, timeout e cancelamento
    - engine       → scheduler com barreira por stage
    - cancellation → token cooperativo pai → filhos
    - preemption   → registro de runs ativos por (projeto, ref)

Princípios fundamentais:
    - Resolução e execução são responsabilidades separadas
    - Erros de resolução são fatais antes de qualquer job executar
    - Falhas de job nunca escapam como exceção: viram registros
"""

from .cancellation import CancellationToken
from .engine import Engine
from .executor import JobExecutor
from .preemption import RunRegistry
from .resolver import PipelinePlan, PlannedStage, ResolvedJob, identity_variables, resolve_job, resolve_pipeline
from .variables import UnresolvedVariableError, VariableCycleError, expand_text, expand_variables, layer_variables

__all__ = [
    "CancellationToken",
    "Engine",
    "JobExecutor",
    "RunRegistry",
    "PipelinePlan",
    "PlannedStage",
    "ResolvedJob",
    "identity_variables",
    "resolve_job",
    "resolve_pipeline",
    "UnresolvedVariableError",
    "VariableCycleError",
    "expand_text",
    "expand_variables",
    "layer_variables",
]
