# src/atlas_ci/core/engine/resolver.py
"""
Resolver de ordem e variáveis do pipeline.

Este módulo transforma um `PipelineDocument` estruturalmente válido em
um `PipelinePlan` pronto para o Scheduler: stages em ordem de ordinal,
cada um com seus jobs em ordem de declaração e com variáveis e `image`
totalmente expandidos.

Princípios fundamentais:
    - A mesma entrada produz sempre o mesmo plano
    - Nenhuma variável pendente chega ao Scheduler
    - Stages vazios permanecem no plano (terminam como `succeeded`)

Decisões arquiteturais:
    - Variáveis de identidade do run são a camada de menor precedência: o
      documento pode sobrescrevê-las explicitamente
    - `CI_JOB_NAME` e `CI_JOB_STAGE` são a camada de maior precedência:
      cada job sempre enxerga o próprio nome e stage
    - A ordem dentro de um stage é a ordem de declaração, sem heurística

Invariantes:
    - Todo ResolvedJob pertence a exatamente um PlannedStage
    - `ordinal` dos PlannedStages é estritamente crescente

Limites explícitos:
    - Não executa jobs
    - Não interage com RunContext nem com o Manifest
    - Não decide políticas de execução (retry, allow_failure)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from atlas_ci.core.document.model import JobSpec, PipelineDocument, RetryPolicy
from atlas_ci.core.pipeline.types import PipelineIdentity

from .variables import expand_text, expand_variables, layer_variables


@dataclass(frozen=True)
class ResolvedJob:
    """Job pronto para execução: configuração mesclada e variáveis expandidas."""

    name: str
    stage: str
    script: Tuple[str, ...]
    variables: Mapping[str, str]
    image: Optional[str] = None
    before_script: Tuple[str, ...] = ()
    after_script: Tuple[str, ...] = ()
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    interruptible: bool = False
    tags: Tuple[str, ...] = ()
    allow_failure: bool = False
    allowed_exit_codes: Tuple[int, ...] = ()
    timeout_seconds: Optional[float] = None


@dataclass(frozen=True)
class PlannedStage:
    name: str
    ordinal: int
    jobs: Tuple[ResolvedJob, ...]


@dataclass(frozen=True)
class PipelinePlan:
    """Plano de execução: stages ordenados e identidade do run."""

    identity: PipelineIdentity
    stages: Tuple[PlannedStage, ...]

    def job(self, name: str) -> ResolvedJob:
        for stage in self.stages:
            for job in stage.jobs:
                if job.name == name:
                    return job
        raise KeyError(name)

    @property
    def jobs(self) -> Tuple[ResolvedJob, ...]:
        return tuple(j for s in self.stages for j in s.jobs)


def identity_variables(identity: PipelineIdentity) -> Dict[str, str]:
    """Variáveis de identidade do run, comuns a todos os jobs."""
    return {
        "CI_PROJECT_NAME": identity.project,
        "CI_COMMIT_REF_NAME": identity.ref,
        "CI_COMMIT_DEPTH": str(identity.commit_depth),
        "CI_PIPELINE_ID": str(identity.pipeline_id),
    }


def resolve_job(job: JobSpec, document: PipelineDocument, identity: PipelineIdentity) -> ResolvedJob:
    """
    Resolve um único job.

    Raises:
        UnresolvedVariableError: referência sem valor em nenhuma camada.
    """
    job_identity = {"CI_JOB_NAME": job.name, "CI_JOB_STAGE": job.stage}
    layered = layer_variables([identity_variables(identity), document.variables, job.variables, job_identity])
    variables = expand_variables(layered, owner=f"job '{job.name}'")

    image = None
    if job.image is not None:
        image = expand_text(job.image, variables, owner=f"job '{job.name}' image")

    return ResolvedJob(
        name=job.name,
        stage=job.stage,
        script=job.script,
        variables=MappingProxyType(variables),
        image=image,
        before_script=job.before_script,
        after_script=job.after_script,
        retry=job.retry,
        interruptible=job.interruptible,
        tags=job.tags,
        allow_failure=job.allow_failure,
        allowed_exit_codes=job.allowed_exit_codes,
        timeout_seconds=job.timeout_seconds,
    )


def resolve_pipeline(document: PipelineDocument, identity: PipelineIdentity) -> PipelinePlan:
    """
    Produz o plano ordenado de execução de um documento.

    Args:
        document: documento carregado por `load_document`/`parse_document`.
        identity: projeto, ref e id do pipeline.

    Returns:
        PipelinePlan com stages em ordem de ordinal e jobs em ordem de declaração.

    Raises:
        UnresolvedVariableError: antes de qualquer job executar.
    """
    stages = []
    for stage in sorted(document.stages, key=lambda s: s.ordinal):
        jobs = tuple(resolve_job(j, document, identity) for j in document.jobs_in(stage.name))
        stages.append(PlannedStage(name=stage.name, ordinal=stage.ordinal, jobs=jobs))
    return PipelinePlan(identity=identity, stages=tuple(stages))
