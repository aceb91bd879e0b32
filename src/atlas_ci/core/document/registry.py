# src/atlas_ci/core/document/registry.py
"""
Registro estrutural de jobs do documento.

O `JobRegistry` valida a integridade dos jobs antes de qualquer
resolução ou execução:
    - cada job possui nome não vazio
    - não existem nomes duplicados
    - todo job referencia um stage declarado
    - a ordem de declaração é preservada (ordem de iteração dentro do stage)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from .errors import DuplicateJobNameError, MalformedDocumentError, UnknownStageError
from .model import JobSpec, Stage


@dataclass
class JobRegistry:
    """Registro de JobSpecs com validação de unicidade e de stage."""

    stages: Tuple[Stage, ...]
    _jobs: Dict[str, JobSpec] = field(default_factory=dict, init=False, repr=False)
    _order: List[str] = field(default_factory=list, init=False, repr=False)

    def register(self, job: JobSpec) -> None:
        if not isinstance(job.name, str) or not job.name.strip():
            raise MalformedDocumentError("job name must be a non-empty string")
        if job.name in self._jobs:
            raise DuplicateJobNameError(f"duplicate job name: {job.name}")
        if job.stage not in {s.name for s in self.stages}:
            raise UnknownStageError(
                f"job '{job.name}' references unknown stage '{job.stage}'; "
                f"declared stages: {[s.name for s in self.stages]}"
            )
        self._jobs[job.name] = job
        self._order.append(job.name)

    def register_many(self, jobs: Iterable[JobSpec]) -> None:
        for job in jobs:
            self.register(job)

    def get(self, name: str) -> JobSpec:
        return self._jobs[name]

    def list(self) -> List[JobSpec]:
        return [self._jobs[name] for name in self._order]

    def __len__(self) -> int:
        return len(self._order)
