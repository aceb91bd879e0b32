# src/atlas_ci/core/document/__init__.py
"""
Documento de pipeline do Atlas CI.

API pública:
    - load_document / loads_document / parse_document
    - PipelineDocument, Stage, Fragment, JobSpec, RetryPolicy
    - merge_fragment / expand_extends (template + override)
    - JobRegistry
    - hierarquia de erros (`MalformedDocumentError` e subclasses)
"""

from .errors import (
    DocumentError,
    DocumentNotFoundError,
    DuplicateJobNameError,
    DuplicateKeyError,
    DuplicateStageError,
    FragmentCycleError,
    InvalidJobDefinitionError,
    MalformedDocumentError,
    UnknownFragmentError,
    UnknownStageError,
    UnsupportedDocumentFormatError,
)
from .fragments import expand_extends, merge_fragment
from .loader import DEFAULT_JOB_STAGE, DEFAULT_STAGES, load_document, loads_document, parse_document
from .model import Fragment, JobSpec, PipelineDocument, RetryPolicy, Stage
from .registry import JobRegistry

__all__ = [
    "DocumentError",
    "DocumentNotFoundError",
    "DuplicateJobNameError",
    "DuplicateKeyError",
    "DuplicateStageError",
    "FragmentCycleError",
    "InvalidJobDefinitionError",
    "MalformedDocumentError",
    "UnknownFragmentError",
    "UnknownStageError",
    "UnsupportedDocumentFormatError",
    "expand_extends",
    "merge_fragment",
    "DEFAULT_JOB_STAGE",
    "DEFAULT_STAGES",
    "load_document",
    "loads_document",
    "parse_document",
    "Fragment",
    "JobSpec",
    "PipelineDocument",
    "RetryPolicy",
    "Stage",
    "JobRegistry",
]
