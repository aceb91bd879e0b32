# src/atlas_ci/core/document/loader.py
"""Loader canônico de documentos de pipeline (YAML/JSON).

Notas:
- YAML é preferencial, JSON é alternativo; o formato é inferido pela extensão.
- Âncoras e merge keys (`<<: *fragment`) são resolvidos pelo PyYAML no parse,
  com a mesma regra do merge de fragments: chaves locais vencem.
- Chaves repetidas em qualquer mapping são erro (o PyYAML padrão manteria
  silenciosamente a última ocorrência).
- Chaves desconhecidas são ignoradas, permitindo documentos de versões futuras.
"""

from __future__ import annotations

import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Tuple

import yaml

from atlas_ci.core.config.hashing import compute_config_hash

from .errors import (
    DocumentNotFoundError,
    DuplicateJobNameError,
    DuplicateKeyError,
    DuplicateStageError,
    InvalidJobDefinitionError,
    MalformedDocumentError,
    UnsupportedDocumentFormatError,
)
from .fragments import as_name_list, expand_extends
from .model import (
    Fragment,
    JobSpec,
    PipelineDocument,
    RetryPolicy,
    Stage,
    flatten_script,
    freeze_variables,
    parse_duration,
)
from .registry import JobRegistry


DEFAULT_STAGES: Tuple[str, ...] = ("build", "test", "deploy")
DEFAULT_JOB_STAGE = "test"

# Chaves globais que nunca são jobs.
RESERVED_KEYS = frozenset(
    {
        "stages",
        "variables",
        "default",
        "include",
        "workflow",
        "image",
        "services",
        "cache",
        "before_script",
        "after_script",
        "types",
    }
)


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader que rejeita chaves repetidas (exceto merge keys `<<`)."""

    _root_node = None

    def construct_document(self, node):
        self._root_node = node
        return super().construct_document(node)

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen = set()
            for key_node, _ in node.value:
                if key_node.tag == "tag:yaml.org,2002:merge":
                    continue
                key = self.construct_object(key_node, deep=deep)
                try:
                    duplicate = key in seen
                except TypeError:
                    continue
                if duplicate:
                    mark = key_node.start_mark
                    where = f"line {mark.line + 1}, column {mark.column + 1}"
                    if node is self._root_node:
                        raise DuplicateJobNameError(f"duplicate top-level key '{key}' at {where}")
                    raise DuplicateKeyError(f"duplicate key '{key}' at {where}")
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _reject_duplicate_pairs(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in pairs:
        if key in out:
            raise DuplicateKeyError(f"duplicate key '{key}'")
        out[key] = value
    return out


def load_document(path: str) -> PipelineDocument:
    """Carrega e valida um documento de pipeline a partir de YAML/JSON.

    Raises:
        DocumentNotFoundError: se o arquivo não existir.
        UnsupportedDocumentFormatError: se a extensão não for suportada.
        MalformedDocumentError: parse inválido ou estrutura inválida.
    """
    p = Path(path)
    if not p.exists():
        raise DocumentNotFoundError(f"pipeline document not found: {p}")

    suffix = p.suffix.lower()
    raw = p.read_text(encoding="utf-8")
    try:
        if suffix in {".yml", ".yaml"}:
            data = yaml.load(raw, Loader=_UniqueKeyLoader)
        elif suffix == ".json":
            data = json.loads(raw, object_pairs_hook=_reject_duplicate_pairs)
        else:
            raise UnsupportedDocumentFormatError(f"unsupported document format: {suffix}")
    except MalformedDocumentError:
        raise
    except (yaml.YAMLError, ValueError) as e:
        raise MalformedDocumentError(str(e) or "failed to parse pipeline document") from e

    if data is None:
        raise MalformedDocumentError("pipeline document is empty")

    return parse_document(data)


def loads_document(text: str) -> PipelineDocument:
    """Variante de `load_document` para conteúdo YAML em memória."""
    try:
        data = yaml.load(text, Loader=_UniqueKeyLoader)
    except MalformedDocumentError:
        raise
    except yaml.YAMLError as e:
        raise MalformedDocumentError(str(e) or "failed to parse pipeline document") from e
    if data is None:
        raise MalformedDocumentError("pipeline document is empty")
    return parse_document(data)


def parse_document(data: Any) -> PipelineDocument:
    """Constrói o `PipelineDocument` a partir do mapping bruto.

    Raises:
        MalformedDocumentError (ou subclasses): estrutura inválida, stage
        desconhecido, ciclo de fragments, nome de job duplicado.
    """
    if not isinstance(data, Mapping):
        raise MalformedDocumentError("pipeline document root must be a mapping")

    stages = _parse_stages(data.get("stages"))
    variables = freeze_variables(data.get("variables"), owner="document")

    default = data.get("default")
    if default is not None and not isinstance(default, Mapping):
        raise MalformedDocumentError("'default' must be a mapping")
    implicit = [dict(default)] if default else []

    fragments: Dict[str, Fragment] = {}
    for key, value in data.items():
        if isinstance(key, str) and key.startswith(".") and isinstance(value, Mapping):
            fragments[key] = Fragment(name=key, body=MappingProxyType(dict(value)))

    registry = JobRegistry(stages=stages)
    for key, value in data.items():
        if not _is_job_entry(key, value):
            continue
        merged = expand_extends(key, value, fragments, implicit=implicit)
        registry.register(_build_job(key, merged, value))

    return PipelineDocument(
        stages=stages,
        variables=variables,
        fragments=MappingProxyType(fragments),
        jobs=tuple(registry.list()),
        source_hash=compute_config_hash({str(k): v for k, v in data.items()}),
    )


def _parse_stages(raw: Any) -> Tuple[Stage, ...]:
    if raw is None:
        names = list(DEFAULT_STAGES)
    elif isinstance(raw, list) and all(isinstance(s, str) and s.strip() for s in raw):
        names = list(raw)
    else:
        raise MalformedDocumentError("'stages' must be a list of non-empty strings")

    seen = set()
    for name in names:
        if name in seen:
            raise DuplicateStageError(f"stage declared twice: {name}")
        seen.add(name)
    return tuple(Stage(name=name, ordinal=i) for i, name in enumerate(names))


def _is_job_entry(key: Any, value: Any) -> bool:
    if not isinstance(key, str) or key.startswith(".") or key in RESERVED_KEYS:
        return False
    if not isinstance(value, Mapping):
        return False
    return "script" in value or "extends" in value


def _build_job(name: str, merged: Mapping[str, Any], local: Mapping[str, Any]) -> JobSpec:
    script = flatten_script(merged.get("script"), job=name, key="script")
    if not script:
        raise InvalidJobDefinitionError(f"job '{name}' has no script")

    stage = merged.get("stage", DEFAULT_JOB_STAGE)
    if not isinstance(stage, str) or not stage.strip():
        raise InvalidJobDefinitionError(f"job '{name}': stage must be a non-empty string")

    allow_failure, exit_codes = _parse_allow_failure(merged.get("allow_failure"), job=name)

    tags = merged.get("tags") or []
    if isinstance(tags, str):
        tags = [tags]
    if not isinstance(tags, list):
        raise InvalidJobDefinitionError(f"job '{name}': tags must be a list")

    interruptible = merged.get("interruptible", False)
    if not isinstance(interruptible, bool):
        raise InvalidJobDefinitionError(f"job '{name}': interruptible must be a boolean")

    return JobSpec(
        name=name,
        stage=stage,
        script=script,
        image=_parse_image(merged.get("image"), job=name),
        before_script=flatten_script(merged.get("before_script"), job=name, key="before_script"),
        after_script=flatten_script(merged.get("after_script"), job=name, key="after_script"),
        variables=freeze_variables(merged.get("variables"), owner=f"job '{name}'"),
        retry=RetryPolicy.from_raw(merged.get("retry"), job=name),
        interruptible=interruptible,
        tags=tuple(str(t) for t in tags),
        allow_failure=allow_failure,
        allowed_exit_codes=exit_codes,
        timeout_seconds=parse_duration(merged.get("timeout"), job=name),
        extends=tuple(as_name_list(local.get("extends"), owner=name, key="extends")),
    )


def _parse_image(raw: Any, *, job: str):
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        raw = raw.get("name")
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidJobDefinitionError(f"job '{job}': image must be a non-empty string")
    return raw


def _parse_allow_failure(raw: Any, *, job: str) -> Tuple[bool, Tuple[int, ...]]:
    if raw is None:
        return False, ()
    if isinstance(raw, bool):
        return raw, ()
    if isinstance(raw, Mapping) and "exit_codes" in raw:
        codes = raw["exit_codes"]
        if isinstance(codes, int) and not isinstance(codes, bool):
            codes = [codes]
        if not isinstance(codes, list) or not all(
            isinstance(c, int) and not isinstance(c, bool) for c in codes
        ):
            raise InvalidJobDefinitionError(f"job '{job}': allow_failure.exit_codes must be integers")
        return True, tuple(codes)
    raise InvalidJobDefinitionError(f"job '{job}': allow_failure must be a boolean or {{exit_codes: [...]}}")
