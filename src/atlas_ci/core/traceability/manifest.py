# src/atlas_ci/core/traceability/manifest.py
"""
Manifest v1: rastreabilidade de runs de pipeline no Atlas CI.

O Manifest consolida, de forma determinística e auditável:
    - metadados do run (run_id, started_at, versão, identidade)
    - hashes semânticos das entradas (configuração e documento)
    - estado incremental de stages e jobs (incluindo cada tentativa)
    - Event Log ordenado de eventos explícitos

Princípios fundamentais:
    - Nenhum evento é emitido implicitamente
    - Toda mutação ocorre por chamadas explícitas da API
    - A ordem do Event Log reflete a ordem de chamada
    - O Manifest é serializável e reconstruível (round-trip)

Eventos canônicos:
    pipeline_started, stage_started, stage_finished, job_started,
    job_attempt_finished, job_finished, pipeline_finished

Decisões arquiteturais:
    - UTC é o timezone canônico para todos os timestamps
    - O formato de persistência é JSON determinístico
    - O Manifest não é thread-safe: o Scheduler serializa as chamadas

Limites explícitos:
    - Não executa pipeline
    - Não decide políticas de execução (retry, allow_failure, halt)
    - Não realiza migração de versões de schema
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union


def _ensure_tzaware_utc(dt: datetime) -> datetime:
    """
    Normaliza um timestamp para timezone-aware em UTC.

    Timestamps timezone-naive são assumidos como UTC; os demais são
    convertidos, preservando o instante representado.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime) -> str:
    return _ensure_tzaware_utc(dt).isoformat()


def _ms_between(start: datetime, end: datetime) -> int:
    """Duração em milissegundos, nunca negativa."""
    s = _ensure_tzaware_utc(start)
    e = _ensure_tzaware_utc(end)
    return max(0, int((e - s).total_seconds() * 1000))


@dataclass
class AtlasCIManifest:
    """
    Manifest v1: registro de um run de pipeline.

    Campos principais:
        - run: metadados (run_id, started_at, atlas_ci_version, project, ref, pipeline_id)
        - inputs: hashes semânticos (config_hash, document_hash)
        - stages: estado por stage, indexado pelo nome
        - jobs: estado por job, com a lista de tentativas
        - events: Event Log ordenado

    Invariantes:
        - `stages` e `jobs` são dicionários indexados por nome
        - `events` é sempre uma lista ordenada
        - A estrutura completa é serializável
    """

    run: Dict[str, Any]
    inputs: Dict[str, Any]
    stages: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    jobs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """
        Converte o Manifest para sua representação em dicionário.

        O retorno é independente do estado interno: alterações nele não
        afetam o Manifest em memória.
        """
        return {
            "run": dict(self.run),
            "inputs": dict(self.inputs),
            "stages": {k: dict(v) for k, v in self.stages.items()},
            "jobs": {
                k: {**v, "attempts": [dict(a) for a in v.get("attempts", [])]}
                for k, v in self.jobs.items()
            },
            "events": [dict(e) for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AtlasCIManifest":
        """
        Reconstrói um Manifest a partir de `to_dict`.

        Campos ausentes são inicializados vazios; não há validação de schema.
        """
        return cls(
            run=dict(data.get("run", {})),
            inputs=dict(data.get("inputs", {})),
            stages={k: dict(v) for k, v in (data.get("stages", {}) or {}).items()},
            jobs={
                k: {**v, "attempts": [dict(a) for a in (v.get("attempts") or [])]}
                for k, v in (data.get("jobs", {}) or {}).items()
            },
            events=[dict(e) for e in (data.get("events", []) or [])],
        )


def create_manifest(
    *,
    run_id: str,
    started_at: datetime,
    atlas_ci_version: str,
    config_hash: str,
    document_hash: str,
    project: str,
    ref: str,
    pipeline_id: str,
) -> AtlasCIManifest:
    """
    Cria o Manifest inicial de um run.

    ⚠️ Esta função **não emite eventos**: o Event Log inicia vazio e só é
    preenchido pelas chamadas explícitas (`pipeline_started`, ...).

    Args:
        run_id: identificador único do run.
        started_at: timestamp de início (normalizado para UTC).
        atlas_ci_version: versão do engine.
        config_hash: hash semântico da configuração efetiva.
        document_hash: hash semântico do documento de pipeline.
        project / ref / pipeline_id: identidade do run.

    Returns:
        AtlasCIManifest: Manifest v1 com stages, jobs e eventos vazios.
    """
    started_at = _ensure_tzaware_utc(started_at)
    return AtlasCIManifest(
        run={
            "run_id": run_id,
            "started_at": _iso(started_at),
            "atlas_ci_version": atlas_ci_version,
            "project": project,
            "ref": ref,
            "pipeline_id": pipeline_id,
        },
        inputs={
            "config_hash": config_hash,
            "document_hash": document_hash,
        },
    )


def _get_manifest(manifest: Union[AtlasCIManifest, Dict[str, Any]]) -> Tuple[AtlasCIManifest, bool]:
    """Normaliza a entrada; o booleano indica se era um dicionário a sincronizar."""
    if isinstance(manifest, AtlasCIManifest):
        return manifest, False
    return AtlasCIManifest.from_dict(manifest), True


def _sync(manifest: Union[AtlasCIManifest, Dict[str, Any]], m: AtlasCIManifest, is_dict: bool) -> None:
    if is_dict:
        manifest.clear()  # type: ignore[union-attr]
        manifest.update(m.to_dict())  # type: ignore[union-attr]


def add_event(
    manifest: Union[AtlasCIManifest, Dict[str, Any]],
    *,
    event_type: str,
    ts: datetime,
    stage: Optional[str] = None,
    job: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Adiciona um evento explícito ao Event Log.

    Cada chamada adiciona exatamente um evento; eventos não são
    reordenados nem deduplicados. `event_type` não é validado.

    Args:
        manifest: Manifest (objeto ou dicionário) a ser atualizado.
        event_type: tipo semântico (ex.: job_started).
        ts: timestamp do evento.
        stage / job: escopo do evento, quando aplicável.
        payload: dados adicionais livres.
    """
    m, is_dict = _get_manifest(manifest)
    ev: Dict[str, Any] = {"event_type": event_type, "timestamp": _iso(ts)}
    if stage is not None:
        ev["stage"] = stage
    if job is not None:
        ev["job"] = job
    if payload is not None:
        ev["payload"] = payload
    m.events.append(ev)
    _sync(manifest, m, is_dict)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def pipeline_started(manifest: Union[AtlasCIManifest, Dict[str, Any]], *, ts: datetime, stages: List[str]) -> None:
    m, is_dict = _get_manifest(manifest)
    m.run["status"] = "running"
    for name in stages:
        m.stages.setdefault(name, {"name": name, "status": "pending"})
    add_event(m, event_type="pipeline_started", ts=ts, payload={"stages": list(stages)})
    _sync(manifest, m, is_dict)


def pipeline_finished(
    manifest: Union[AtlasCIManifest, Dict[str, Any]],
    *,
    ts: datetime,
    status: str,
    exit_code: int,
) -> None:
    m, is_dict = _get_manifest(manifest)
    started = m.run.get("started_at")
    started_dt = datetime.fromisoformat(started) if started else ts
    m.run.update(
        {
            "status": status,
            "exit_code": exit_code,
            "finished_at": _iso(ts),
            "duration_ms": _ms_between(started_dt, ts),
        }
    )
    add_event(m, event_type="pipeline_finished", ts=ts, payload={"status": status, "exit_code": exit_code})
    _sync(manifest, m, is_dict)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def stage_started(manifest: Union[AtlasCIManifest, Dict[str, Any]], *, stage: str, ts: datetime) -> None:
    m, is_dict = _get_manifest(manifest)
    s = m.stages.setdefault(stage, {"name": stage})
    s.update({"status": "running", "started_at": _iso(ts)})
    add_event(m, event_type="stage_started", ts=ts, stage=stage)
    _sync(manifest, m, is_dict)


def stage_finished(
    manifest: Union[AtlasCIManifest, Dict[str, Any]],
    *,
    stage: str,
    ts: datetime,
    status: str,
) -> None:
    """
    Registra o status terminal de um stage.

    Stages que nunca iniciaram (SKIPPED) também passam por aqui, sem
    `started_at`; nesse caso `duration_ms` é 0.
    """
    m, is_dict = _get_manifest(manifest)
    s = m.stages.setdefault(stage, {"name": stage})
    started = s.get("started_at")
    started_dt = datetime.fromisoformat(started) if started else ts
    s.update({"status": status, "finished_at": _iso(ts), "duration_ms": _ms_between(started_dt, ts)})
    add_event(m, event_type="stage_finished", ts=ts, stage=stage, payload={"status": status})
    _sync(manifest, m, is_dict)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

def job_started(
    manifest: Union[AtlasCIManifest, Dict[str, Any]],
    *,
    job: str,
    stage: str,
    ts: datetime,
) -> None:
    m, is_dict = _get_manifest(manifest)
    j = m.jobs.setdefault(job, {"name": job, "stage": stage, "attempts": []})
    j.update({"status": "running", "started_at": _iso(ts)})
    add_event(m, event_type="job_started", ts=ts, stage=stage, job=job)
    _sync(manifest, m, is_dict)


def job_attempt_finished(
    manifest: Union[AtlasCIManifest, Dict[str, Any]],
    *,
    job: str,
    stage: str,
    ts: datetime,
    record: Dict[str, Any],
) -> None:
    """
    Anexa o registro de uma tentativa (ExecutionRecord.to_dict()) ao job.

    Tentativas são apenas anexadas, nunca substituídas.
    """
    m, is_dict = _get_manifest(manifest)
    j = m.jobs.setdefault(job, {"name": job, "stage": stage, "attempts": []})
    j.setdefault("attempts", []).append(dict(record))
    add_event(
        m,
        event_type="job_attempt_finished",
        ts=ts,
        stage=stage,
        job=job,
        payload={
            "attempt": record.get("attempt"),
            "status": record.get("status"),
            "failure_cause": record.get("failure_cause"),
        },
    )
    _sync(manifest, m, is_dict)


def job_finished(
    manifest: Union[AtlasCIManifest, Dict[str, Any]],
    *,
    job: str,
    stage: str,
    ts: datetime,
    status: str,
    retry_count: int,
    failure_allowed: bool = False,
    warnings: Optional[List[str]] = None,
) -> None:
    m, is_dict = _get_manifest(manifest)
    j = m.jobs.setdefault(job, {"name": job, "stage": stage, "attempts": []})
    started = j.get("started_at")
    started_dt = datetime.fromisoformat(started) if started else ts
    j.update(
        {
            "status": status,
            "finished_at": _iso(ts),
            "duration_ms": _ms_between(started_dt, ts),
            "retry_count": retry_count,
            "failure_allowed": failure_allowed,
            "warnings": list(warnings or []),
        }
    )
    add_event(
        m,
        event_type="job_finished",
        ts=ts,
        stage=stage,
        job=job,
        payload={"status": status, "retry_count": retry_count},
    )
    _sync(manifest, m, is_dict)


# ---------------------------------------------------------------------------
# Persistência
# ---------------------------------------------------------------------------

def save_manifest(manifest: Union[AtlasCIManifest, Dict[str, Any]], path: Path) -> None:
    """
    Persiste o Manifest em JSON determinístico (indentado, chaves ordenadas).

    Diretórios intermediários são criados; o arquivo é sobrescrito.
    """
    data = manifest.to_dict() if isinstance(manifest, AtlasCIManifest) else manifest
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True), encoding="utf-8")


def load_manifest(path: Path) -> AtlasCIManifest:
    """
    Carrega um Manifest persistido.

    Raises:
        FileNotFoundError: se o arquivo não existir.
        json.JSONDecodeError: em caso de JSON inválido.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    return AtlasCIManifest.from_dict(data)
