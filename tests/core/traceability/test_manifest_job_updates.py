# tests/core/traceability/test_manifest_job_updates.py
"""
Testes de atualização incremental de stages e jobs no Manifest.

Os testes asseguram que:
- `pipeline_started` registra os stages como pending
- stages e jobs recebem status, timestamps e duração
- tentativas são anexadas, nunca substituídas
- `job_finished` registra retry_count, failure_allowed e warnings
- `pipeline_finished` registra status e exit code do run

Limites explícitos:
    - Não valida persistência (ver test_manifest_round_trip.py)
"""

from datetime import datetime, timedelta, timezone

import pytest

try:
    from atlas_ci.core.traceability.manifest import (
        create_manifest,
        job_attempt_finished,
        job_finished,
        job_started,
        pipeline_finished,
        pipeline_started,
        stage_finished,
        stage_started,
    )
except Exception as e:  # noqa: BLE001
    create_manifest = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing manifest update APIs (pipeline_*/stage_*/job_*).\n"
            f"Import error: {_IMPORT_ERR}"
        )


T0 = datetime(2026, 1, 16, 12, 0, 0, tzinfo=timezone.utc)


def _at(seconds):
    return T0 + timedelta(seconds=seconds)


def _manifest():
    return create_manifest(
        run_id="run-002",
        started_at=T0,
        atlas_ci_version="0.1.0",
        config_hash="c" * 64,
        document_hash="d" * 64,
        project="polkadot",
        ref="master",
        pipeline_id="1001",
    )


def test_pipeline_started_registers_pending_stages():
    _require_imports()
    m = _manifest()
    pipeline_started(m, ts=T0, stages=["audit", "build"])

    assert m.run["status"] == "running"
    assert m.stages == {
        "audit": {"name": "audit", "status": "pending"},
        "build": {"name": "build", "status": "pending"},
    }


def test_stage_lifecycle_records_duration():
    _require_imports()
    m = _manifest()
    stage_started(m, stage="audit", ts=_at(1))
    stage_finished(m, stage="audit", ts=_at(3), status="succeeded_with_allowed_failures")

    s = m.stages["audit"]
    assert s["status"] == "succeeded_with_allowed_failures"
    assert s["duration_ms"] == 2000
    assert s["started_at"] == "2026-01-16T12:00:01+00:00"


def test_skipped_stage_has_zero_duration():
    _require_imports()
    m = _manifest()
    stage_finished(m, stage="build", ts=_at(5), status="skipped")
    assert m.stages["build"]["duration_ms"] == 0
    assert "started_at" not in m.stages["build"]


def test_job_attempts_are_appended():
    """
    Cada tentativa vira uma entrada em `attempts`, na ordem de chamada.

    Invariantes:
        - tentativas anteriores nunca são substituídas
        - o evento de tentativa resume attempt/status/failure_cause
    """
    _require_imports()
    m = _manifest()
    job_started(m, job="cargo_remote_build", stage="build", ts=_at(0))
    job_attempt_finished(
        m,
        job="cargo_remote_build",
        stage="build",
        ts=_at(1),
        record={"attempt": 1, "status": "failed", "failure_cause": "runner_system_failure"},
    )
    job_attempt_finished(
        m,
        job="cargo_remote_build",
        stage="build",
        ts=_at(2),
        record={"attempt": 2, "status": "success", "failure_cause": None},
    )
    job_finished(
        m,
        job="cargo_remote_build",
        stage="build",
        ts=_at(2.5),
        status="success",
        retry_count=1,
        warnings=["cache read failed"],
    )

    j = m.jobs["cargo_remote_build"]
    assert [a["status"] for a in j["attempts"]] == ["failed", "success"]
    assert j["status"] == "success"
    assert j["retry_count"] == 1
    assert j["failure_allowed"] is False
    assert j["warnings"] == ["cache read failed"]
    assert j["duration_ms"] == 2500
    assert m.events[1]["payload"] == {"attempt": 1, "status": "failed", "failure_cause": "runner_system_failure"}


def test_pipeline_finished_records_exit_code():
    _require_imports()
    m = _manifest()
    pipeline_started(m, ts=T0, stages=["build"])
    pipeline_finished(m, ts=_at(10), status="failed", exit_code=1)

    assert m.run["status"] == "failed"
    assert m.run["exit_code"] == 1
    assert m.run["duration_ms"] == 10000
    assert m.events[-1]["payload"] == {"status": "failed", "exit_code": 1}
