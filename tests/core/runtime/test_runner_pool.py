# tests/core/runtime/test_runner_pool.py
"""
Testes do RunnerPool (aquisição de ambientes por tags).

Os testes asseguram que:
- sem runner com as tags pedidas, a falha é imediata
- sem slot livre até o timeout, EnvironmentUnavailableError
- um slot liberado durante a espera é aproveitado
- cancelamento durante a espera vira JobCanceledError
"""

import threading
import time

import pytest

try:
    from atlas_ci.core.config.settings import EngineSettings, RunnerSettings
    from atlas_ci.core.engine import CancellationToken
    from atlas_ci.core.exceptions import EnvironmentUnavailableError, JobCanceledError
    from atlas_ci.core.pipeline.types import FailureCause
    from atlas_ci.core.runtime import LocalShellRunner, RunnerPool
except Exception as e:  # noqa: BLE001
    RunnerPool = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Falha ao importar atlas_ci.core.runtime.\nErro original: {_IMPORT_ERR!r}")


def _pool(tmp_path, *, slots=1, tags=("linux-docker",)):
    settings = RunnerSettings(name="docker", tags=frozenset(tags), slots=slots, workdir=str(tmp_path / "builds"))
    return RunnerPool([LocalShellRunner(settings)], poll_interval=0.01)


def test_acquire_matching_runner(tmp_path):
    _require_imports()
    pool = _pool(tmp_path)
    env = pool.acquire("rust", ["linux-docker"], timeout=1, token=CancellationToken())
    try:
        assert env.runner == "docker"
    finally:
        env.release()


def test_no_matching_tags_fails_immediately(tmp_path):
    _require_imports()
    pool = _pool(tmp_path)
    started = time.monotonic()

    with pytest.raises(EnvironmentUnavailableError) as ei:
        pool.acquire(None, ["gpu"], timeout=30, token=CancellationToken())

    assert time.monotonic() - started < 5
    assert ei.value.cause is FailureCause.RUNNER_SYSTEM_FAILURE
    assert ei.value.details["tags"] == ["gpu"]


def test_wait_times_out_when_busy(tmp_path):
    _require_imports()
    pool = _pool(tmp_path)
    held = pool.acquire(None, [], timeout=1, token=CancellationToken())
    try:
        with pytest.raises(EnvironmentUnavailableError):
            pool.acquire(None, [], timeout=0.1, token=CancellationToken())
    finally:
        held.release()


def test_released_slot_is_reused(tmp_path):
    _require_imports()
    pool = _pool(tmp_path)
    held = pool.acquire(None, [], timeout=1, token=CancellationToken())
    timer = threading.Timer(0.1, held.release)
    timer.start()

    env = pool.acquire(None, [], timeout=5, token=CancellationToken())
    timer.join()
    env.release()


def test_cancel_while_waiting(tmp_path):
    _require_imports()
    pool = _pool(tmp_path)
    held = pool.acquire(None, [], timeout=1, token=CancellationToken())
    token = CancellationToken()
    timer = threading.Timer(0.1, token.cancel, args=("preempted",))
    timer.start()
    try:
        with pytest.raises(JobCanceledError) as ei:
            pool.acquire(None, [], timeout=30, token=token)
        assert ei.value.details["reason"] == "preempted"
    finally:
        timer.join()
        held.release()


def test_from_settings_builds_one_runner_per_entry():
    _require_imports()
    settings = EngineSettings.from_config(
        {
            "engine": {"poll_interval_seconds": 0.02},
            "runners": [
                {"name": "a", "tags": ["x"], "slots": 2},
                {"name": "b", "slots": 1},
            ],
        }
    )
    pool = RunnerPool.from_settings(settings)
    assert [r.name for r in pool.runners] == ["a", "b"]
    assert pool.poll_interval == 0.02
