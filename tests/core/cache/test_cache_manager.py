# tests/core/cache/test_cache_manager.py
"""
Testes do CacheManager (lock por chave, fallback de leitura, gravação).

Os testes asseguram que:
- duas retiradas da mesma chave nunca se sobrepõem
- chaves distintas não esperam umas pelas outras
- leitura inválida vira warning e local vazio sob `fallback_root`
- cancelamento e timeout não gravam o índice; demais saídas gravam
- falha de gravação (OSError) vira warning, não exceção
- raiz de store inutilizável recorre a um local fora dela
- a espera pelo lock respeita cancelamento e timeout
"""

import os
import threading
import time

import pytest

try:
    from atlas_ci.core.cache import CacheKey, CacheManager, DirectoryCacheStore, MemoryCacheStore
    from atlas_ci.core.engine import CancellationToken
    from atlas_ci.core.exceptions import JobCanceledError, JobTimedOutError, ScriptExecutionError
except Exception as e:  # noqa: BLE001
    CacheManager = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Falha ao importar atlas_ci.core.cache.\nErro original: {_IMPORT_ERR!r}")


def _key(job="cargo_audit"):
    return CacheKey(project="polkadot", ref="master", job=job)


class FailingPutStore(MemoryCacheStore):
    def put(self, key, location):
        raise OSError("disk full")


def test_same_key_is_serialized(tmp_path, run_ctx):
    """
    Retiradas concorrentes da mesma chave executam uma de cada vez.

    Invariantes:
        - nunca há mais de um portador ativo da chave
    """
    _require_imports()
    manager = CacheManager(MemoryCacheStore(), fallback_root=str(tmp_path / "fb"))
    lock = threading.Lock()
    state = {"active": 0, "max": 0}

    def worker():
        with manager.checkout(_key(), run_ctx):
            with lock:
                state["active"] += 1
                state["max"] = max(state["max"], state["active"])
            time.sleep(0.02)
            with lock:
                state["active"] -= 1

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert state["max"] == 1


def test_distinct_keys_do_not_block(tmp_path, run_ctx):
    _require_imports()
    manager = CacheManager(MemoryCacheStore(), fallback_root=str(tmp_path / "fb"))
    inside = threading.Event()
    release = threading.Event()

    def holder():
        with manager.checkout(_key("a"), run_ctx):
            inside.set()
            release.wait(5)

    t = threading.Thread(target=holder)
    t.start()
    try:
        assert inside.wait(5)
        with manager.checkout(_key("b"), run_ctx) as location:
            assert location == "memory://polkadot/master/b"
    finally:
        release.set()
        t.join()


def test_corrupted_entry_falls_back_with_warning(tmp_path, run_ctx):
    _require_imports()
    store = MemoryCacheStore(corrupted={_key()})
    manager = CacheManager(store, fallback_root=str(tmp_path / "fb"))

    with manager.checkout(_key(), run_ctx) as location:
        assert location.startswith(str(tmp_path / "fb"))

    assert len(run_ctx.warnings["cargo_audit"]) == 1
    assert "cache read failed" in run_ctx.warnings["cargo_audit"][0]


@pytest.mark.parametrize("exc_type", ["canceled", "timed_out"])
def test_interrupted_exit_does_not_store(tmp_path, run_ctx, exc_type):
    _require_imports()
    store = MemoryCacheStore()
    manager = CacheManager(store, fallback_root=str(tmp_path / "fb"))
    exc = JobCanceledError(message="stop") if exc_type == "canceled" else JobTimedOutError(message="late")

    with pytest.raises(type(exc)):
        with manager.checkout(_key(), run_ctx):
            raise exc

    assert store.puts == 0
    # o lock foi liberado
    with manager.checkout(_key(), run_ctx):
        pass
    assert store.puts == 1


def test_script_failure_still_stores(tmp_path, run_ctx):
    _require_imports()
    store = MemoryCacheStore()
    manager = CacheManager(store, fallback_root=str(tmp_path / "fb"))

    with pytest.raises(ScriptExecutionError):
        with manager.checkout(_key(), run_ctx):
            raise ScriptExecutionError(message="exit 1", exit_code=1)

    assert store.puts == 1


def test_write_failure_becomes_warning(tmp_path, run_ctx):
    _require_imports()
    manager = CacheManager(FailingPutStore(), fallback_root=str(tmp_path / "fb"))

    with manager.checkout(_key(), run_ctx):
        pass

    assert run_ctx.warnings["cargo_audit"] == ["cache write failed: disk full"]


def test_unusable_store_root_falls_back_outside_root(tmp_path, run_ctx):
    """
    Com a raiz do store sendo um arquivo, a retirada segue em um local vazio.

    Invariantes:
        - nenhuma exceção escapa de `checkout`
        - falha de leitura e de gravação viram warnings do job
    """
    _require_imports()
    root = tmp_path / "cache-root"
    root.write_text("not a directory", encoding="utf-8")
    manager = CacheManager(DirectoryCacheStore(str(root)), fallback_root=str(root / ".fallback"))

    with manager.checkout(_key(), run_ctx) as location:
        assert not location.startswith(str(root))
        assert os.path.isdir(location)

    warnings = run_ctx.warnings["cargo_audit"]
    assert "cache read failed" in warnings[0]
    assert warnings[1].startswith("cache write failed")


def _hold(manager, run_ctx):
    inside = threading.Event()
    release = threading.Event()

    def holder():
        with manager.checkout(_key(), run_ctx):
            inside.set()
            release.wait(10)

    t = threading.Thread(target=holder)
    t.start()
    assert inside.wait(5)
    return t, release


def test_cancel_while_waiting_for_lock(tmp_path, run_ctx):
    """
    Um job cancelado na fila do lock desiste sem esperar o portador.

    Invariantes:
        - JobCanceledError bem antes de o portador liberar a chave
    """
    _require_imports()
    manager = CacheManager(MemoryCacheStore(), fallback_root=str(tmp_path / "fb"), poll_interval=0.01)
    t, release = _hold(manager, run_ctx)
    token = CancellationToken()
    timer = threading.Timer(0.1, token.cancel, kwargs={"reason": "user"})
    try:
        timer.start()
        started = time.monotonic()
        with pytest.raises(JobCanceledError):
            with manager.checkout(_key(), run_ctx, token):
                pass
        assert time.monotonic() - started < 2
    finally:
        timer.cancel()
        release.set()
        t.join()


def test_timeout_while_waiting_for_lock(tmp_path, run_ctx):
    _require_imports()
    manager = CacheManager(MemoryCacheStore(), fallback_root=str(tmp_path / "fb"), poll_interval=0.01)
    t, release = _hold(manager, run_ctx)
    try:
        started = time.monotonic()
        with pytest.raises(JobTimedOutError) as ei:
            with manager.checkout(_key(), run_ctx, timeout=0.1):
                pass
        assert time.monotonic() - started < 2
        assert ei.value.details["timeout_seconds"] == 0.1
    finally:
        release.set()
        t.join()
