# tests/core/config/test_settings.py
"""
Testes dos settings tipados do engine (EngineSettings / RunnerSettings).

Os testes asseguram que:
- a configuração vazia produz os defaults documentados
- overrides parciais são combinados com `DEFAULT_CONFIG`
- valores fora do domínio são rejeitados com `InvalidSettingError`

Limites explícitos:
    - Não valida leitura de arquivos (ver test_config_loader.py)
"""

import pytest

try:
    from atlas_ci.core.config import (
        ConfigTypeConflictError,
        DEFAULT_CONFIG,
        EngineSettings,
        InvalidSettingError,
        RunnerSettings,
    )
except Exception as e:  # noqa: BLE001
    ConfigTypeConflictError = None
    DEFAULT_CONFIG = None
    EngineSettings = None
    InvalidSettingError = None
    RunnerSettings = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Falha ao importar atlas_ci.core.config (settings). "
            "Esperado: EngineSettings.from_config, RunnerSettings, InvalidSettingError.\n"
            f"Erro original: {_IMPORT_ERR!r}"
        )


def test_empty_config_uses_defaults():
    _require_imports()
    s = EngineSettings.from_config({})

    assert s.max_parallelism == 4
    assert s.continue_on_failure is False
    assert s.environment_wait_seconds == 30.0
    assert s.default_job_timeout_seconds is None
    assert s.cache_variable == "CI_CACHE_DIR"
    assert [r.name for r in s.runners] == ["local"]
    assert s.runners[0].slots == 4


def test_partial_override_is_merged():
    """
    Um override local declara apenas o que difere.

    Invariantes:
        - Chaves não informadas vêm de DEFAULT_CONFIG
        - DEFAULT_CONFIG não é mutado
    """
    _require_imports()
    s = EngineSettings.from_config(
        {"engine": {"max_parallelism": 1, "default_job_timeout_seconds": 90}}
    )

    assert s.max_parallelism == 1
    assert s.default_job_timeout_seconds == 90.0
    assert s.after_script_timeout_seconds == 300.0
    assert DEFAULT_CONFIG["engine"]["max_parallelism"] == 4


def test_runners_are_parsed_with_tags():
    _require_imports()
    s = EngineSettings.from_config(
        {"runners": [{"name": "docker", "tags": ["linux-docker", "x86"], "slots": 2}]}
    )

    assert s.runners == (
        RunnerSettings(name="docker", tags=frozenset({"linux-docker", "x86"}), slots=2),
    )


@pytest.mark.parametrize("value", [0, -1, True])
def test_invalid_max_parallelism_raises(value):
    _require_imports()
    with pytest.raises((InvalidSettingError, ConfigTypeConflictError)):
        EngineSettings.from_config({"engine": {"max_parallelism": value}})


def test_negative_timeout_raises():
    _require_imports()
    with pytest.raises(InvalidSettingError):
        EngineSettings.from_config({"engine": {"environment_wait_seconds": -5}})


def test_duplicate_runner_names_raise():
    _require_imports()
    with pytest.raises(InvalidSettingError):
        EngineSettings.from_config({"runners": [{"name": "a"}, {"name": "a"}]})


@pytest.mark.parametrize(
    "runner",
    [
        {"tags": []},
        {"name": "r", "slots": 0},
        {"name": "r", "tags": "linux"},
    ],
)
def test_invalid_runner_raises(runner):
    _require_imports()
    with pytest.raises(InvalidSettingError):
        EngineSettings.from_config({"runners": [runner]})
