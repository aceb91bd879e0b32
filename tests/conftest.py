# tests/conftest.py
"""
Fixtures compartilhados para testes do Atlas CI.

Este módulo define fixtures reutilizáveis que fornecem:
- configurações mínimas e determinísticas (YAML como string)
- identidade de run e RunContext controlados
- um EnvironmentProvider roteirizado, em memória, que interpreta um
  pequeno vocabulário de comandos (`exit N`, `sleep S`, `echo X`)
- o documento motivador (stages audit/build) como string

O objetivo destas fixtures é permitir testes do engine (resolver,
scheduler, executor, cache) sem depender de:
- shell, containers ou runners reais
- repositórios git
- relógio de parede além de sleeps curtos e explícitos

Decisões arquiteturais:
    - O provider roteirizado implementa os Protocols por duck typing
    - Toda chamada de comando é registrada com timestamps monotônicos,
      permitindo asserts de ordenação (barreira entre stages)
    - Falhas de aquisição são programadas por fila FIFO de exceções
    - Imports do core são lazy para falhar com mensagens claras

Limites explícitos:
    - Não substitui testes do runner local (ver tests/core/runtime)
    - Não valida semântica de shell
"""

import threading
import time
from datetime import datetime, timezone

import pytest


# =====================================================
# Config fixtures
# =====================================================

@pytest.fixture
def engine_config_defaults_yaml() -> str:
    """
    YAML de configuração padrão do engine, no formato aceito por `load_config`.

    Serve de base para testes de loader, merge e hashing.
    """
    return """\
engine:
  max_parallelism: 4
  continue_on_failure: false
  environment_wait_seconds: 30
cache:
  root: .atlas-ci/cache
runners:
  - name: local
    tags: []
    slots: 4
"""


@pytest.fixture
def engine_config_local_yaml() -> str:
    """YAML de overrides locais: apenas o que difere dos defaults."""
    return """\
engine:
  max_parallelism: 2
  continue_on_failure: true
runners:
  - name: docker
    tags: [linux-docker]
    slots: 1
"""


# =====================================================
# Documento motivador
# =====================================================

@pytest.fixture
def audit_build_yaml() -> str:
    """
    Documento com stages [audit, build] no formato do pipeline motivador.

    Usa âncora + merge key (`<<: *docker-env`) para o fragment comum,
    variáveis de caminho com referências de identidade e um job de
    auditoria com `allow_failure: true`.
    """
    return """\
stages:
  - audit
  - build

variables:
  CI_IMAGE: "paritytech/ci-linux:production"
  CARGO_TARGET_DIR: "/ci-cache/${CI_PROJECT_NAME}/targets/${CI_COMMIT_REF_NAME}/${CI_JOB_NAME}"

.docker-env: &docker-env
  image: "${CI_IMAGE}"
  before_script:
    - echo setup
  retry:
    max: 2
    when:
      - runner_system_failure
      - unknown_failure
      - api_failure
  interruptible: true
  tags:
    - linux-docker

cargo_audit:
  stage: audit
  <<: *docker-env
  script:
    - exit 1
  allow_failure: true

cargo_remote_build:
  stage: build
  <<: *docker-env
  script:
    - echo $CARGO_TARGET_DIR
"""


# =====================================================
# Identidade e contexto
# =====================================================

@pytest.fixture
def identity():
    from atlas_ci.core.pipeline.types import PipelineIdentity

    return PipelineIdentity(project="polkadot", ref="master", pipeline_id="1001", commit_depth=42)


@pytest.fixture
def run_ctx(identity):
    """
    RunContext determinístico para testes de executor, cache e engine.

    O import é lazy para que falhas de import apareçam no teste que as usa.
    """
    from atlas_ci.core.pipeline.context import RunContext

    return RunContext(
        run_id="run-test-001",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        identity=identity,
        config={},
        meta={},
    )


# =====================================================
# Provider roteirizado
# =====================================================

class ScriptedEnvironment:
    """Ambiente em memória; interpreta `exit N`, `sleep S`, `echo X`."""

    def __init__(self, provider, runner: str, image):
        self.provider = provider
        self.runner = runner
        self.image = image
        self.released = False

    def run(self, command, *, env, timeout, token):
        from atlas_ci.core.runtime.protocols import CommandResult

        started = time.monotonic()
        self.provider._command_started(command)
        words = command.split()
        verb = words[0] if words else ""
        result = CommandResult(exit_code=0)

        if verb == "exit":
            result = CommandResult(exit_code=int(words[1]))
        elif verb == "sleep":
            seconds = float(words[1])
            limit = seconds if timeout is None else min(seconds, timeout)
            if token.wait(limit):
                result = CommandResult(exit_code=-15, canceled=True)
            elif timeout is not None and seconds > timeout:
                result = CommandResult(exit_code=-15, timed_out=True)
        elif verb == "echo":
            text = " ".join(env.get(w[1:], "") if w.startswith("$") else w for w in words[1:])
            result = CommandResult(exit_code=0, output=text + "\n")

        with self.provider.lock:
            self.provider.commands.append(
                {
                    "command": command,
                    "env": dict(env),
                    "runner": self.runner,
                    "image": self.image,
                    "start": started,
                    "end": time.monotonic(),
                    "result": result,
                }
            )
        return result

    def release(self):
        assert not self.released, "environment released twice"
        self.released = True
        with self.provider.lock:
            self.provider.active -= 1
            self.provider.released += 1


class ScriptedProvider:
    """
    EnvironmentProvider em memória.

    Args:
        failures: exceções levantadas, em ordem, pelas próximas chamadas de `acquire`.
    """

    def __init__(self, failures=None):
        self.lock = threading.Lock()
        self.failures = list(failures or [])
        self.commands = []
        self.acquired = 0
        self.released = 0
        self.active = 0
        self.max_active = 0
        self.acquire_calls = 0
        self.started = threading.Event()

    def _command_started(self, command):
        self.started.set()

    def acquire(self, image, tags, *, timeout, token):
        with self.lock:
            self.acquire_calls += 1
            if self.failures:
                raise self.failures.pop(0)
            self.acquired += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            n = self.acquired
        return ScriptedEnvironment(self, runner=f"scripted-{n}", image=image)

    def commands_for(self, job_name):
        return [c for c in self.commands if c["env"].get("CI_JOB_NAME") == job_name]


@pytest.fixture
def scripted_provider():
    """Fábrica de ScriptedProvider (permite programar falhas de aquisição)."""
    return ScriptedProvider


@pytest.fixture
def fast_settings():
    """EngineSettings com esperas curtas, adequadas a testes."""
    from atlas_ci.core.config.settings import EngineSettings

    return EngineSettings.from_config(
        {
            "engine": {
                "environment_wait_seconds": 0.2,
                "after_script_timeout_seconds": 1,
                "poll_interval_seconds": 0.01,
            }
        }
    )


@pytest.fixture
def make_engine(run_ctx, fast_settings, tmp_path):
    """
    Monta um Engine completo a partir de YAML.

    Retorna uma função `(yaml_text, provider, settings=None, **engine_kwargs) -> Engine`
    que carrega o documento, resolve o plano com a identidade de teste e
    conecta um CacheManager sobre `MemoryCacheStore`.
    """
    from atlas_ci.core.cache import CacheManager, MemoryCacheStore
    from atlas_ci.core.document import loads_document
    from atlas_ci.core.engine import Engine, JobExecutor, resolve_pipeline

    def _make(yaml_text, provider, settings=None, ctx=None, store=None, **engine_kwargs):
        settings = settings or fast_settings
        ctx = ctx or run_ctx
        plan = resolve_pipeline(loads_document(yaml_text), ctx.identity)
        cache = CacheManager(
            store or MemoryCacheStore(),
            fallback_root=str(tmp_path / "fallback"),
            poll_interval=settings.poll_interval_seconds,
        )
        executor = JobExecutor(provider=provider, cache=cache, settings=settings)
        return Engine(plan=plan, ctx=ctx, executor=executor, settings=settings, **engine_kwargs)

    return _make
