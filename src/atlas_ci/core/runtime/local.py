# src/atlas_ci/core/runtime/local.py
"""
Runner local baseado em shell.

Cada `LocalShellRunner` declara um número fixo de slots. Um slot
adquirido vira um `LocalShellEnvironment`: um diretório de trabalho
exclusivo sob `workdir` onde cada linha de script roda como
`sh -c <linha>` em um grupo de processos próprio.

Decisões arquiteturais:
    - A contagem de slots é protegida por um `threading.Condition` por
      runner; não existe lock global entre runners
    - Cancelamento e timeout terminam o grupo de processos inteiro
      (SIGTERM, depois SIGKILL após `kill_grace_seconds`)
    - A saída (stdout + stderr) é lida por uma thread dedicada para que o
      processo nunca bloqueie com o pipe cheio
    - `image` é registrada, mas não isolada: o host executa o comando

Limites explícitos:
    - Estado do shell (cd, export) não persiste entre linhas
    - Não baixa imagens nem cria containers
"""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
import threading
import time
import uuid
from pathlib import Path
from typing import List, Mapping, Optional

from atlas_ci.core.config.settings import RunnerSettings
from atlas_ci.core.exceptions import EnvironmentApiError

from .protocols import CommandResult


class LocalShellRunner:
    """Runner local com `slots` execuções simultâneas."""

    def __init__(self, settings: RunnerSettings, *, kill_grace_seconds: float = 5.0):
        self.settings = settings
        self.kill_grace_seconds = kill_grace_seconds
        self._cond = threading.Condition()
        self._in_use = 0

    @property
    def name(self) -> str:
        return self.settings.name

    @property
    def in_use(self) -> int:
        with self._cond:
            return self._in_use

    def matches(self, tags) -> bool:
        """O runner atende o job quando possui todas as tags pedidas."""
        return set(tags) <= self.settings.tags

    def try_acquire(
        self, image: Optional[str] = None, *, poll_interval: float = 0.05
    ) -> Optional["LocalShellEnvironment"]:
        with self._cond:
            if self._in_use >= self.settings.slots:
                return None
            self._in_use += 1
        try:
            return LocalShellEnvironment(self, image=image, poll_interval=poll_interval)
        except OSError as e:
            self._release_slot()
            raise EnvironmentApiError(
                message="Falha ao preparar diretório de trabalho do runner",
                details={"runner": self.name, "workdir": self.settings.workdir, "reason": str(e)},
            ) from e

    def wait_for_slot(self, timeout: float) -> None:
        with self._cond:
            if self._in_use >= self.settings.slots:
                self._cond.wait(timeout)

    def _release_slot(self) -> None:
        with self._cond:
            self._in_use -= 1
            self._cond.notify()


class LocalShellEnvironment:
    """Ambiente efêmero: um slot do runner e um diretório de trabalho exclusivo."""

    def __init__(self, runner: LocalShellRunner, *, image: Optional[str] = None, poll_interval: float = 0.05):
        self._runner = runner
        self.runner = runner.name
        self.image = image
        self.poll_interval = poll_interval
        self.workdir = Path(runner.settings.workdir) / runner.name / uuid.uuid4().hex[:12]
        self.workdir.mkdir(parents=True, exist_ok=True)
        self._released = False

    def run(
        self,
        command: str,
        *,
        env: Mapping[str, str],
        timeout: Optional[float],
        token,
    ) -> CommandResult:
        full_env = dict(os.environ)
        full_env.update(env)

        proc = subprocess.Popen(
            ["sh", "-c", command],
            cwd=str(self.workdir),
            env=full_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
        chunks: List[bytes] = []
        reader = threading.Thread(target=_drain, args=(proc.stdout, chunks), daemon=True)
        reader.start()

        deadline = None if timeout is None else time.monotonic() + timeout
        timed_out = canceled = False
        while True:
            try:
                proc.wait(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                pass
            if token is not None and token.is_cancelled:
                canceled = True
            elif deadline is not None and time.monotonic() >= deadline:
                timed_out = True
            if canceled or timed_out:
                self._terminate(proc)
                break

        reader.join(timeout=self._runner.kill_grace_seconds)
        output = b"".join(chunks).decode("utf-8", errors="replace")
        return CommandResult(
            exit_code=proc.returncode,
            output=output,
            timed_out=timed_out,
            canceled=canceled,
        )

    def _terminate(self, proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGTERM)
            proc.wait(timeout=self._runner.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            os.killpg(proc.pid, signal.SIGKILL)
            proc.wait()
        except ProcessLookupError:
            proc.wait()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        shutil.rmtree(self.workdir, ignore_errors=True)
        self._runner._release_slot()


def _drain(stream, chunks: List[bytes]) -> None:
    for line in iter(stream.readline, b""):
        chunks.append(line)
    stream.close()
