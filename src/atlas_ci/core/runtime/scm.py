# src/atlas_ci/core/runtime/scm.py
"""
Provedores de metadados de controle de versão (`SourceControl`).

- GitSourceControl: lê o repositório local via GitPython
- StaticSourceControl: valores fixos (CLI `--ref`, testes)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


class SourceControlError(RuntimeError):
    """Repositório inexistente ou sem metadados suficientes."""


@dataclass(frozen=True)
class StaticSourceControl:
    ref: str
    depth: int = 0

    def current_ref(self) -> str:
        return self.ref

    def commit_depth(self) -> int:
        return self.depth


class GitSourceControl:
    """
    SourceControl de um working tree git.

    `current_ref` devolve o nome do branch ativo ou, com HEAD destacado,
    o hash curto do commit. `commit_depth` conta os commits alcançáveis
    a partir de HEAD (em clones rasos, apenas os presentes localmente).
    """

    def __init__(self, path: str = "."):
        self.path = Path(path)

    def _open(self):
        # GitPython exige o executável `git` já no import
        try:
            from git import InvalidGitRepositoryError, NoSuchPathError, Repo as GitRepo
        except ImportError as e:
            raise SourceControlError(f"GitPython unavailable: {e}") from e
        try:
            return GitRepo(self.path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise SourceControlError(f"not a git repository: {self.path}") from e

    def current_ref(self) -> str:
        repo = self._open()
        try:
            if repo.head.is_detached:
                return repo.head.commit.hexsha[:8]
            return repo.active_branch.name
        except ValueError as e:
            # repositório sem commits
            raise SourceControlError(f"repository has no commits: {self.path}") from e
        finally:
            repo.close()

    def commit_depth(self) -> int:
        repo = self._open()
        from git import GitCommandError

        try:
            if not repo.head.is_valid():
                return 0
            return int(repo.git.rev_list("--count", "HEAD"))
        except GitCommandError as e:
            raise SourceControlError(f"git rev-list failed: {e}") from e
        finally:
            repo.close()

    @property
    def project_name(self) -> str:
        repo = self._open()
        try:
            return Path(repo.working_tree_dir or self.path.resolve()).name
        finally:
            repo.close()
