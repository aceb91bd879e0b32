# tests/core/runtime/test_source_control.py
"""
Testes dos provedores de metadados de controle de versão.

Os testes asseguram que:
- StaticSourceControl devolve os valores fixos
- GitSourceControl lê o branch ativo e a profundidade de commits
- HEAD destacado devolve o hash curto do commit
- diretório fora de um repositório é SourceControlError

Limites explícitos:
    - Testes de git são ignorados sem o executável `git`
"""

import shutil

import pytest

try:
    from atlas_ci.core.runtime import GitSourceControl, SourceControlError, StaticSourceControl
except Exception as e:  # noqa: BLE001
    GitSourceControl = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="executável git ausente")


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Falha ao importar atlas_ci.core.runtime.scm.\nErro original: {_IMPORT_ERR!r}")


def _repo_with_commits(path, n):
    import git

    repo = git.Repo.init(path)
    for i in range(n):
        f = path / f"file{i}.txt"
        f.write_text(str(i), encoding="utf-8")
        repo.index.add([str(f)])
        repo.index.commit(f"commit {i}")
    repo.git.checkout("-b", "feature")
    return repo


def test_static_source_control():
    _require_imports()
    scm = StaticSourceControl(ref="master", depth=42)
    assert scm.current_ref() == "master"
    assert scm.commit_depth() == 42


@needs_git
def test_git_branch_and_depth(tmp_path):
    _require_imports()
    repo = _repo_with_commits(tmp_path, 3)
    repo.close()

    scm = GitSourceControl(str(tmp_path))
    assert scm.current_ref() == "feature"
    assert scm.commit_depth() == 3
    assert scm.project_name == tmp_path.name


@needs_git
def test_git_detached_head_uses_short_hash(tmp_path):
    _require_imports()
    repo = _repo_with_commits(tmp_path, 2)
    sha = repo.head.commit.hexsha
    repo.git.checkout(sha)
    repo.close()

    assert GitSourceControl(str(tmp_path)).current_ref() == sha[:8]


@needs_git
def test_git_subdirectory_finds_repository(tmp_path):
    _require_imports()
    _repo_with_commits(tmp_path, 1).close()
    sub = tmp_path / "crates" / "core"
    sub.mkdir(parents=True)

    assert GitSourceControl(str(sub)).commit_depth() == 1


@needs_git
def test_not_a_repository(tmp_path):
    _require_imports()
    plain = tmp_path / "plain"
    plain.mkdir()
    with pytest.raises(SourceControlError):
        GitSourceControl(str(plain)).current_ref()
