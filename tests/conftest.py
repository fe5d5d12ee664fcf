from __future__ import annotations

import itertools
import subprocess
from pathlib import Path

import pytest


class Repos:
    """Builds throw-away git repositories under a temporary directory."""

    def __init__(self, root: Path):
        self.root = root
        self._counter = itertools.count()

    def git(self, repo: Path, *args: str, check: bool = True) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=repo,
            capture_output=True,
            text=True,
            check=check,
        )
        return result.stdout.strip()

    def init(self, name: str, commit: bool = True) -> Path:
        repo = self.root / name
        repo.mkdir(parents=True, exist_ok=True)
        self.git(repo, "init", "-q")
        self.git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
        if commit:
            self.commit(repo)
        return repo

    def commit(self, repo: Path, name: str = "README.md", content: str | None = None) -> str:
        if content is None:
            content = f"revision {next(self._counter)}\n"
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        self.git(repo, "add", name)
        self.git(repo, "commit", "-q", "-m", f"Update {name}")
        return self.git(repo, "rev-parse", "HEAD")

    def clone(self, source: Path, name: str) -> Path:
        target = self.root / name
        self.git(self.root, "clone", "-q", str(source), str(target))
        return target


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Cign Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "cign@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Cign Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "cign@example.com")
    for var in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE", "UNDEFINED_VAR"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return home


@pytest.fixture
def repos(tmp_path) -> Repos:
    return Repos(tmp_path)


@pytest.fixture
def tracked_pair(repos) -> tuple[Path, Path]:
    """An upstream repository and a clone tracking its main branch."""
    upstream = repos.init("upstream")
    clone = repos.clone(upstream, "work")
    return upstream, clone
