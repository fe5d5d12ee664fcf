"""Tests for the refresh driver."""

from __future__ import annotations

import io
import logging
from pathlib import Path

import pytest
from rich.console import Console

from cign.config import Config
from cign.core import CustomEntry, RepoEntry, refresh_all
from cign.exceptions import DiscoveryError


def make_console() -> Console:
    return Console(file=io.StringIO(), soft_wrap=True, highlight=False)


class RecordingRunner:
    def __init__(self, returncode: int = 0):
        self.returncode = returncode
        self.calls = []

    def __call__(self, command, cwd=None, env=None):
        self.calls.append({"command": command, "cwd": cwd, "env": env, "pwd": Path.cwd()})
        return self.returncode


def test_repositories_are_targeted_through_git_dir(repos, tmp_path):
    alpha = repos.init("alpha")
    notes = tmp_path / "notes"
    notes.mkdir()
    config = Config(
        git={str(alpha)},
        custom=[CustomEntry(name="notes", path=str(notes), refresh_cmd="sync-notes")],
        refresh_cmd="git remote update",
    )
    runner = RecordingRunner()

    results = refresh_all(config, console=make_console(), runner=runner)

    repo_call, custom_call = runner.calls
    assert repo_call["command"] == "git remote update"
    assert repo_call["env"] == {"GIT_DIR": str((alpha / ".git").resolve())}
    assert repo_call["cwd"] is None
    assert repo_call["pwd"] == tmp_path
    assert custom_call["command"] == "sync-notes"
    assert custom_call["pwd"] == notes.resolve()
    assert [r.identity for r in results] == [str(alpha), "notes"]


def test_refresh_command_reaches_the_right_repository(repos, tracked_pair):
    upstream, clone = tracked_pair
    repos.commit(upstream)
    config = Config(git={str(clone)}, refresh_cmd="git fetch -q")

    [result] = refresh_all(config, console=make_console())

    assert result.success
    assert RepoEntry(str(clone)).evaluate().commits_behind == 1


def test_progress_lines(repos, tmp_path):
    alpha = repos.init("alpha")
    config = Config(
        git={str(alpha)},
        custom=[CustomEntry(name="notes", path=str(tmp_path), refresh_cmd="true")],
    )
    console = make_console()

    refresh_all(config, console=console, runner=RecordingRunner())

    assert console.file.getvalue().splitlines() == [
        f"[1/1] Refreshing git dir {alpha}:",
        f"[1/1] Refreshing custom dir 'notes' ({tmp_path}, refresh_cmd: 'true'):",
    ]


def test_non_zero_exit_is_only_logged(repos, caplog):
    alpha = repos.init("alpha")
    config = Config(git={str(alpha)})

    with caplog.at_level(logging.WARNING, logger="cign"):
        [result] = refresh_all(config, console=make_console(), runner=RecordingRunner(1))

    assert not result.success
    assert "refresh command exited with code 1" in caplog.text


def test_unopenable_repository_is_skipped(repos, tmp_path, caplog):
    alpha = repos.init("alpha")
    plain = tmp_path / "plain"
    plain.mkdir()
    config = Config(git={str(alpha), str(plain), "$UNDEFINED_VAR/x"})
    runner = RecordingRunner()

    with caplog.at_level(logging.WARNING, logger="cign"):
        results = refresh_all(config, console=make_console(), runner=runner)

    assert [r.identity for r in results] == [str(alpha)]
    assert "Skipping because opening the repo failed" in caplog.text
    assert "Skipping because expanding the path failed" in caplog.text


def test_unopenable_repository_aborts_with_no_skip(tmp_path):
    plain = tmp_path / "plain"
    plain.mkdir()
    runner = RecordingRunner()

    with pytest.raises(DiscoveryError):
        refresh_all(Config(git={str(plain)}), no_skip=True, console=make_console(), runner=runner)

    assert runner.calls == []
