"""Tests for the fix/retry loop."""

from __future__ import annotations

import io
import logging
import shutil
from pathlib import Path

import pytest
from rich.console import Console

from cign.core import (
    CustomEntry,
    EntryState,
    FixLoop,
    RepoEntry,
    Resolution,
    collect_failing,
)
from cign.exceptions import DiscoveryError


def make_console() -> Console:
    return Console(file=io.StringIO(), soft_wrap=True, highlight=False)


def never_asked(message: str) -> bool:
    raise AssertionError(f"unexpected prompt: {message}")


@pytest.fixture
def dirty_repo(repos) -> Path:
    repo = repos.init("project")
    (repo / "junk.txt").write_text("leftover\n")
    return repo


def test_fixed_entry_resolves_without_prompting(dirty_repo):
    calls = []

    def runner(command, cwd=None, env=None):
        calls.append((command, cwd, Path.cwd()))
        (dirty_repo / "junk.txt").unlink()
        return 0

    loop = FixLoop("tidy", make_console(), confirm=never_asked, runner=runner)
    [outcome] = loop.run(collect_failing([RepoEntry(str(dirty_repo))]))

    assert outcome.state is EntryState.RESOLVED
    assert outcome.resolution is Resolution.FIXED
    assert outcome.attempts == 1
    assert outcome.last_result.is_all_good()
    assert calls == [("tidy", dirty_repo, dirty_repo.resolve())]


def test_declining_retry_stops_after_one_attempt(dirty_repo):
    prompts = []
    attempts = []

    def decline(message):
        prompts.append(message)
        return False

    def runner(command, cwd=None, env=None):
        attempts.append(command)
        return 0

    loop = FixLoop("true", make_console(), confirm=decline, runner=runner)
    [outcome] = loop.run(collect_failing([RepoEntry(str(dirty_repo))]))

    assert attempts == ["true"]
    assert outcome.resolution is Resolution.DECLINED
    assert outcome.attempts == 1
    assert not outcome.last_result.is_all_good()
    assert prompts == [f"{dirty_repo}: still failing (1 uncommitted change(s)). Retry?"]
    assert (dirty_repo / "junk.txt").exists()


def test_accepting_retry_runs_the_command_again(dirty_repo):
    answers = iter([True])

    def runner(command, cwd=None, env=None):
        if runner.calls == 1:
            (dirty_repo / "junk.txt").unlink()
        runner.calls += 1
        return 0

    runner.calls = 0
    loop = FixLoop("sh", make_console(), confirm=lambda message: next(answers), runner=runner)
    [outcome] = loop.run(collect_failing([RepoEntry(str(dirty_repo))]))

    assert outcome.attempts == 2
    assert outcome.resolution is Resolution.FIXED


def test_failing_command_is_logged_but_not_fatal(dirty_repo, caplog):
    def runner(command, cwd=None, env=None):
        (dirty_repo / "junk.txt").unlink()
        return 7

    with caplog.at_level(logging.WARNING, logger="cign"):
        [outcome] = FixLoop("x", make_console(), confirm=never_asked, runner=runner).run(
            collect_failing([RepoEntry(str(dirty_repo))])
        )

    assert outcome.resolution is Resolution.FIXED
    assert "command exited with code 7" in caplog.text


def test_progress_lines_and_cwd_restored(repos):
    first = repos.init("first")
    second = repos.init("second")
    for repo in (first, second):
        (repo / "junk.txt").write_text("x\n")
    before = Path.cwd()
    console = make_console()

    def runner(command, cwd=None, env=None):
        (cwd / "junk.txt").unlink()
        return 0

    loop = FixLoop("tidy", console, confirm=never_asked, runner=runner)
    outcomes = loop.run(collect_failing([RepoEntry(str(first)), RepoEntry(str(second))]))

    output = console.file.getvalue()
    assert output.splitlines() == [
        "Fixing 2 git dirs",
        f"1/2: Fixing git dir {first}",
        f"1/2: Leaving {first}",
        f"2/2: Fixing git dir {second}",
        f"2/2: Leaving {second}",
    ]
    assert [o.identity for o in outcomes] == [str(first), str(second)]
    assert Path.cwd() == before


def test_clean_entries_are_not_visited(repos):
    clean = repos.init("clean")

    records = collect_failing([RepoEntry(str(clean))])
    outcomes = FixLoop("tidy", make_console(), confirm=never_asked, runner=None).run(records)

    assert records == []
    assert outcomes == []


def test_custom_entries_are_rechecked_with_their_check_command(tmp_path):
    directory = tmp_path / "notes"
    directory.mkdir()
    entry = CustomEntry(name="notes", path=str(directory), check_cmd="test -f done")
    console = make_console()

    def runner(command, cwd=None, env=None):
        (cwd / "done").touch()
        return 0

    [outcome] = FixLoop("edit", console, confirm=never_asked, runner=runner).run(
        collect_failing([entry])
    )

    assert outcome.resolution is Resolution.FIXED
    lines = console.file.getvalue().splitlines()
    assert lines[0] == "Fixing 1 custom dirs"
    assert lines[1] == f"1/1: Fixing custom dir 'notes' ({directory}, check_cmd: 'test -f done')"
    assert lines[2] == f"1/1: Leaving 'notes' ({directory})"


def test_vanished_entry_is_skipped(dirty_repo, caplog):
    records = collect_failing([RepoEntry(str(dirty_repo))])
    shutil.rmtree(dirty_repo)

    with caplog.at_level(logging.WARNING, logger="cign"):
        [outcome] = FixLoop("tidy", make_console(), confirm=never_asked, runner=None).run(records)

    assert outcome.resolution is Resolution.SKIPPED
    assert outcome.attempts == 0
    assert "Skipping because fixing failed" in caplog.text


def test_vanished_entry_aborts_with_no_skip(dirty_repo):
    records = collect_failing([RepoEntry(str(dirty_repo))])
    shutil.rmtree(dirty_repo)
    before = Path.cwd()

    loop = FixLoop("tidy", make_console(), no_skip=True, confirm=never_asked, runner=None)
    with pytest.raises(DiscoveryError):
        loop.run(records)

    assert Path.cwd() == before
