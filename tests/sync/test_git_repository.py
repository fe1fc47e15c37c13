"""Tests for the git-backed repository adapter.

These run the real git binary against temporary directories; a bare
repository stands in for the shared remote.
"""

import asyncio

import pytest

from compound_kb.sync import git_repository
from compound_kb.sync.git_repository import LOCK_FILE_NAME, GitCommandError, GitTimeoutError
from compound_kb.sync.lock import RepositoryLock
from compound_kb.sync.process import CommandResult
from tests.conftest import git, make_repo


@pytest.mark.asyncio
async def test_init_creates_default_structure(repo):
    result = await repo.clone_or_init()

    assert result.success
    assert result.commit_id
    assert repo.exists()
    assert (repo.path / "README.md").is_file()
    assert (repo.path / "knowledge" / "general" / ".gitkeep").is_file()
    assert (repo.path / "knowledge" / "infra" / "devops" / ".gitkeep").is_file()
    assert await repo.current_branch() == "main"
    assert not (repo.path / LOCK_FILE_NAME).exists()

    exclude = (repo.path / ".git" / "info" / "exclude").read_text()
    assert LOCK_FILE_NAME in exclude.splitlines()
    assert git(repo.path, "status", "--porcelain") == ""


@pytest.mark.asyncio
async def test_clone_or_init_is_idempotent(local_repo):
    head = await local_repo.current_commit()
    again = await local_repo.clone_or_init()
    assert again.success
    assert again.commit_id == head
    assert git(local_repo.path, "rev-list", "--count", "HEAD").strip() == "1"


@pytest.mark.asyncio
async def test_local_only_repository_has_no_remote(local_repo):
    assert not await local_repo.has_remote()
    pulled = await local_repo.pull()
    assert pulled.success
    assert pulled.commit_id == await local_repo.current_commit()

    pushed = await local_repo.push()
    assert not pushed.success
    assert pushed.error == "No remote configured"


@pytest.mark.asyncio
async def test_add_and_commit_specific_files(local_repo):
    local_repo.write_file("knowledge/general/a.md", "a\n")
    local_repo.write_file("knowledge/general/b.md", "b\n")

    result = await local_repo.add_and_commit("add a", ["knowledge/general/a.md"])
    assert result.success
    assert result.commit_id == await local_repo.current_commit()
    assert git(local_repo.path, "status", "--porcelain").strip() == "?? knowledge/general/b.md"
    assert git(local_repo.path, "log", "-1", "--format=%s").strip() == "add a"


@pytest.mark.asyncio
async def test_commit_with_clean_tree_is_noop(local_repo):
    head = await local_repo.current_commit()
    result = await local_repo.add_and_commit("nothing")
    assert result.success
    assert result.commit_id == head


@pytest.mark.asyncio
async def test_commit_uses_fallback_identity_without_user_email(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in ("XDG_CONFIG_HOME", "GIT_CONFIG_GLOBAL", "GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("GIT_AUTHOR_EMAIL", raising=False)
    monkeypatch.delenv("GIT_COMMITTER_EMAIL", raising=False)
    monkeypatch.delenv("EMAIL", raising=False)
    repo = make_repo(tmp_path / "work", fallback_author=("Fallback", "fallback@example.com"))

    result = await repo.clone_or_init()
    assert result.success, result.error
    assert git(repo.path, "log", "-1", "--format=%ae").strip() == "fallback@example.com"


@pytest.mark.asyncio
async def test_file_helpers(local_repo):
    assert local_repo.read_file("knowledge/missing.md") is None
    local_repo.write_file("knowledge/a/b/c.md", "content\n")
    assert local_repo.file_exists("knowledge/a/b/c.md")
    assert local_repo.read_file("knowledge/a/b/c.md") == "content\n"

    files = local_repo.list_markdown_files()
    assert files == ["knowledge/a/b/c.md"]
    assert local_repo.list_markdown_files("nowhere") == []


@pytest.mark.asyncio
async def test_file_helpers_reject_paths_outside_repository(local_repo):
    with pytest.raises(ValueError):
        local_repo.write_file("../outside.md", "x")
    with pytest.raises(ValueError):
        local_repo.read_file("../../etc/passwd")


@pytest.mark.asyncio
async def test_push_sets_upstream_and_clone_sees_content(local_repo, remote, tmp_path):
    assert (await local_repo.set_remote(str(remote))).success
    assert await local_repo.has_remote()
    assert not await local_repo.has_upstream()

    local_repo.write_file("knowledge/general/a.md", "a\n")
    commit = await local_repo.add_and_commit("add a")
    pushed = await local_repo.push()
    assert pushed.success, pushed.error
    assert await local_repo.has_upstream()

    clone = make_repo(tmp_path / "clone")
    cloned = await clone.clone_or_init(str(remote))
    assert cloned.success, cloned.error
    assert cloned.commit_id == commit.commit_id
    assert clone.read_file("knowledge/general/a.md") == "a\n"


@pytest.mark.asyncio
async def test_set_remote_updates_existing_url(local_repo, remote):
    await local_repo.set_remote("https://example.invalid/old.git")
    await local_repo.set_remote(str(remote))
    assert git(local_repo.path, "remote", "get-url", "origin").strip() == str(remote)
    assert git(local_repo.path, "remote").split() == ["origin"]


@pytest.mark.asyncio
async def test_clone_or_init_adds_remote_to_existing_repository(local_repo, remote):
    result = await local_repo.clone_or_init(str(remote))
    assert result.success
    assert await local_repo.has_remote()


@pytest.mark.asyncio
async def test_pull_fast_forwards_and_diff_lists_changes(local_repo, remote, tmp_path):
    await local_repo.set_remote(str(remote))
    assert (await local_repo.push()).success

    other = make_repo(tmp_path / "other")
    assert (await other.clone_or_init(str(remote))).success
    before = await other.current_commit()

    local_repo.write_file("knowledge/infra/x.md", "x\n")
    await local_repo.add_and_commit("add x")
    assert (await local_repo.push()).success

    pulled = await other.pull()
    assert pulled.success, pulled.error
    assert pulled.commit_id == await local_repo.current_commit()
    assert other.read_file("knowledge/infra/x.md") == "x\n"
    assert await other.diff_since(before) == ["knowledge/infra/x.md"]


@pytest.mark.asyncio
async def test_first_pull_merges_unrelated_histories(local_repo, remote, tmp_path):
    await local_repo.set_remote(str(remote))
    local_repo.write_file("knowledge/general/from-a.md", "a\n")
    await local_repo.add_and_commit("add a")
    assert (await local_repo.push()).success

    other = make_repo(tmp_path / "other")
    assert (await other.clone_or_init()).success
    other.write_file("knowledge/general/from-b.md", "b\n")
    await other.add_and_commit("add b")
    await other.set_remote(str(remote))

    pulled = await other.pull()
    assert pulled.success, pulled.error
    assert other.read_file("knowledge/general/from-a.md") == "a\n"
    assert other.read_file("knowledge/general/from-b.md") == "b\n"
    assert await other.has_upstream()


@pytest.mark.asyncio
async def test_pull_from_empty_remote_is_noop(local_repo, remote):
    await local_repo.set_remote(str(remote))
    head = await local_repo.current_commit()
    pulled = await local_repo.pull()
    assert pulled.success, pulled.error
    assert pulled.commit_id == head


@pytest.mark.asyncio
async def test_clone_of_empty_remote_then_push(remote, tmp_path):
    repo = make_repo(tmp_path / "work")
    cloned = await repo.clone_or_init(str(remote))
    assert cloned.success, cloned.error
    assert cloned.commit_id is None
    assert await repo.current_branch() == "main"

    repo.write_file("knowledge/general/a.md", "a\n")
    assert (await repo.add_and_commit("first")).success
    pushed = await repo.push()
    assert pushed.success, pushed.error
    assert git(remote, "rev-parse", "main").strip() == pushed.commit_id


@pytest.mark.asyncio
async def test_diff_since_unknown_commit_raises(local_repo):
    with pytest.raises(GitCommandError):
        await local_repo.diff_since("0" * 40)


@pytest.mark.asyncio
async def test_clone_failure_is_reported(tmp_path):
    repo = make_repo(tmp_path / "work")
    result = await repo.clone_or_init(str(tmp_path / "no-such-remote.git"))
    assert not result.success
    assert result.error


@pytest.mark.asyncio
async def test_held_lock_turns_into_failure_result(tmp_path):
    repo = make_repo(tmp_path / "work", lock_max_attempts=3)
    assert (await repo.clone_or_init()).success

    other_process = RepositoryLock(repo.path / LOCK_FILE_NAME)
    assert other_process.acquire()
    try:
        repo.write_file("knowledge/general/a.md", "a\n")
        result = await repo.add_and_commit("blocked")
        assert not result.success
        assert "lock" in result.error.lower()
    finally:
        other_process.release()

    assert (await repo.add_and_commit("unblocked")).success


@pytest.mark.asyncio
async def test_locked_is_reentrant_for_operations(local_repo):
    async with local_repo.locked():
        local_repo.write_file("knowledge/general/a.md", "a\n")
        result = await local_repo.add_and_commit("inside lock")
    assert result.success
    assert not (local_repo.path / LOCK_FILE_NAME).exists()


@pytest.mark.asyncio
async def test_git_lock_conflict_is_retried(tmp_path, monkeypatch):
    calls = []

    async def fake_run(args, **kwargs):
        calls.append(args)
        if len(calls) < 3:
            return CommandResult(
                args=args,
                exit_code=128,
                stderr="fatal: Unable to create '/r/.git/index.lock': File exists.",
            )
        return CommandResult(args=args, exit_code=0, stdout="ok\n")

    monkeypatch.setattr(git_repository, "run_command", fake_run)
    repo = make_repo(tmp_path)
    assert await repo._git("status") == "ok\n"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_other_git_failures_are_not_retried(tmp_path, monkeypatch):
    calls = []

    async def fake_run(args, **kwargs):
        calls.append(args)
        return CommandResult(args=args, exit_code=1, stderr="fatal: bad revision")

    monkeypatch.setattr(git_repository, "run_command", fake_run)
    repo = make_repo(tmp_path)
    with pytest.raises(GitCommandError, match="bad revision"):
        await repo._git("log", "nope")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_timeout_becomes_failure_result(tmp_path, monkeypatch):
    async def fake_run(args, **kwargs):
        return CommandResult(args=args, exit_code=None, timed_out=True)

    monkeypatch.setattr(git_repository, "run_command", fake_run)
    repo = make_repo(tmp_path, timeout=0.5)
    with pytest.raises(GitTimeoutError):
        await repo._git("fetch")

    result = await repo.add_and_commit("never runs")
    assert not result.success
    assert "timed out" in result.error


@pytest.mark.asyncio
async def test_timeout_bounds_whole_operation(tmp_path, monkeypatch):
    """Each command finishes in time, but together they exceed the budget."""

    async def slow_run(args, **kwargs):
        await asyncio.sleep(0.1)
        return CommandResult(args=args, exit_code=0, stdout="x")

    monkeypatch.setattr(git_repository, "run_command", slow_run)
    repo = make_repo(tmp_path, timeout=0.25)

    result = await repo.add_and_commit("slow")
    assert not result.success
    assert result.error == "git commit timed out after 0.25s"
    assert not (tmp_path / LOCK_FILE_NAME).exists()
