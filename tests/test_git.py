"""Tests for git operations."""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from launchpad.git import (
    GitError,
    GitTimeoutError,
    MergeStatus,
    cleanup_repository_state,
    clone_repository,
    fetch_all_refs,
    get_head_commit,
    hard_reset,
    is_ancestor,
    is_repository_root,
    list_tracking_refs,
    merge_commit,
    merge_in_progress,
    parse_fetch_head,
    read_fetch_head,
)
from launchpad.git.operations import _stream_git_command
from tests.conftest import Upstream, run_git, tree_snapshot


class TestParseFetchHead:
    """Tests for parse_fetch_head()."""

    def test_parses_branch_lines(self) -> None:
        """Should extract commit, branch, url and merge marker."""
        content = (
            f"{'a' * 40}\t\tbranch 'main' of https://example.com/app\n"
            f"{'b' * 40}\tnot-for-merge\tbranch 'dev' of https://example.com/app\n"
        )

        entries = parse_fetch_head(content)

        assert len(entries) == 2
        assert entries[0].commit == "a" * 40
        assert entries[0].ref_name == "main"
        assert entries[0].remote_url == "https://example.com/app"
        assert entries[0].for_merge is True
        assert entries[1].ref_name == "dev"
        assert entries[1].for_merge is False

    def test_parses_tag_lines(self) -> None:
        """Should handle tag entries."""
        entries = parse_fetch_head(f"{'c' * 40}\tnot-for-merge\ttag 'v1.0' of /srv/app\n")

        assert entries[0].ref_name == "v1.0"
        assert entries[0].remote_url == "/srv/app"

    def test_bare_head_fetch(self) -> None:
        """Should treat a description without a ref name as HEAD."""
        entries = parse_fetch_head(f"{'d' * 40}\t\t/srv/app\n")

        assert entries[0].ref_name == "HEAD"
        assert entries[0].remote_url == "/srv/app"

    def test_skips_malformed_lines(self) -> None:
        """Should ignore lines that are not tab separated."""
        assert parse_fetch_head("garbage\n\n") == []


class TestRepositoryInspection:
    """Tests for read-only repository helpers."""

    async def test_is_repository_root(self, installed: Path) -> None:
        """Should accept the working tree root only."""
        assert await is_repository_root(installed) is True
        assert await is_repository_root(installed / "data") is False

    async def test_plain_directory(self, tmp_path: Path) -> None:
        """Should reject a directory outside any repository."""
        plain = tmp_path / "plain"
        plain.mkdir()
        assert await is_repository_root(plain) is False

    async def test_head_commit(self, installed: Path, upstream: Upstream) -> None:
        """Should return the checked-out commit."""
        assert await get_head_commit(installed) == upstream.head()

    async def test_unborn_head(self, tmp_path: Path) -> None:
        """Should return None for a repository without commits."""
        empty = tmp_path / "empty"
        empty.mkdir()
        run_git(["init", "-q"], empty)

        assert await get_head_commit(empty) is None

    async def test_is_ancestor(self, installed: Path) -> None:
        """Should follow commit ancestry."""
        head = run_git(["rev-parse", "HEAD"], installed)
        parent = run_git(["rev-parse", "HEAD~1"], installed)

        assert await is_ancestor(installed, parent, head) is True
        assert await is_ancestor(installed, head, parent) is False

    async def test_is_ancestor_unknown_commit(self, installed: Path) -> None:
        """Should raise GitError for an unknown commit."""
        with pytest.raises(GitError):
            await is_ancestor(installed, "f" * 40, "HEAD")


class TestFetch:
    """Tests for fetch_all_refs() and friends."""

    async def test_fetch_records_tips(self, installed: Path, upstream: Upstream) -> None:
        """Should write tracking refs and FETCH_HEAD."""
        chunks: list[str] = []

        await fetch_all_refs(installed, upstream.url, chunks.append)

        refs = await list_tracking_refs(installed)
        assert refs == {"main": upstream.head()}
        entries = await read_fetch_head(installed)
        assert [(e.ref_name, e.commit) for e in entries] == [("main", upstream.head())]

    async def test_fetch_does_not_configure_remote(self, installed: Path, upstream: Upstream) -> None:
        """Should leave the repository's remote configuration untouched."""
        before = run_git(["remote"], installed)

        await fetch_all_refs(installed, upstream.url, lambda chunk: None)

        assert run_git(["remote"], installed) == before

    async def test_fetch_failure(self, tmp_path: Path, installed: Path) -> None:
        """Should raise GitError with git's message when the remote is missing."""
        with pytest.raises(GitError) as exc_info:
            await fetch_all_refs(installed, str(tmp_path / "nowhere"), lambda chunk: None)

        assert str(exc_info.value)

    async def test_stream_timeout_kills_process(self, tmp_path: Path) -> None:
        """Should raise GitTimeoutError when the command outlives its deadline."""
        real_exec = asyncio.create_subprocess_exec

        async def slow_exec(*args: str, **kwargs: object) -> asyncio.subprocess.Process:
            return await real_exec(sys.executable, "-c", "import time; time.sleep(30)", **kwargs)

        with patch("launchpad.git.operations.asyncio.create_subprocess_exec", slow_exec):
            with pytest.raises(GitTimeoutError):
                await _stream_git_command(["fetch"], tmp_path, lambda chunk: None, timeout=0.5)

    async def test_stream_without_pipes(self, tmp_path: Path) -> None:
        """Should raise GitError instead of reading from a missing pipe."""
        proc = MagicMock(stdout=None, stderr=None, returncode=0)

        with patch(
            "launchpad.git.operations.asyncio.create_subprocess_exec",
            AsyncMock(return_value=proc),
        ), pytest.raises(GitError, match="capture output"):
            await _stream_git_command(["fetch"], tmp_path, lambda chunk: None)


class TestMergeAndReset:
    """Tests for merge_commit(), hard_reset() and cleanup_repository_state()."""

    async def test_clean_fast_forward_merge(self, installed: Path, upstream: Upstream) -> None:
        """Should merge a descendant cleanly."""
        new_head = upstream.commit({"app.py": "print('v3')\n"})
        run_git(["fetch", "-q", upstream.url, "main"], installed)

        assert await merge_commit(installed, new_head) == MergeStatus.CLEAN

    async def test_conflicting_merge(self, installed: Path, upstream: Upstream) -> None:
        """Should report textual conflicts without raising."""
        (installed / "app.py").write_text("print('local')\n")
        run_git(["commit", "-q", "-am", "Local"], installed)
        new_head = upstream.commit({"app.py": "print('remote')\n"})
        run_git(["fetch", "-q", upstream.url, "main"], installed)

        status = await merge_commit(installed, new_head)

        assert status == MergeStatus.CONFLICTED
        assert await merge_in_progress(installed) is True

    async def test_merge_blocked_by_local_changes(self, installed: Path, upstream: Upstream) -> None:
        """Should report a merge refused because of uncommitted edits."""
        (installed / "app.py").write_text("print('edited')\n")
        new_head = upstream.commit({"app.py": "print('v3')\n"})
        run_git(["fetch", "-q", upstream.url, "main"], installed)

        assert await merge_commit(installed, new_head) == MergeStatus.BLOCKED

    async def test_merge_unknown_commit(self, installed: Path) -> None:
        """Should raise GitError when the merge itself cannot run."""
        with pytest.raises(GitError):
            await merge_commit(installed, "0" * 40)

    async def test_cleanup_aborts_merge(self, installed: Path, upstream: Upstream) -> None:
        """Should restore the pre-merge tree when a merge is left unfinished."""
        (installed / "app.py").write_text("print('local')\n")
        run_git(["commit", "-q", "-am", "Local"], installed)
        before = tree_snapshot(installed)
        new_head = upstream.commit({"app.py": "print('remote')\n"})
        run_git(["fetch", "-q", upstream.url, "main"], installed)
        await merge_commit(installed, new_head)

        await cleanup_repository_state(installed)

        assert await merge_in_progress(installed) is False
        assert tree_snapshot(installed) == before

    async def test_cleanup_without_merge_is_noop(self, installed: Path) -> None:
        """Should do nothing when no merge is in progress."""
        before = tree_snapshot(installed)
        await cleanup_repository_state(installed)
        assert tree_snapshot(installed) == before

    async def test_hard_reset_discards_everything(self, installed: Path, upstream: Upstream) -> None:
        """Should drop edits and untracked files but keep ignored ones."""
        upstream.commit({".gitignore": "cache/\n"}, "Ignore cache")
        run_git(["pull", "-q", upstream.url, "main"], installed)
        target = run_git(["rev-parse", "HEAD"], installed)
        (installed / "app.py").write_text("print('edited')\n")
        (installed / "stray.txt").write_text("x")
        (installed / "cache").mkdir()
        (installed / "cache" / "state.bin").write_text("keep")

        await hard_reset(installed, target)

        assert (installed / "app.py").read_text() == "print('v2')\n"
        assert not (installed / "stray.txt").exists()
        assert (installed / "cache" / "state.bin").read_text() == "keep"


class TestClone:
    """Tests for clone_repository()."""

    async def test_creates_parent_directories(self, tmp_path: Path, upstream: Upstream) -> None:
        """Should create missing parents of the target."""
        target = tmp_path / "a" / "b" / "app"

        await clone_repository(upstream.url, target)

        assert tree_snapshot(target) == upstream.tree()

    async def test_clone_failure(self, tmp_path: Path) -> None:
        """Should raise GitError for an unreachable remote."""
        with pytest.raises(GitError):
            await clone_repository(str(tmp_path / "missing"), tmp_path / "app")
