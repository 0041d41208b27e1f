"""Sync engine: bring the target directory to the remote's latest state.

The flow is:
1. Detect whether the target directory exists
2. First run: clone the remote's default branch
3. Otherwise open the repository and fetch every branch from the remote
4. Resolve the tracked branch among the fetched ref tips
5. Compare HEAD with that commit
6. If behind or diverged, merge and then hard-reset to the fetched commit

Every failure is raised as a SyncError variant naming the failing step. The
working tree is only touched in step 6, and a hard reset always follows the
merge, so the tree either ends up matching the remote exactly or keeps its
previous state.
"""

import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Final

from launchpad.errors import (
    CloneFailed,
    ConfigError,
    FetchFailed,
    MergeFailed,
    NoMergeTarget,
    NotARepository,
    ResetFailed,
    SyncTimeout,
)
from launchpad.git import (
    FetchHeadEntry,
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
    read_fetch_head,
)
from launchpad.sync.detector import is_existing_repository
from launchpad.sync.progress import GitProgressParser, ProgressSink, diff_refs, emit

logger = logging.getLogger(__name__)

DEFAULT_BRANCH: Final = "main"
DEFAULT_FETCH_TIMEOUT: Final = 300.0


class MergeAnalysis(str, Enum):
    """Relationship between the local HEAD and the fetched commit."""

    UP_TO_DATE = "up_to_date"
    FAST_FORWARD = "fast_forward"
    NORMAL = "normal"  # histories diverged


class SyncAction(str, Enum):
    """What a sync run did to the target directory."""

    CLONED = "cloned"
    UP_TO_DATE = "up_to_date"
    UPDATED = "updated"


@dataclass
class SyncTarget:
    """Where to sync from and to."""

    remote_location: str
    target_path: Path
    branch: str = DEFAULT_BRANCH

    def __post_init__(self) -> None:
        if not str(self.remote_location).strip():
            raise ConfigError("Remote location must not be empty")
        if not str(self.target_path).strip():
            raise ConfigError("Target path must not be empty")
        if not self.branch.strip():
            raise ConfigError("Branch name must not be empty")
        self.target_path = Path(self.target_path)


@dataclass(frozen=True)
class FetchResult:
    """Outcome of the fetch and analysis steps."""

    updated_ref: str
    is_up_to_date: bool
    analysis: MergeAnalysis


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a complete sync run."""

    action: SyncAction
    commit: str | None = None
    fetch: FetchResult | None = None


@dataclass(frozen=True)
class UpdateCheck:
    """Outcome of a read-only check for updates."""

    installed: bool
    analysis: MergeAnalysis | None = None
    local_commit: str | None = None
    remote_commit: str | None = None

    @property
    def update_available(self) -> bool:
        return not self.installed or self.analysis != MergeAnalysis.UP_TO_DATE


def resolve_merge_target(entries: list[FetchHeadEntry], branch: str) -> FetchHeadEntry:
    """Pick the fetched tip of ``branch``, preferring entries marked for merge.

    Raises:
        NoMergeTarget: If the fetch did not include ``branch``
    """
    candidates = [
        entry
        for entry in entries
        if entry.ref_name in (branch, f"refs/heads/{branch}")
    ]
    if not candidates:
        raise NoMergeTarget(branch)
    candidates.sort(key=lambda entry: not entry.for_merge)
    return candidates[0]


class LocalRepository:
    """An open local repository, owned by a single sync run.

    Obtain one through ``open_repository`` so that it is released on every
    exit path.
    """

    def __init__(self, path: Path):
        self.path = path
        self._released = False

    async def head(self) -> str | None:
        return await get_head_commit(self.path)

    async def fetch(
        self,
        remote_location: str,
        sink: ProgressSink | None = None,
        timeout: float | None = DEFAULT_FETCH_TIMEOUT,
    ) -> list[FetchHeadEntry]:
        """Fetch all branches from ``remote_location`` and return the fetched tips.

        Raises:
            SyncTimeout: If the fetch exceeds ``timeout``
            FetchFailed: If the remote cannot be reached or read
        """
        parser = GitProgressParser(sink)
        try:
            before = await list_tracking_refs(self.path)
            await fetch_all_refs(self.path, remote_location, parser.feed, timeout=timeout)
            parser.close()
            after = await list_tracking_refs(self.path)
            entries = await read_fetch_head(self.path)
        except GitTimeoutError as err:
            raise SyncTimeout("Fetch", err.timeout) from err
        except GitError as err:
            raise FetchFailed(str(err)) from err

        for update in diff_refs(before, after):
            emit(sink, update)
        return entries

    async def analyze(self, commit: str) -> MergeAnalysis:
        """Classify how HEAD relates to ``commit``. Read-only."""
        try:
            head = await get_head_commit(self.path)
            if head is None:
                return MergeAnalysis.FAST_FORWARD
            if head == commit or await is_ancestor(self.path, commit, head):
                return MergeAnalysis.UP_TO_DATE
            if await is_ancestor(self.path, head, commit):
                return MergeAnalysis.FAST_FORWARD
        except GitError as err:
            raise MergeFailed(str(err)) from err
        return MergeAnalysis.NORMAL

    async def merge(self, commit: str) -> MergeStatus:
        """Merge ``commit`` into the working tree; conflicts are left for the reset."""
        try:
            status = await merge_commit(self.path, commit)
        except GitError as err:
            raise MergeFailed(str(err)) from err
        if status != MergeStatus.CLEAN:
            logger.debug("Merge of %s was %s; discarding via hard reset", commit[:10], status.value)
        return status

    async def hard_reset(self, commit: str) -> None:
        try:
            await hard_reset(self.path, commit)
        except GitError as err:
            raise ResetFailed(str(err)) from err

    async def discard_unfinished_merge(self) -> None:
        """Abort a merge left in progress, restoring the pre-merge tree."""
        try:
            await cleanup_repository_state(self.path)
        except GitError as e:
            logger.warning("Failed to clean up repository state in %s: %s", self.path, e)

    async def release(self) -> None:
        """Clean up any unfinished merge state. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        await self.discard_unfinished_merge()


@contextlib.asynccontextmanager
async def open_repository(path: Path) -> AsyncIterator[LocalRepository]:
    """Open the repository at ``path`` for the duration of the block.

    Raises:
        NotARepository: If ``path`` is not the root of a git working tree
    """
    if not await is_repository_root(path):
        raise NotARepository(path)

    repo = LocalRepository(path)
    # A run killed between merge and reset leaves MERGE_HEAD behind
    await repo.discard_unfinished_merge()
    try:
        yield repo
    finally:
        await repo.release()


async def clone(
    remote_location: str,
    target_path: Path,
    timeout: float | None = DEFAULT_FETCH_TIMEOUT,
) -> str | None:
    """Perform the first-run clone and return the checked-out commit.

    A failed clone may leave a partial directory behind, so callers must not
    treat the target as launchable after CloneFailed.

    Raises:
        CloneFailed: On any failure, including exceeding ``timeout``
    """
    logger.info("Downloading app")
    try:
        await clone_repository(remote_location, target_path, timeout=timeout)
        return await get_head_commit(target_path)
    except GitTimeoutError as err:
        raise CloneFailed(f"timed out after {err.timeout:g}s") from err
    except (GitError, OSError) as err:
        raise CloneFailed(str(err)) from err


async def update(
    target: SyncTarget,
    sink: ProgressSink | None = None,
    timeout: float | None = DEFAULT_FETCH_TIMEOUT,
) -> SyncResult:
    """Fetch, analyze and, when behind, merge then hard-reset an existing copy."""
    async with open_repository(target.target_path) as repo:
        logger.info("Checking for updates")
        entries = await repo.fetch(target.remote_location, sink, timeout=timeout)
        merge_target = resolve_merge_target(entries, target.branch)
        analysis = await repo.analyze(merge_target.commit)

        if analysis == MergeAnalysis.UP_TO_DATE:
            logger.info("Already up to date")
            return SyncResult(
                action=SyncAction.UP_TO_DATE,
                commit=await repo.head(),
                fetch=FetchResult(merge_target.commit, True, analysis),
            )

        logger.info("Applying update")
        await repo.merge(merge_target.commit)
        await repo.hard_reset(merge_target.commit)
        logger.info("Updated to %s", merge_target.commit[:10])

        return SyncResult(
            action=SyncAction.UPDATED,
            commit=merge_target.commit,
            fetch=FetchResult(merge_target.commit, False, analysis),
        )


async def sync(
    target: SyncTarget,
    sink: ProgressSink | None = None,
    timeout: float | None = DEFAULT_FETCH_TIMEOUT,
) -> SyncResult:
    """Bring ``target`` up to date, cloning it first if it does not exist.

    Raises:
        RepositoryProbeError: If the target exists but cannot be opened
        SyncError: If any sync step fails
    """
    if not is_existing_repository(target.target_path):
        commit = await clone(target.remote_location, target.target_path, timeout=timeout)
        return SyncResult(action=SyncAction.CLONED, commit=commit)
    return await update(target, sink, timeout=timeout)


async def check_for_updates(
    target: SyncTarget,
    sink: ProgressSink | None = None,
    timeout: float | None = DEFAULT_FETCH_TIMEOUT,
) -> UpdateCheck:
    """Fetch and compare without touching the working tree."""
    if not is_existing_repository(target.target_path):
        return UpdateCheck(installed=False)

    async with open_repository(target.target_path) as repo:
        entries = await repo.fetch(target.remote_location, sink, timeout=timeout)
        merge_target = resolve_merge_target(entries, target.branch)
        return UpdateCheck(
            installed=True,
            analysis=await repo.analyze(merge_target.commit),
            local_commit=await repo.head(),
            remote_commit=merge_target.commit,
        )
