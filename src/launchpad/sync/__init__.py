"""Synchronization of the local application copy with its remote.

The sync runs as a straight-line pipeline:
- Detect whether the target directory exists
- Clone on first run, otherwise fetch, analyze and hard-reset
- Stream fetch progress to an optional sink
"""

from launchpad.sync.detector import is_existing_repository
from launchpad.sync.engine import (
    DEFAULT_BRANCH,
    DEFAULT_FETCH_TIMEOUT,
    FetchResult,
    LocalRepository,
    MergeAnalysis,
    SyncAction,
    SyncResult,
    SyncTarget,
    UpdateCheck,
    check_for_updates,
    clone,
    open_repository,
    resolve_merge_target,
    sync,
    update,
)
from launchpad.sync.progress import (
    ConsoleProgressReporter,
    GitProgressParser,
    ProgressEvent,
    ProgressSink,
    RefUpdate,
    SidebandMessage,
    TransferProgress,
)

__all__ = [
    "DEFAULT_BRANCH",
    "DEFAULT_FETCH_TIMEOUT",
    "SyncTarget",
    "SyncAction",
    "SyncResult",
    "FetchResult",
    "MergeAnalysis",
    "UpdateCheck",
    "LocalRepository",
    "is_existing_repository",
    "open_repository",
    "resolve_merge_target",
    "clone",
    "update",
    "sync",
    "check_for_updates",
    # Progress
    "ProgressEvent",
    "ProgressSink",
    "TransferProgress",
    "RefUpdate",
    "SidebandMessage",
    "GitProgressParser",
    "ConsoleProgressReporter",
]
