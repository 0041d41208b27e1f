"""Git backend: subprocess wrappers around the git command-line client."""

from launchpad.git.operations import (
    FETCH_REFSPEC,
    TRACKING_NAMESPACE,
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
    merge_in_progress,
    parse_fetch_head,
    read_fetch_head,
)

__all__ = [
    "FETCH_REFSPEC",
    "TRACKING_NAMESPACE",
    "FetchHeadEntry",
    "GitError",
    "GitTimeoutError",
    "MergeStatus",
    # Inspection
    "is_repository_root",
    "get_head_commit",
    "is_ancestor",
    "list_tracking_refs",
    "parse_fetch_head",
    "read_fetch_head",
    "merge_in_progress",
    # Mutation
    "clone_repository",
    "fetch_all_refs",
    "merge_commit",
    "hard_reset",
    "cleanup_repository_state",
]
