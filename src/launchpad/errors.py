"""Error taxonomy for the launcher.

Three families, each with its own propagation policy:
- ConfigError: raised before any sync attempt, always fatal
- SyncError: raised by the sync engine, reported and swallowed by ``run``
  except CloneFailed, which leaves nothing to launch
- LaunchError: raised by the launch supervisor, always fatal
"""


class LaunchpadError(Exception):
    """Base class for all launcher errors."""

    pass


class ConfigError(LaunchpadError):
    """Raised when the launcher configuration is missing or invalid."""

    pass


class RepositoryProbeError(ConfigError):
    """Raised when the target directory cannot be probed for a reason other than absence."""

    pass


class SyncError(LaunchpadError):
    """Raised when synchronizing the local copy with the remote fails."""

    pass


class CloneFailed(SyncError):
    """The initial clone of the remote failed."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Clone failed: {detail}")


class NotARepository(SyncError):
    """The target directory exists but is not a repository root."""

    def __init__(self, path: object):
        self.path = path
        super().__init__(f"Directory is not a repository: {path}")


class FetchFailed(SyncError):
    """Fetching from the remote failed."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Fetch failed: {detail}")


class NoMergeTarget(SyncError):
    """The fetch did not return the tracked branch."""

    def __init__(self, branch: str):
        self.branch = branch
        super().__init__(f"Remote has no branch named '{branch}'")


class MergeFailed(SyncError):
    """The merge primitive itself errored (not a textual conflict)."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Merge failed: {detail}")


class ResetFailed(SyncError):
    """The hard reset to the target commit failed."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Reset failed: {detail}")


class SyncTimeout(SyncError):
    """A network operation exceeded its deadline."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


class LaunchError(LaunchpadError):
    """Raised when the application cannot be launched."""

    pass


class SpawnFailed(LaunchError):
    """The executable is missing, not executable, or could not be spawned."""

    def __init__(self, executable: object, reason: str):
        self.executable = executable
        self.reason = reason
        super().__init__(f"Cannot launch {executable}: {reason}")
