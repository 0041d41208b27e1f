"""Git operations used to clone, fetch and hard-reset the managed application."""

import asyncio
import codecs
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Final

logger = logging.getLogger(__name__)

# Remote-tracking namespace written by anonymous fetches
TRACKING_NAMESPACE: Final = "refs/remotes/launchpad"
FETCH_REFSPEC: Final = f"+refs/heads/*:{TRACKING_NAMESPACE}/*"

# Identity for merges that never get committed
MERGE_IDENTITY: Final = ["-c", "user.name=launchpad", "-c", "user.email=launchpad@localhost"]

_STDERR_CHUNK_SIZE: Final = 4096


class GitError(Exception):
    """Raised when a git operation fails."""

    pass


class GitTimeoutError(GitError):
    """Raised when a git command does not finish before its deadline."""

    def __init__(self, cmd: list[str], timeout: float):
        self.timeout = timeout
        super().__init__(f"Git command timed out after {timeout:g}s: {' '.join(cmd)}")


class MergeStatus(str, Enum):
    """How a merge into the working tree ended."""

    CLEAN = "clean"
    CONFLICTED = "conflicted"
    BLOCKED = "blocked"  # refused because of local modifications


@dataclass(frozen=True)
class FetchHeadEntry:
    """A ref tip recorded in FETCH_HEAD by the most recent fetch."""

    commit: str
    ref_name: str
    remote_url: str
    for_merge: bool


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        proc.kill()
        await proc.wait()


async def _run_git_command(
    args: list[str], cwd: Path, timeout: float | None = 30.0
) -> tuple[str, str, int]:
    """Run a git command and return stdout, stderr, and return code."""
    cmd = ["git"] + args
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as err:
        raise GitError(f"Failed to run git command: {err}") from err

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError as err:
        await _kill(proc)
        raise GitTimeoutError(cmd, timeout or 0) from err

    return (
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
        proc.returncode or 0,
    )


async def _stream_git_command(
    args: list[str],
    cwd: Path,
    on_stderr: Callable[[str], None],
    timeout: float | None = None,
) -> tuple[str, str, int]:
    """Run a git command, handing each stderr chunk to ``on_stderr`` as it arrives.

    Progress output from git is carriage-return terminated, so stderr is read in
    raw chunks rather than lines. The whole command runs under ``timeout``; on
    expiry the process is killed and GitTimeoutError is raised.
    """
    cmd = ["git"] + args
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as err:
        raise GitError(f"Failed to run git command: {err}") from err

    stderr_stream = proc.stderr
    stdout_stream = proc.stdout
    if stderr_stream is None or stdout_stream is None:
        await _kill(proc)
        raise GitError(f"Failed to capture output of git {args[0]}")
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    stderr_parts: list[str] = []

    async def _pump_stderr() -> None:
        while True:
            chunk = await stderr_stream.read(_STDERR_CHUNK_SIZE)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                stderr_parts.append(text)
                on_stderr(text)
            if not chunk:
                break

    async def _collect() -> bytes:
        stdout, _ = await asyncio.gather(stdout_stream.read(), _pump_stderr())
        await proc.wait()
        return stdout

    try:
        stdout = await asyncio.wait_for(_collect(), timeout=timeout)
    except TimeoutError as err:
        await _kill(proc)
        raise GitTimeoutError(cmd, timeout or 0) from err

    return (
        stdout.decode("utf-8", errors="replace"),
        "".join(stderr_parts),
        proc.returncode or 0,
    )


def _last_error_line(stderr: str) -> str:
    """Return the most informative line of git's stderr for one-line reporting."""
    lines = [line.strip() for line in re.split(r"[\r\n]+", stderr) if line.strip()]
    for line in reversed(lines):
        if line.startswith(("fatal:", "error:")):
            return line
    return lines[-1] if lines else "unknown git error"


async def is_repository_root(path: Path) -> bool:
    """Check whether ``path`` is the top level of a git working tree."""
    try:
        stdout, _, rc = await _run_git_command(["rev-parse", "--show-toplevel"], path)
    except GitError:
        return False
    if rc != 0 or not stdout.strip():
        return False
    return Path(stdout.strip()).resolve() == path.resolve()


async def get_head_commit(repo_path: Path) -> str | None:
    """Return the commit HEAD points at, or None for an unborn branch."""
    stdout, stderr, rc = await _run_git_command(
        ["rev-parse", "--verify", "--quiet", "HEAD^{commit}"], repo_path
    )
    if rc == 0:
        return stdout.strip()
    if rc == 1 and not stderr.strip():
        return None
    raise GitError(f"Failed to resolve HEAD: {_last_error_line(stderr)}")


async def is_ancestor(repo_path: Path, ancestor: str, descendant: str) -> bool:
    """Check whether ``ancestor`` is reachable from ``descendant``."""
    _, stderr, rc = await _run_git_command(
        ["merge-base", "--is-ancestor", ancestor, descendant], repo_path
    )
    if rc == 0:
        return True
    if rc == 1:
        return False
    raise GitError(f"Failed to compare commits: {_last_error_line(stderr)}")


async def list_tracking_refs(repo_path: Path) -> dict[str, str]:
    """Snapshot the remote-tracking refs written by anonymous fetches.

    Returns:
        Mapping of branch name (relative to the tracking namespace) to commit id
    """
    stdout, stderr, rc = await _run_git_command(
        ["for-each-ref", "--format=%(objectname) %(refname)", TRACKING_NAMESPACE],
        repo_path,
    )
    if rc != 0:
        raise GitError(f"Failed to list refs: {_last_error_line(stderr)}")

    refs: dict[str, str] = {}
    prefix = TRACKING_NAMESPACE + "/"
    for line in stdout.splitlines():
        if not line.strip():
            continue
        commit, _, refname = line.partition(" ")
        refs[refname.removeprefix(prefix)] = commit
    return refs


async def fetch_all_refs(
    repo_path: Path,
    remote_url: str,
    on_stderr: Callable[[str], None],
    timeout: float | None = None,
) -> None:
    """Fetch every branch of ``remote_url`` without configuring a named remote.

    Raises:
        GitTimeoutError: If the fetch exceeds ``timeout``
        GitError: If git reports a failure
    """
    args = ["fetch", "--progress", "--", remote_url, FETCH_REFSPEC]
    _, stderr, rc = await _stream_git_command(args, repo_path, on_stderr, timeout=timeout)
    if rc != 0:
        raise GitError(_last_error_line(stderr))


def parse_fetch_head(content: str) -> list[FetchHeadEntry]:
    """Parse the contents of a FETCH_HEAD file.

    Each line reads ``<sha>\\t[not-for-merge]\\t<description>`` where the
    description is e.g. ``branch 'main' of https://host/repo``.
    """
    entries: list[FetchHeadEntry] = []
    for line in content.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t", 2)
        if len(parts) != 3:
            logger.debug("Skipping malformed FETCH_HEAD line: %r", line)
            continue
        commit, marker, description = parts

        match = re.match(r"^(?:(?:remote-tracking )?(?:branch|tag) )?'(.+)' of (.+)$", description)
        if match:
            ref_name, remote_url = match.group(1), match.group(2)
        else:
            # A bare HEAD fetch records just the URL
            ref_name, remote_url = "HEAD", description

        entries.append(
            FetchHeadEntry(
                commit=commit.strip(),
                ref_name=ref_name,
                remote_url=remote_url.strip(),
                for_merge=marker != "not-for-merge",
            )
        )
    return entries


async def _git_dir(repo_path: Path) -> Path:
    stdout, stderr, rc = await _run_git_command(["rev-parse", "--absolute-git-dir"], repo_path)
    if rc != 0:
        raise GitError(f"Failed to locate git directory: {_last_error_line(stderr)}")
    return Path(stdout.strip())


async def read_fetch_head(repo_path: Path) -> list[FetchHeadEntry]:
    """Read the ref tips recorded by the most recent fetch."""
    fetch_head = await _git_dir(repo_path) / "FETCH_HEAD"
    try:
        content = fetch_head.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except OSError as err:
        raise GitError(f"Failed to read FETCH_HEAD: {err}") from err
    return parse_fetch_head(content)


async def merge_commit(repo_path: Path, commit: str) -> MergeStatus:
    """Merge ``commit`` into the working tree without committing.

    Textual conflicts and refusals caused by local modifications are reported
    through the returned status rather than raised.

    Raises:
        GitError: If the merge machinery itself fails
    """
    args = MERGE_IDENTITY + [
        "merge",
        "--no-commit",
        "--no-edit",
        "--allow-unrelated-histories",
        commit,
    ]
    stdout, stderr, rc = await _run_git_command(args, repo_path, timeout=120.0)

    if rc == 0:
        return MergeStatus.CLEAN
    if "CONFLICT" in stdout or "CONFLICT" in stderr:
        return MergeStatus.CONFLICTED
    if "would be overwritten by merge" in stderr or "commit your changes or stash them" in stderr:
        return MergeStatus.BLOCKED
    raise GitError(_last_error_line(stderr or stdout))


async def hard_reset(repo_path: Path, commit: str) -> None:
    """Force index and working tree to match ``commit`` and drop untracked files."""
    _, stderr, rc = await _run_git_command(["reset", "--hard", commit], repo_path, timeout=120.0)
    if rc != 0:
        raise GitError(_last_error_line(stderr))

    # Ignored files survive so applications can keep local runtime data
    _, stderr, rc = await _run_git_command(["clean", "-fd"], repo_path, timeout=120.0)
    if rc != 0:
        raise GitError(_last_error_line(stderr))


async def merge_in_progress(repo_path: Path) -> bool:
    """Check whether an unfinished merge is recorded in the repository."""
    return (await _git_dir(repo_path) / "MERGE_HEAD").exists()


async def cleanup_repository_state(repo_path: Path) -> None:
    """Abort an unfinished merge, restoring the pre-merge tree."""
    if not await merge_in_progress(repo_path):
        return
    _, stderr, rc = await _run_git_command(["merge", "--abort"], repo_path)
    if rc != 0:
        raise GitError(f"Failed to abort merge: {_last_error_line(stderr)}")


async def clone_repository(
    remote_url: str,
    target_path: Path,
    timeout: float | None = None,
) -> None:
    """Clone the default branch of ``remote_url`` into ``target_path``.

    Raises:
        GitTimeoutError: If the clone exceeds ``timeout``
        GitError: If git reports a failure
    """
    target_path = target_path.absolute()
    target_path.parent.mkdir(parents=True, exist_ok=True)
    args = ["clone", "--", remote_url, str(target_path)]
    _, stderr, rc = await _run_git_command(args, target_path.parent, timeout=timeout)
    if rc != 0:
        raise GitError(_last_error_line(stderr))
