"""Pytest configuration and fixtures."""

import shutil
import subprocess
from pathlib import Path

import pytest

GIT_IDENTITY = ["-c", "user.name=Test User", "-c", "user.email=test@example.com"]


def run_git(args: list[str], cwd: Path) -> str:
    """Run a git command for test setup and return its stdout."""
    result = subprocess.run(
        ["git", *GIT_IDENTITY, *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def tree_snapshot(path: Path) -> dict[str, bytes]:
    """Map every file under ``path`` (outside .git) to its content."""
    return {
        str(file.relative_to(path)): file.read_bytes()
        for file in sorted(path.rglob("*"))
        if file.is_file() and ".git" not in file.relative_to(path).parts
    }


class Upstream:
    """A repository standing in for the published application."""

    def __init__(self, path: Path):
        self.path = path
        path.mkdir(parents=True)
        run_git(["init", "-q"], path)
        run_git(["symbolic-ref", "HEAD", "refs/heads/main"], path)

    @property
    def url(self) -> str:
        return str(self.path)

    def commit(self, files: dict[str, str | None], message: str = "Update") -> str:
        """Write (or delete, for None) ``files`` and commit them on the current branch."""
        for name, content in files.items():
            file = self.path / name
            if content is None:
                file.unlink()
            else:
                file.parent.mkdir(parents=True, exist_ok=True)
                file.write_text(content)
        run_git(["add", "-A"], self.path)
        run_git(["commit", "-q", "-m", message], self.path)
        return self.head()

    def head(self) -> str:
        return run_git(["rev-parse", "HEAD"], self.path)

    def tree(self) -> dict[str, bytes]:
        return tree_snapshot(self.path)


@pytest.fixture(autouse=True)
def _require_git() -> None:
    if shutil.which("git") is None:
        pytest.skip("git executable not available")


@pytest.fixture
def upstream(tmp_path: Path) -> Upstream:
    """An upstream repository on branch main with two commits."""
    repo = Upstream(tmp_path / "upstream")
    repo.commit({"app.py": "print('v1')\n", "data/config.txt": "level=1\n"}, "Initial release")
    repo.commit({"app.py": "print('v2')\n"}, "Second release")
    return repo


@pytest.fixture
def installed(tmp_path: Path, upstream: Upstream) -> Path:
    """A local copy of ``upstream`` as a first run would leave it."""
    target = tmp_path / "app"
    run_git(["clone", "-q", upstream.url, str(target)], tmp_path)
    return target
