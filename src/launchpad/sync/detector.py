"""Detect whether the target directory already holds a local copy."""

import logging
import os
from pathlib import Path

from launchpad.errors import RepositoryProbeError

logger = logging.getLogger(__name__)


def is_existing_repository(path: Path | str) -> bool:
    """Check whether ``path`` exists and is a readable directory.

    Only absence routes to a fresh clone. Any other failure to open the
    directory (permissions, not a directory, I/O errors) is raised so that a
    broken target is never silently cloned over. Whether the directory is a
    valid repository is left to the sync engine.

    Raises:
        RepositoryProbeError: If the directory exists but cannot be opened
    """
    try:
        with os.scandir(path):
            pass
    except FileNotFoundError:
        logger.debug("Target %s does not exist", path)
        return False
    except OSError as err:
        raise RepositoryProbeError(f"Cannot open target directory {path}: {err.strerror or err}") from err
    return True
