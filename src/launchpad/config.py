"""Launcher configuration.

The configuration file is YAML with one section per target platform:

    branch: main
    fetch_timeout: 300
    platforms:
      linux:
        remote: git@github.com:example/app.git
        target: ./app
        executable: ./app/Client

Only the section for the selected platform is validated, so a file can carry
settings for platforms whose values are not known on this machine.
"""

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, Final

import yaml
from pydantic import BaseModel, Field, StringConstraints, ValidationError

from launchpad.errors import ConfigError
from launchpad.launcher import default_executable_name
from launchpad.sync import DEFAULT_BRANCH, DEFAULT_FETCH_TIMEOUT, SyncTarget

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE: Final = "launchpad.yaml"
SUPPORTED_PLATFORMS: Final = ("linux", "windows", "macos")

NonBlankStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class PlatformSection(BaseModel):
    """Settings for one target platform."""

    remote: NonBlankStr
    target: NonBlankStr
    executable: NonBlankStr
    branch: NonBlankStr | None = None
    working_dir: str | None = None


class LauncherConfig(BaseModel):
    """Top level of the configuration file."""

    branch: NonBlankStr = DEFAULT_BRANCH
    fetch_timeout: float = Field(default=DEFAULT_FETCH_TIMEOUT, ge=0)
    platforms: dict[str, dict[str, Any]] = Field(default_factory=dict)


@dataclass(frozen=True)
class LauncherSettings:
    """Fully resolved settings for the current platform."""

    platform: str
    remote_location: str
    target_path: Path
    executable_path: Path
    branch: str
    fetch_timeout: float | None
    working_dir: Path | None = None

    def sync_target(self) -> SyncTarget:
        return SyncTarget(
            remote_location=self.remote_location,
            target_path=self.target_path,
            branch=self.branch,
        )


def current_platform() -> str:
    """Map the interpreter's platform to a configuration section name."""
    if sys.platform.startswith(("win32", "cygwin")):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return "linux"


def _describe_validation_error(err: ValidationError, section: str) -> str:
    """Turn the first pydantic error into a one-line, field-specific message."""
    first = err.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "<root>"
    if first["type"] == "missing":
        return f"Missing required field '{field}' in {section}"
    if first["type"] == "string_too_short":
        return f"Field '{field}' in {section} must not be empty"
    return f"Invalid field '{field}' in {section}: {first['msg']}"


def read_config(path: Path) -> LauncherConfig:
    """Read and validate the top level of a configuration file.

    Raises:
        ConfigError: If the file is missing, unreadable or malformed
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError as err:
        raise ConfigError(f"Configuration file not found: {path}") from err
    except OSError as err:
        raise ConfigError(f"Cannot read configuration file {path}: {err}") from err

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise ConfigError(f"Invalid YAML in {path}: {err}") from err

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")

    try:
        return LauncherConfig.model_validate(data)
    except ValidationError as err:
        raise ConfigError(_describe_validation_error(err, str(path))) from err


def _resolve_path(value: str, base_dir: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def resolve_settings(
    config: LauncherConfig,
    platform_name: str,
    base_dir: Path,
) -> LauncherSettings:
    """Resolve the section for ``platform_name`` into launcher settings.

    Relative paths are resolved against ``base_dir``.

    Raises:
        ConfigError: If the section is missing or incomplete
    """
    raw_section = config.platforms.get(platform_name)
    if raw_section is None:
        raise ConfigError(f"No configuration section for platform '{platform_name}'")
    if not isinstance(raw_section, dict):
        raise ConfigError(f"Configuration section for platform '{platform_name}' must be a mapping")

    try:
        section = PlatformSection.model_validate(raw_section)
    except ValidationError as err:
        raise ConfigError(_describe_validation_error(err, f"platform '{platform_name}'")) from err

    executable = default_executable_name(_resolve_path(section.executable, base_dir), platform_name)

    return LauncherSettings(
        platform=platform_name,
        remote_location=section.remote,
        target_path=_resolve_path(section.target, base_dir),
        executable_path=executable,
        branch=section.branch or config.branch,
        # Zero disables the deadline
        fetch_timeout=config.fetch_timeout or None,
        working_dir=_resolve_path(section.working_dir, base_dir) if section.working_dir else None,
    )


def load_settings(path: Path | str | None = None, platform_name: str | None = None) -> LauncherSettings:
    """Load the configuration file and resolve it for the current platform.

    Raises:
        ConfigError: If anything required is missing or invalid
    """
    config_path = Path(path) if path else Path(DEFAULT_CONFIG_FILE)
    platform_name = platform_name or current_platform()
    logger.debug(f"Loading configuration from {config_path} for platform {platform_name}")

    config = read_config(config_path)
    return resolve_settings(config, platform_name, config_path.absolute().parent)
