"""Launching the synchronized application."""

from launchpad.launcher.supervisor import (
    LaunchOutcome,
    default_executable_name,
    launch,
)

__all__ = [
    "LaunchOutcome",
    "default_executable_name",
    "launch",
]
