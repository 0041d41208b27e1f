"""Progress events streamed during a fetch, and their console rendering.

Git writes transfer progress to stderr as carriage-return terminated lines.
GitProgressParser turns that stream into typed events; ConsoleProgressReporter
renders them. Both are pure observers: nothing they do can fail a sync.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from rich.console import Console

logger = logging.getLogger(__name__)

_BYTE_UNITS: Final = {
    "bytes": 1,
    "KiB": 1024,
    "MiB": 1024**2,
    "GiB": 1024**3,
}

_OBJECTS_RE: Final = re.compile(
    r"^(Receiving|Unpacking) objects:\s+\d+% \((\d+)/(\d+)\)"
    r"(?:, ([\d.]+) (bytes|KiB|MiB|GiB))?"
)
_INDEXING_RE: Final = re.compile(r"^Indexing objects:\s+\d+% \((\d+)/(\d+)\)")
_DELTAS_RE: Final = re.compile(r"^Resolving deltas:\s+\d+% \((\d+)/(\d+)\)")
_SEGMENT_RE: Final = re.compile(r"[^\r\n]*(?:\r\n|\r|\n)")


@dataclass(frozen=True)
class TransferProgress:
    """Periodic transfer counters."""

    received_objects: int
    total_objects: int
    indexed_objects: int
    indexed_deltas: int
    total_deltas: int
    received_bytes: int


@dataclass(frozen=True)
class RefUpdate:
    """A ref whose tip changed during the fetch."""

    name: str
    old_id: str | None
    new_id: str

    @property
    def is_new(self) -> bool:
        return self.old_id is None


@dataclass(frozen=True)
class SidebandMessage:
    """Raw text sent by the remote, line terminator included."""

    text: str


ProgressEvent = TransferProgress | RefUpdate | SidebandMessage
ProgressSink = Callable[[ProgressEvent], None]


def emit(sink: ProgressSink | None, event: ProgressEvent) -> None:
    """Deliver ``event`` to ``sink``, never letting a reporting error escape."""
    if sink is None:
        return
    try:
        sink(event)
    except Exception as e:
        logger.debug("Progress sink failed: %s: %s", type(e).__name__, e)


def parse_byte_count(value: str, unit: str) -> int:
    """Convert git's human-readable size (e.g. ``1.20 MiB``) to bytes."""
    return int(float(value) * _BYTE_UNITS[unit])


def diff_refs(before: dict[str, str], after: dict[str, str]) -> list[RefUpdate]:
    """Compute the ref updates between two tracking-ref snapshots."""
    updates: list[RefUpdate] = []
    for name in sorted(after):
        new_id = after[name]
        old_id = before.get(name)
        if old_id == new_id:
            continue
        updates.append(RefUpdate(name=name, old_id=old_id, new_id=new_id))
    return updates


class GitProgressParser:
    """Incrementally parse git's ``--progress`` stderr into progress events."""

    def __init__(self, sink: ProgressSink | None):
        self._sink = sink
        self._buffer = ""
        self._received_objects = 0
        self._total_objects = 0
        self._indexed_objects = 0
        self._indexed_deltas = 0
        self._total_deltas = 0
        self._received_bytes = 0

    def feed(self, chunk: str) -> None:
        """Consume a chunk of stderr; complete segments are parsed immediately."""
        try:
            self._buffer += chunk
            end = 0
            for match in _SEGMENT_RE.finditer(self._buffer):
                if not match.group(0):
                    break
                self._handle_segment(match.group(0))
                end = match.end()
            self._buffer = self._buffer[end:]
        except Exception as e:
            logger.debug("Failed to parse git progress: %s: %s", type(e).__name__, e)

    def close(self) -> None:
        """Flush a trailing segment that had no line terminator."""
        if self._buffer:
            remainder, self._buffer = self._buffer, ""
            try:
                self._handle_segment(remainder)
            except Exception as e:
                logger.debug("Failed to parse git progress: %s: %s", type(e).__name__, e)

    def _handle_segment(self, segment: str) -> None:
        if segment.startswith("remote: "):
            emit(self._sink, SidebandMessage(text=segment[len("remote: ") :]))
            return

        line = segment.rstrip("\r\n")

        if match := _OBJECTS_RE.match(line):
            self._received_objects = int(match.group(2))
            self._total_objects = int(match.group(3))
            if match.group(4):
                self._received_bytes = parse_byte_count(match.group(4), match.group(5))
        elif match := _INDEXING_RE.match(line):
            self._indexed_objects = int(match.group(1))
        elif match := _DELTAS_RE.match(line):
            self._indexed_deltas = int(match.group(1))
            self._total_deltas = int(match.group(2))
        else:
            if line.strip():
                logger.debug("git: %s", line.strip())
            return

        emit(self._sink, self.snapshot())

    def snapshot(self) -> TransferProgress:
        return TransferProgress(
            received_objects=self._received_objects,
            total_objects=self._total_objects,
            indexed_objects=self._indexed_objects,
            indexed_deltas=self._indexed_deltas,
            total_deltas=self._total_deltas,
            received_bytes=self._received_bytes,
        )


class ConsoleProgressReporter:
    """Render progress events to a console.

    Sideband text is forwarded verbatim, transfer counters overwrite a single
    line, and ref updates are printed as permanent lines.
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def __call__(self, event: ProgressEvent) -> None:
        try:
            if isinstance(event, SidebandMessage):
                self._write(f"remote: {event.text}")
            elif isinstance(event, TransferProgress):
                self._write_transfer(event)
            elif isinstance(event, RefUpdate):
                self._write_ref_update(event)
        except Exception as e:
            logger.debug("Failed to render progress: %s: %s", type(e).__name__, e)

    def _write_transfer(self, event: TransferProgress) -> None:
        if event.received_objects == event.total_objects:
            self._write(f"Resolving deltas {event.indexed_deltas}/{event.total_deltas}\r")
        elif event.total_objects > 0:
            self._write(
                f"Received {event.received_objects}/{event.total_objects} objects "
                f"({event.indexed_objects}) in {event.received_bytes} bytes\r"
            )

    def _write_ref_update(self, event: RefUpdate) -> None:
        if event.old_id is None:
            self._write(f"[new]     {event.new_id[:20]} {event.name}\n")
        else:
            self._write(f"[updated] {event.old_id[:10]}..{event.new_id[:10]} {event.name}\n")

    def _write(self, text: str) -> None:
        # No markup and no implicit newline; flush since a line may be unterminated
        stream = self.console.file
        stream.write(text)
        stream.flush()
