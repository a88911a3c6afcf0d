"""Data model: source specs, line events, tail states and sink records."""

import os
import re
from dataclasses import dataclass
from enum import Enum

from log_tailer.errors import ConfigurationError

STDIN_PATH = "-"
STDIN_TAG = "stdin"

_SPEC_RE = re.compile(r"^(?:([^:]+):)?(.*)$", re.DOTALL)


@dataclass(frozen=True)
class SourceSpec:
    format: str | None   # e.g. "json"; None means raw lines
    path: str            # absolute path or glob, or "-" for standard input

    @property
    def is_stdin(self) -> bool:
        return self.path == STDIN_PATH


def parse_source_spec(text: str) -> SourceSpec:
    """Parse ``[tag:]path`` or ``[tag:]-`` into a SourceSpec.

    File paths are resolved to absolute paths; globs are kept as globs.
    """
    match = _SPEC_RE.match(text)
    fmt, path = match.group(1), match.group(2)
    if not path:
        raise ConfigurationError(f"Empty path in source spec: {text!r}")
    if path != STDIN_PATH:
        path = os.path.abspath(os.path.expanduser(path))
    return SourceSpec(format=fmt, path=path)


@dataclass(frozen=True)
class LineEvent:
    source_tag: str
    content: str


class TailState(Enum):
    OPENING = "opening"
    STREAMING = "streaming"
    EOF_IDLE = "eof-idle"
    CLOSED = "closed"
    ERRORED = "errored"


@dataclass
class DeliveryAttempt:
    batch: list[dict]
    retries_used: int = 0


@dataclass(frozen=True)
class RecordTemplate:
    """Attaches identity and destination metadata to a line event."""

    identity: str
    fk_value: str
    user_field: str = "user_id"
    fk_field: str = "agent_id"
    content_field: str = "content"
    source_field: str = "source"

    def build(self, event: LineEvent) -> dict:
        return {
            self.user_field: self.identity,
            self.fk_field: self.fk_value,
            self.content_field: event.content,
            self.source_field: event.source_tag,
        }
