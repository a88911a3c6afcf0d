"""Per-source log format parsers: raw lines and Docker json-file lines."""

import json
import logging
from typing import AsyncIterator, Callable

from log_tailer.errors import ConfigurationError

logger = logging.getLogger(__name__)

LineParser = Callable[[str], str | None]


def parse_raw(line: str) -> str:
    return line


def parse_docker_json(line: str) -> str | None:
    """Extract the ``log`` field of a Docker json-file log line.

    Expected format:
        {"log":"GET /health 200\\n","stream":"stdout","time":"2024-01-15T08:23:45.123Z"}

    Returns None (line dropped) for malformed JSON or a non-string ``log``.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        logger.warning("Dropping malformed JSON log line: %s", e)
        return None

    log = data.get("log") if isinstance(data, dict) else None
    if not isinstance(log, str):
        logger.warning("Dropping JSON log line, 'log' is not a string: %r", log)
        return None
    return log


_PARSERS: dict[str | None, LineParser] = {
    None: parse_raw,
    "raw": parse_raw,
    "json": parse_docker_json,
}


def get_parser(fmt: str | None) -> LineParser:
    """Select the parser for a source's format tag."""
    try:
        return _PARSERS[fmt]
    except KeyError:
        known = ", ".join(sorted(k for k in _PARSERS if k))
        raise ConfigurationError(f"Unknown log format {fmt!r} (expected one of: {known})") from None


async def apply_parser(lines: AsyncIterator[str], parser: LineParser) -> AsyncIterator[str]:
    """Run each line through parser, dropping lines it rejects.

    Parsed values may carry their own newlines (Docker keeps the trailing one),
    so they are re-split and empty pieces are skipped.
    """
    async for line in lines:
        parsed = parser(line)
        if parsed is None:
            continue
        for piece in parsed.split("\n"):
            piece = piece.rstrip("\r")
            if piece:
                yield piece
