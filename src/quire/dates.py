"""Date normalization for front-matter values.

Accepted inputs:

- ``YYYY-MM-DD`` → naive local midnight
- ``YYYY-MM-DD HH:MM:SS`` → naive local time
- ISO-8601 with ``Z`` or a numeric offset → aware instant in UTC
- compact ``YYYYMMDD`` and ``YYYYMMDDTHHMMSS[Z|±HHMM]`` → rewritten to the
  punctuated form before parsing
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, date, datetime

from quire.exceptions import DateParseError

__all__ = ["extract_filename_date", "parse_date"]

logger = logging.getLogger(__name__)

_COMPACT_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_COMPACT_DATETIME_RE = re.compile(
    r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})(Z|[+-]\d{2}:?\d{2})?$"
)
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LOCAL_DATETIME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})[ T](\d{2}:\d{2}(?::\d{2})?)$")
_OFFSET_RE = re.compile(r"([+-])(\d{2}):?(\d{2})$")

# Filename prefix such as "2020-01-01_hello.md" or "20200101_hello.md"
_FILENAME_DATE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}|\d{8})(?:-(\d{2}-\d{2}-\d{2}))?_(.+)$")


def _expand_compact(value: str) -> str:
    match = _COMPACT_DATE_RE.match(value)
    if match:
        return "{}-{}-{}".format(*match.groups())

    match = _COMPACT_DATETIME_RE.match(value)
    if match:
        year, month, day, hour, minute, second, zone = match.groups()
        return f"{year}-{month}-{day}T{hour}:{minute}:{second}{zone or ''}"

    return value


def _parse_string(value: str) -> datetime:
    try:
        return _parse_text(_expand_compact(value.strip()))
    except ValueError as e:
        raise DateParseError(f"Invalid date: {value!r}") from e


def _parse_text(text: str) -> datetime:
    if _DATE_RE.match(text):
        return datetime.strptime(text, "%Y-%m-%d")

    match = _LOCAL_DATETIME_RE.match(text)
    if match:
        day_part, time_part = match.groups()
        fmt = "%Y-%m-%d %H:%M:%S" if time_part.count(":") == 2 else "%Y-%m-%d %H:%M"
        return datetime.strptime(f"{day_part} {time_part}", fmt)

    # Zoned ISO-8601: normalize "Z" and "±HHMM" to "±HH:MM"
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _OFFSET_RE.sub(r"\1\2:\3", text)

    parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        return parsed
    return parsed.astimezone(UTC)


def parse_date(value: object) -> datetime:
    """Normalize a date-like value into a :class:`datetime`.

    Args:
        value: A string, ``date`` or ``datetime`` (YAML front matter already
            produces the latter two for unquoted values).

    Returns:
        A naive local datetime, or an aware UTC datetime when the input
        carried a zone designator.

    Raises:
        DateParseError: If the value is not a recognized date.
    """
    if isinstance(value, datetime):
        return value.astimezone(UTC) if value.tzinfo is not None else value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return _parse_string(value)
    raise DateParseError(f"Invalid date: {value!r}")


def extract_filename_date(filename: str) -> tuple[datetime | None, str]:
    """Split a leading date prefix off a filename.

    ``"2020-06-21_hello.md"`` → ``(datetime(2020, 6, 21), "hello.md")``.
    Filenames without a valid prefix are returned unchanged with ``None``.
    """
    match = _FILENAME_DATE_RE.match(filename)
    if not match:
        return None, filename

    day, time, rest = match.groups()
    candidate = f"{day} {time.replace('-', ':')}" if time else day
    try:
        return parse_date(candidate), rest
    except DateParseError:
        logger.debug("Ignoring date-like prefix in %s", filename)
        return None, filename
