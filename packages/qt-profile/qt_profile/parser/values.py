"""Scalar value parsing for profile metric lines.

Every numeric, duration and byte-size token in a profile goes through this
module so unit suffixes are handled the same way everywhere:

- durations: "9m41s", "7s854ms", "5.540us", "1h30m" -> milliseconds
- byte sizes: "2.167 KB", "1.2 GB (1288490188)", "1,024" -> bytes
- counters: "1,234,567", "2.174K (2174)" -> float
"""

from __future__ import annotations

import math
import re
from typing import Optional

from ..errors import BytesParseError, DurationParseError, NumberParseError


_DURATION_COMPONENT = re.compile(r"(-?\d+(?:\.\d+)?)\s*(ms|us|μs|ns|h|m|s)")

_DURATION_TO_MS = {
    "h": 3_600_000.0,
    "m": 60_000.0,
    "s": 1_000.0,
    "ms": 1.0,
    "us": 0.001,
    "μs": 0.001,
    "ns": 0.000001,
}

_RAW_VALUE_IN_PARENS = re.compile(r"\((-?\d+(?:\.\d+)?)\)\s*$")
_BYTES_WITH_UNIT = re.compile(r"^(-?\d+(?:\.\d+)?)\s*(TB|GB|MB|KB|K|M|G|T|B)\b")
_LEADING_NUMBER = re.compile(r"^(-?\d[\d,]*(?:\.\d+)?)\s*([KMB])?\b")

_BYTE_UNITS = {
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "M": 1024 ** 2,
    "MB": 1024 ** 2,
    "G": 1024 ** 3,
    "GB": 1024 ** 3,
    "T": 1024 ** 4,
    "TB": 1024 ** 4,
}

# Counter suffixes are decimal ("2.174K" rows)
_COUNT_UNITS = {"K": 1_000.0, "M": 1_000_000.0, "B": 1_000_000_000.0}


def parse_duration_ms(text: str) -> float:
    """Parse a duration token into milliseconds.

    All components are summed, so "1h30m" and "7s854ms" work.

    Raises:
        DurationParseError: if no duration component is found.
    """
    value = (text or "").strip()
    if value in ("0", "-0"):
        return 0.0

    components = _DURATION_COMPONENT.findall(value)
    if not components:
        raise DurationParseError(text)

    # Anything left over after removing the components means the token is not a duration
    leftover = _DURATION_COMPONENT.sub("", value).strip()
    if leftover:
        raise DurationParseError(text)

    total = 0.0
    for number, unit in components:
        total += float(number) * _DURATION_TO_MS[unit]
    return total


def parse_bytes(text: str) -> int:
    """Parse a byte-size token into bytes.

    A parenthesised raw value wins over the human-readable part.

    Raises:
        BytesParseError: if the token is not a byte size.
    """
    value = (text or "").strip().upper()
    if not value:
        raise BytesParseError(text)

    raw = _RAW_VALUE_IN_PARENS.search(value)
    if raw:
        return int(float(raw.group(1)))

    match = _BYTES_WITH_UNIT.match(value)
    if match:
        number = float(match.group(1))
        return int(math.floor(number * _BYTE_UNITS[match.group(2)]))

    plain = value.replace(",", "")
    try:
        return int(plain)
    except ValueError:
        pass
    try:
        return int(float(plain))
    except ValueError:
        raise BytesParseError(text) from None


def parse_number(text: str) -> float:
    """Parse a counter token, honouring a parenthesised raw value.

    Raises:
        NumberParseError: if no leading number is present.
    """
    value = (text or "").strip()
    if not value:
        raise NumberParseError(text)

    raw = _RAW_VALUE_IN_PARENS.search(value)
    if raw:
        return float(raw.group(1))

    match = _LEADING_NUMBER.match(value)
    if not match:
        raise NumberParseError(text)

    number = float(match.group(1).replace(",", ""))
    unit = match.group(2)
    if unit:
        number *= _COUNT_UNITS[unit]
    return number


def try_parse_duration_ms(text: Optional[str]) -> Optional[float]:
    """Like parse_duration_ms, but returns None for absent or malformed input."""
    if text is None:
        return None
    try:
        return parse_duration_ms(text)
    except DurationParseError:
        return None


def try_parse_bytes(text: Optional[str]) -> Optional[int]:
    """Like parse_bytes, but returns None for absent or malformed input."""
    if text is None:
        return None
    try:
        return parse_bytes(text)
    except BytesParseError:
        return None


def try_parse_number(text: Optional[str]) -> Optional[float]:
    """Like parse_number, but returns None for absent or malformed input."""
    if text is None:
        return None
    try:
        return parse_number(text)
    except NumberParseError:
        return None


def format_duration_ms(ms: float) -> str:
    """Render milliseconds the way profiles print them."""
    if ms >= 60_000:
        minutes, rest = divmod(ms, 60_000)
        return f"{int(minutes)}m{rest / 1000:.0f}s"
    if ms >= 1000:
        return f"{ms / 1000:.2f}s"
    return f"{ms:.1f}ms"


def format_bytes(num_bytes: float) -> str:
    """Render a byte count with a binary unit."""
    value = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if abs(value) < 1024:
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} TB"
