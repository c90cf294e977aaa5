"""
Slice a decoded image into the DLP records embedded between marker sequences.

A record is the span strictly between a start marker and the next end marker
after it. Markers are consumed: the search for the next start marker resumes
after the end marker just matched. Empty spans and an unterminated trailing
start marker are dropped.
"""

from __future__ import annotations

import logging
import re
from typing import List

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_START_MARKER = b"\x10\x80"
DEFAULT_END_MARKER = b"\x3b\xff"


def find_sequence(data: bytes, sequence: bytes, start: int = 0) -> int:
    """Return the index of the first ``sequence`` at or after ``start``, or -1."""
    if not sequence:
        raise ValueError("search sequence must not be empty")
    if start < 0 or start > len(data):
        return -1
    return data.find(sequence, start)


def extract_records(
    data: bytes,
    start_marker: bytes = DEFAULT_START_MARKER,
    end_marker: bytes = DEFAULT_END_MARKER,
) -> List[bytes]:
    if not start_marker or not end_marker:
        raise ValueError("start and end markers must be non-empty")

    records: List[bytes] = []
    cursor = 0
    while cursor < len(data):
        start = find_sequence(data, start_marker, cursor)
        if start == -1:
            break
        start += len(start_marker)

        end = find_sequence(data, end_marker, start)
        if end == -1:
            logger.debug("Unterminated record at offset %d dropped", start)
            break

        if end > start:
            records.append(bytes(data[start:end]))
            logger.debug("Extracted part of %d bytes at offset %d", end - start, start)
        cursor = end + len(end_marker)

    logger.debug("Total parts extracted: %d", len(records))
    return records


def parse_marker(text: str) -> bytes:
    """Parse a marker written as hex bytes.

    Accepts ``"10 80"``, ``"0x10,0x80"`` and ``"1080"``.
    """
    tokens = [tok for tok in re.split(r"[\s,:]+", text.strip()) if tok]
    if len(tokens) == 1 and not tokens[0].lower().startswith("0x"):
        packed = tokens[0]
        if len(packed) % 2:
            raise ConfigError(f"Marker {text!r} has an odd number of hex digits")
        tokens = [packed[idx : idx + 2] for idx in range(0, len(packed), 2)]

    marker = bytearray()
    for tok in tokens:
        try:
            value = int(tok, 16)
        except ValueError as exc:
            raise ConfigError(f"Invalid marker byte {tok!r} in {text!r}") from exc
        if not 0 <= value <= 0xFF:
            raise ConfigError(f"Marker byte {tok!r} in {text!r} is out of range")
        marker.append(value)

    if not marker:
        raise ConfigError("Marker must contain at least one byte")
    return bytes(marker)


def format_marker(marker: bytes) -> str:
    return " ".join(f"{byte:02x}" for byte in marker)
