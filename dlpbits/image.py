"""
Decode a raw mass memory module dump into logically ordered bytes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Union

from .errors import DecodeError, DLPError
from .permute import address_permute, data_permute

logger = logging.getLogger(__name__)

# KO4BB archive name for the 85620A SRAM dump.
DEFAULT_IMAGE_NAME = "SRAM_85620A.bin"


def read_image(path: Union[str, Path]) -> bytes:
    """Read a raw image from disk."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise DLPError(f"Unable to read {path}: {exc}") from exc
    logger.debug("Read %d bytes from file: %s", len(data), path)
    return data


def iter_decoded(raw: bytes) -> Iterator[int]:
    """Yield decoded bytes in logical order.

    Raises DecodeError as soon as a translated address falls outside the
    buffer; bytes already yielded must then be discarded by the caller.
    """
    length = len(raw)
    for index in range(length):
        address = address_permute(index)
        if not (0 <= address < length):
            logger.debug(
                "Address translation error: %d -> %d (array length: %d)", index, address, length
            )
            raise DecodeError(index, address, length)
        yield data_permute(raw[address])


def decode_image(raw: bytes) -> bytes:
    """Return the decoded image, the same length as ``raw``."""
    return bytes(iter_decoded(raw))
