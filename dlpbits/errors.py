"""
Exception types raised by the image decoder, segmenter and upload sequencer.
"""

from __future__ import annotations

from typing import Optional


class DLPError(Exception):
    """Base class for every failure the loader reports."""


class ConfigError(DLPError):
    """Raised when a configuration file or option holds an unusable value."""


class DecodeError(DLPError):
    """The address permutation stepped outside the image buffer."""

    def __init__(self, index: int, address: int, length: int) -> None:
        self.index = index
        self.address = address
        self.length = length
        super().__init__(
            f"address translation error at position {index}: "
            f"translated to {address} (valid range: 0-{length - 1})"
        )


class EncodingError(DLPError):
    """A record's bytes cannot be rendered in the instrument's text encoding."""


class TransportFailed(DLPError):
    """I/O error or timeout talking to the instrument."""


class ResponseUnparseable(DLPError):
    def __init__(self, response: Optional[str]) -> None:
        self.response = response
        super().__init__(f"failed to parse error response: {response!r}")


class RejectedByDevice(DLPError):
    def __init__(self, code: int, index: Optional[int] = None) -> None:
        self.code = code
        self.index = index
        where = f" writing DLP part {index + 1}" if index is not None else ""
        super().__init__(f"error{where}: error code {code}")
