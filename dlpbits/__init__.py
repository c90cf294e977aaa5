"""
DLPBits: recover DLP programs from an HP 85620A mass memory dump and upload
them to a spectrum analyzer.
"""

from __future__ import annotations

from .errors import (
    ConfigError,
    DecodeError,
    DLPError,
    EncodingError,
    RejectedByDevice,
    ResponseUnparseable,
    TransportFailed,
)
from .image import decode_image, read_image
from .permute import address_permute, data_permute
from .segment import DEFAULT_END_MARKER, DEFAULT_START_MARKER, extract_records
from .upload import BatchResult, BatchState, OutcomeKind, RecordOutcome, UploadSequencer, upload_records

__version__ = "0.1.0"

__all__ = [
    "BatchResult",
    "BatchState",
    "ConfigError",
    "DEFAULT_END_MARKER",
    "DEFAULT_START_MARKER",
    "DLPError",
    "DecodeError",
    "EncodingError",
    "OutcomeKind",
    "RecordOutcome",
    "RejectedByDevice",
    "ResponseUnparseable",
    "TransportFailed",
    "UploadSequencer",
    "address_permute",
    "data_permute",
    "decode_image",
    "extract_records",
    "read_image",
    "upload_records",
]
