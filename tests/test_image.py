"""Image decoder: permutation applied across a whole dump."""

from __future__ import annotations

from pathlib import Path

import pytest

from dlpbits.errors import DecodeError, DLPError
from dlpbits.image import decode_image, iter_decoded, read_image
from dlpbits.permute import address_permute, data_permute


def test_decode_matches_permutation_definition() -> None:
    raw = bytes((index * 7 + 3) & 0xFF for index in range(0x8000))
    decoded = decode_image(raw)
    assert len(decoded) == len(raw)
    for index in (0, 1, 2, 0x155, 0x2AAA, 0x7FFF):
        assert decoded[index] == data_permute(raw[address_permute(index)])


def test_decode_inverts_scrambled_image(scramble) -> None:
    payload = b"\x10\x80FUNCTION\x3b\xff"
    decoded = decode_image(scramble(payload))
    assert decoded.startswith(payload)
    assert decoded[len(payload):] == bytes(0x8000 - len(payload))


def test_decode_is_deterministic() -> None:
    raw = bytes(range(256)) * 128
    assert decode_image(raw) == decode_image(raw)


def test_empty_image_decodes_to_empty() -> None:
    assert decode_image(b"") == b""


def test_undersized_image_raises_decode_error() -> None:
    with pytest.raises(DecodeError) as excinfo:
        decode_image(bytes(1000))
    err = excinfo.value
    assert err.index == 1
    assert err.address == 0x400
    assert err.length == 1000
    assert "position 1" in str(err)


def test_iter_decoded_stops_at_first_bad_address() -> None:
    produced = []
    with pytest.raises(DecodeError):
        for value in iter_decoded(bytes(1000)):
            produced.append(value)
    assert produced == [0]


def test_read_image(tmp_path: Path) -> None:
    path = tmp_path / "sram.bin"
    path.write_bytes(b"\x01\x02\x03")
    assert read_image(path) == b"\x01\x02\x03"


def test_read_missing_image(tmp_path: Path) -> None:
    with pytest.raises(DLPError):
        read_image(tmp_path / "missing.bin")
