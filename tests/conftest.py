from __future__ import annotations

from typing import Callable, List, Optional

import pytest

from dlpbits.errors import TransportFailed
from dlpbits.permute import address_permute, data_permute

IMAGE_SIZE = 0x8000
INVERSE_DATA = {data_permute(value): value for value in range(256)}


def scramble_image(decoded: bytes, size: int = IMAGE_SIZE) -> bytes:
    """Build a raw dump that decodes to ``decoded`` padded with zeros."""
    logical = bytes(decoded) + bytes(size - len(decoded))
    raw = bytearray(size)
    for index, value in enumerate(logical):
        raw[address_permute(index)] = INVERSE_DATA[value]
    return bytes(raw)


class FakeTransport:
    """Records every line and replays scripted ERR? replies."""

    def __init__(self, responses=(), fail_send_at: Optional[int] = None) -> None:
        self.responses: List[object] = list(responses)
        self.fail_send_at = fail_send_at
        self.sent: List[str] = []
        self.queries: List[str] = []
        self.closed = False

    def send(self, line: str) -> None:
        if self.fail_send_at is not None and len(self.sent) == self.fail_send_at:
            raise TransportFailed("GPIB send error: bus error")
        self.sent.append(line)

    def query(self, line: str) -> str:
        self.queries.append(line)
        if not self.responses:
            raise TransportFailed("GPIB read error: timeout")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def scramble() -> Callable[..., bytes]:
    return scramble_image


@pytest.fixture
def fake_transport_factory():
    return FakeTransport
