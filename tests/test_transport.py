"""VisaTransport against a fake pyvisa resource manager."""

from __future__ import annotations

from typing import List

import pytest
import pyvisa
from pyvisa import constants

from dlpbits import transport as transport_module
from dlpbits.errors import ConfigError, TransportFailed
from dlpbits.transport import (
    VisaTransport,
    clear_mass_memory,
    gpib_resource,
    validate_address,
)


class FakeResource:
    def __init__(self, identity: str = "HP8563E\n") -> None:
        self.identity = identity
        self.timeout = None
        self.read_termination = None
        self.write_termination = None
        self.cleared = False
        self.closed = False
        self.written: List[str] = []
        self.handlers = []
        self.enabled = []
        self.discarded = []
        self.replies: List[object] = []
        self.status_byte = 0x40

    def clear(self) -> None:
        self.cleared = True

    def install_handler(self, event_type, handler) -> None:
        self.handlers.append((event_type, handler))

    def enable_event(self, event_type, mechanism) -> None:
        self.enabled.append((event_type, mechanism))

    def discard_events(self, event_type, mechanism) -> None:
        self.discarded.append((event_type, mechanism))

    def read_stb(self) -> int:
        return self.status_byte

    def write(self, line: str) -> None:
        self.written.append(line)

    def query(self, line: str) -> str:
        self.written.append(line)
        if line == "ID?":
            return self.identity
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def close(self) -> None:
        self.closed = True


class FakeResourceManager:
    instances: List["FakeResourceManager"] = []
    resource = None
    open_error = None

    def __init__(self, backend: str = "") -> None:
        self.backend = backend
        self.opened: List[str] = []
        self.closed = False
        FakeResourceManager.instances.append(self)

    def open_resource(self, name: str):
        self.opened.append(name)
        if FakeResourceManager.open_error is not None:
            raise FakeResourceManager.open_error
        return FakeResourceManager.resource

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_visa(monkeypatch: pytest.MonkeyPatch) -> FakeResource:
    resource = FakeResource()
    FakeResourceManager.instances = []
    FakeResourceManager.resource = resource
    FakeResourceManager.open_error = None
    monkeypatch.setattr(transport_module.pyvisa, "ResourceManager", FakeResourceManager)
    return resource


def timeout_error() -> pyvisa.errors.VisaIOError:
    return pyvisa.errors.VisaIOError(constants.StatusCode.error_timeout)


def test_gpib_resource_string() -> None:
    assert gpib_resource(18) == "GPIB0::18::INSTR"
    assert gpib_resource(5, board=1) == "GPIB1::5::INSTR"


@pytest.mark.parametrize("address", [0, 31, -1])
def test_address_range(address: int) -> None:
    with pytest.raises(ConfigError):
        validate_address(address)


def test_open_configures_session(fake_visa: FakeResource) -> None:
    transport = VisaTransport.for_address(18)
    identity = transport.open()

    assert identity == "HP8563E"
    assert transport.identity == "HP8563E"
    assert FakeResourceManager.instances[-1].opened == ["GPIB0::18::INSTR"]
    assert FakeResourceManager.instances[-1].backend == ""
    assert fake_visa.timeout == 2000
    assert fake_visa.read_termination == "\n"
    assert fake_visa.cleared
    assert fake_visa.handlers[0][0] == constants.EventType.service_request
    assert fake_visa.enabled == [
        (constants.EventType.service_request, constants.EventMechanism.handler)
    ]
    transport.close()
    assert fake_visa.closed
    assert FakeResourceManager.instances[-1].closed
    assert not transport.is_open


def test_backend_is_passed_through(fake_visa: FakeResource) -> None:
    with VisaTransport("GPIB0::7::INSTR", timeout_ms=500, backend="@py"):
        pass
    assert FakeResourceManager.instances[-1].backend == "@py"
    assert fake_visa.timeout == 500


def test_blank_identity_is_connection_failure(fake_visa: FakeResource) -> None:
    fake_visa.identity = "\n"
    transport = VisaTransport.for_address(18)
    with pytest.raises(TransportFailed):
        transport.open()
    assert not transport.is_open
    assert fake_visa.closed


def test_open_error_is_transport_failure(fake_visa: FakeResource) -> None:
    FakeResourceManager.open_error = timeout_error()
    with pytest.raises(TransportFailed):
        VisaTransport.for_address(3).open()


def test_send_and_query(fake_visa: FakeResource) -> None:
    fake_visa.replies = ["0\r\n"]
    with VisaTransport.for_address(18) as transport:
        transport.send("FUNCDEF D1;")
        assert transport.query("ERR?") == "0"
    assert fake_visa.written == ["ID?", "FUNCDEF D1;", "ERR?"]


def test_query_timeout_maps_to_transport_failed(fake_visa: FakeResource) -> None:
    fake_visa.replies = [timeout_error()]
    with VisaTransport.for_address(18) as transport:
        with pytest.raises(TransportFailed):
            transport.query("ERR?")


def test_send_without_session() -> None:
    with pytest.raises(TransportFailed):
        VisaTransport("GPIB0::18::INSTR").send("ERR?")


def test_reopen_closes_previous_session(fake_visa: FakeResource) -> None:
    transport = VisaTransport.for_address(18)
    transport.open()
    first_manager = FakeResourceManager.instances[-1]
    transport.open()
    assert first_manager.closed
    assert transport.is_open
    transport.close()


def test_service_request_clears_status(fake_visa: FakeResource) -> None:
    with VisaTransport.for_address(18):
        _event_type, handler = fake_visa.handlers[0]
        handler(fake_visa, constants.EventType.service_request, None)
    assert fake_visa.discarded == [
        (constants.EventType.service_request, constants.EventMechanism.all)
    ]
    assert fake_visa.written[-1] == "*CLS"


def test_service_request_errors_are_contained(fake_visa: FakeResource) -> None:
    def broken_stb() -> int:
        raise timeout_error()

    fake_visa.read_stb = broken_stb
    with VisaTransport.for_address(18):
        _event_type, handler = fake_visa.handlers[0]
        handler(fake_visa, constants.EventType.service_request, None)
    assert "*CLS" not in fake_visa.written


def test_clear_mass_memory(fake_transport_factory) -> None:
    transport = fake_transport_factory()
    clear_mass_memory(transport)
    assert transport.sent == ["DISPOSE ALL"]


def test_open_without_event_support(fake_visa: FakeResource) -> None:
    def no_events(event_type, handler) -> None:
        raise NotImplementedError("events are not supported by this backend")

    fake_visa.install_handler = no_events
    fake_visa.replies = ["0"]
    with VisaTransport.for_address(18) as transport:
        assert transport.identity == "HP8563E"
        assert transport.is_open
        transport.send("FUNCDEF D1;")
        assert transport.query("ERR?") == "0"
    assert fake_visa.enabled == []
    assert fake_visa.written == ["ID?", "FUNCDEF D1;", "ERR?"]


def test_open_when_event_enable_fails(fake_visa: FakeResource) -> None:
    def refuse(event_type, mechanism) -> None:
        raise pyvisa.errors.VisaIOError(constants.StatusCode.error_nonsupported_operation)

    fake_visa.enable_event = refuse
    with VisaTransport.for_address(18) as transport:
        assert transport.is_open
