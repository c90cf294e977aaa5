"""
GPIB transport to the spectrum analyzer, built on pyvisa.

The analyzer speaks single-line text commands. ``send`` writes a line,
``query`` writes a line and blocks for a one-line reply. Every VISA failure,
including timeouts, surfaces as TransportFailed.
"""

from __future__ import annotations

import logging
from typing import Optional

import pyvisa
from pyvisa import constants

from .errors import ConfigError, TransportFailed

logger = logging.getLogger(__name__)

DEFAULT_GPIB_ADDRESS = 18
GPIB_ADDRESS_MIN = 1
GPIB_ADDRESS_MAX = 30
DEFAULT_TIMEOUT_MS = 2000
IDENTIFY_QUERY = "ID?"
CLEAR_STATUS = "*CLS"
DISPOSE_ALL = "DISPOSE ALL"

_VISA_ERRORS = (pyvisa.errors.Error, OSError, ValueError)


def gpib_resource(address: int, board: int = 0) -> str:
    validate_address(address)
    return f"GPIB{board}::{address}::INSTR"


def validate_address(address: int) -> int:
    if not GPIB_ADDRESS_MIN <= address <= GPIB_ADDRESS_MAX:
        raise ConfigError(
            f"GPIB address must be between {GPIB_ADDRESS_MIN} and {GPIB_ADDRESS_MAX}, got {address}"
        )
    return address


class VisaTransport:
    """One open instrument session; close it (or use ``with``) when done."""

    def __init__(
        self,
        resource_name: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        backend: Optional[str] = None,
    ) -> None:
        self.resource_name = resource_name
        self.timeout_ms = timeout_ms
        self.backend = backend
        self.identity: Optional[str] = None
        self._manager = None
        self._resource = None

    @classmethod
    def for_address(
        cls, address: int, timeout_ms: int = DEFAULT_TIMEOUT_MS, backend: Optional[str] = None
    ) -> "VisaTransport":
        return cls(gpib_resource(address), timeout_ms=timeout_ms, backend=backend)

    def __enter__(self) -> "VisaTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._resource is not None

    def open(self) -> str:
        """Open the session, hook service requests and return the ID? reply."""
        if self.is_open:
            logger.warning("Already connected to %s; reconnecting", self.resource_name)
            self.close()

        try:
            if self.backend:
                self._manager = pyvisa.ResourceManager(self.backend)
            else:
                self._manager = pyvisa.ResourceManager()
            resource = self._manager.open_resource(self.resource_name)
            resource.timeout = self.timeout_ms
            resource.read_termination = "\n"
            resource.write_termination = "\n"
            resource.clear()
            self._resource = resource
            self._install_srq_handler()
        except _VISA_ERRORS as exc:
            self.close()
            raise TransportFailed(f"unable to open {self.resource_name}: {exc}") from exc

        identity = self.query(IDENTIFY_QUERY).strip()
        if not identity:
            self.close()
            raise TransportFailed(
                f"device at {self.resource_name} failed to identify; check GPIB address and device state"
            )
        self.identity = identity
        logger.info("Device connected: %s", identity)
        return identity

    def close(self) -> None:
        resource, manager = self._resource, self._manager
        self._resource = None
        self._manager = None
        for handle in (resource, manager):
            if handle is None:
                continue
            try:
                handle.close()
            except _VISA_ERRORS as exc:
                logger.debug("Error while closing %s: %s", self.resource_name, exc)

    def send(self, line: str) -> None:
        resource = self._require_open()
        try:
            resource.write(line)
        except _VISA_ERRORS as exc:
            raise TransportFailed(f"GPIB send error: {exc}") from exc

    def query(self, line: str) -> str:
        resource = self._require_open()
        try:
            response = resource.query(line)
        except _VISA_ERRORS as exc:
            raise TransportFailed(f"GPIB read error: {exc}") from exc
        response = response.rstrip("\r\n")
        if not response.strip():
            logger.warning("No response from instrument to %r", line)
        return response

    def _require_open(self):
        if self._resource is None:
            raise TransportFailed(f"not connected to {self.resource_name}")
        return self._resource

    def _install_srq_handler(self) -> None:
        resource = self._resource
        try:
            resource.install_handler(constants.EventType.service_request, self._on_service_request)
            resource.enable_event(
                constants.EventType.service_request, constants.EventMechanism.handler
            )
        except (NotImplementedError, pyvisa.errors.Error) as exc:
            # Some backends (pyvisa-py) have no event support.
            logger.warning("Service requests not handled on %s: %s", self.resource_name, exc)

    def _on_service_request(self, resource, event, user_handle=None) -> None:
        # Runs on the VISA event thread; never raise from here.
        try:
            status = resource.read_stb()
            logger.debug("SRQ status byte: 0x%02x", status)
            resource.discard_events(constants.EventType.service_request, constants.EventMechanism.all)
            resource.write(CLEAR_STATUS)
        except _VISA_ERRORS as exc:
            logger.warning("SRQ handler error: %s", exc)


def clear_mass_memory(transport) -> None:
    """Erase every DLP in the analyzer's mass memory.

    The instrument gives no read-back for this command.
    """
    logger.info("Clearing mass memory")
    transport.send(DISPOSE_ALL)
