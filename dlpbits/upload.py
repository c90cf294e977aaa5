"""
Upload sequencer: push DLP records to the analyzer one FUNCDEF at a time.

Each record is sent as ``FUNCDEF <payload>;`` and followed by an ``ERR?``
query. A reply of ``0`` advances to the next record. Any other outcome stops
the batch; records after the failing one are never attempted.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Protocol

from .errors import EncodingError, RejectedByDevice, ResponseUnparseable, TransportFailed

logger = logging.getLogger(__name__)

COMMAND_TEMPLATE = "FUNCDEF {payload};"
STATUS_QUERY = "ERR?"
DEFAULT_ENCODING = "utf-8"

_STATUS_RE = re.compile(r"^[+-]?\d+$")


class Transport(Protocol):
    def send(self, line: str) -> None:
        ...

    def query(self, line: str) -> str:
        ...


class ProgressSink(Protocol):
    def on_record_completed(self, index: int, total: int) -> None:
        ...


class OutcomeKind(enum.Enum):
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"
    TRANSPORT_FAILED = "transport-failed"
    UNPARSEABLE = "unparseable"
    ENCODING_FAILED = "encoding-failed"


class BatchState(enum.Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_STATUS = "awaiting-status"
    ADVANCING = "advancing"
    COMPLETED = "completed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass
class RecordOutcome:
    index: int
    kind: OutcomeKind
    code: Optional[int] = None
    response: Optional[str] = None
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCEEDED


@dataclass
class BatchResult:
    state: BatchState
    total: int
    outcomes: List[RecordOutcome] = field(default_factory=list)

    @property
    def completed(self) -> int:
        """Records that succeeded before the first failure, if any."""
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failure(self) -> Optional[RecordOutcome]:
        if self.outcomes and not self.outcomes[-1].succeeded:
            return self.outcomes[-1]
        return None

    def raise_for_outcome(self) -> None:
        """Raise the exception matching an aborted batch's failing record."""
        failure = self.failure
        if self.state is not BatchState.ABORTED or failure is None:
            return
        if failure.kind is OutcomeKind.REJECTED:
            raise RejectedByDevice(failure.code if failure.code is not None else -1, failure.index)
        if failure.kind is OutcomeKind.UNPARSEABLE:
            raise ResponseUnparseable(failure.response)
        if failure.kind is OutcomeKind.ENCODING_FAILED:
            raise EncodingError(failure.detail)
        raise TransportFailed(failure.detail)


def render_command(record: bytes, encoding: str = DEFAULT_ENCODING) -> str:
    try:
        payload = bytes(record).decode(encoding)
    except (UnicodeDecodeError, LookupError) as exc:
        raise EncodingError(f"record is not valid {encoding} text: {exc}") from exc
    return COMMAND_TEMPLATE.format(payload=payload)


def parse_status(response: Optional[str]) -> int:
    """Parse an ``ERR?`` reply into an integer error code."""
    text = (response or "").strip()
    if not _STATUS_RE.match(text):
        raise ResponseUnparseable(response)
    return int(text)


class UploadSequencer:
    """Send/verify loop for one batch of records over a single transport."""

    def __init__(
        self,
        transport: Transport,
        progress: Optional[ProgressSink] = None,
        cancelled: Optional[Callable[[], bool]] = None,
        encoding: str = DEFAULT_ENCODING,
    ) -> None:
        self.transport = transport
        self.progress = progress
        self.cancelled = cancelled
        self.encoding = encoding
        self.state = BatchState.IDLE

    def run(self, records: Iterable[bytes]) -> BatchResult:
        batch = list(records)
        result = BatchResult(state=BatchState.IDLE, total=len(batch))
        self.state = BatchState.IDLE
        logger.debug("Starting to write %d DLP(s)", result.total)

        for index, record in enumerate(batch):
            if self._cancel_requested():
                logger.info("Upload cancelled after %d of %d parts", index, result.total)
                return self._finish(result, BatchState.CANCELLED)

            outcome = self._upload_record(index, record)
            result.outcomes.append(outcome)
            if not outcome.succeeded:
                logger.warning("Upload aborted at part %d: %s", index + 1, outcome.detail)
                return self._finish(result, BatchState.ABORTED)

            self.state = BatchState.ADVANCING
            logger.debug("Completed %d of %d parts.", index + 1, result.total)
            self._report_progress(index + 1, result.total)

        return self._finish(result, BatchState.COMPLETED)

    def _finish(self, result: BatchResult, state: BatchState) -> BatchResult:
        self.state = state
        result.state = state
        return result

    def _upload_record(self, index: int, record: bytes) -> RecordOutcome:
        self.state = BatchState.SENDING
        logger.debug("Part %d: %d bytes", index + 1, len(record))
        try:
            command = render_command(record, self.encoding)
        except EncodingError as exc:
            return RecordOutcome(index, OutcomeKind.ENCODING_FAILED, detail=str(exc))

        try:
            logger.debug("%s", command)
            self.transport.send(command)
            self.state = BatchState.AWAITING_STATUS
            response = self.transport.query(STATUS_QUERY)
        except TransportFailed as exc:
            return RecordOutcome(index, OutcomeKind.TRANSPORT_FAILED, detail=str(exc))

        try:
            code = parse_status(response)
        except ResponseUnparseable as exc:
            return RecordOutcome(
                index, OutcomeKind.UNPARSEABLE, response=response, detail=str(exc)
            )

        if code != 0:
            return RecordOutcome(
                index,
                OutcomeKind.REJECTED,
                code=code,
                response=response,
                detail=f"error writing DLP part {index + 1}: error code {code}",
            )
        return RecordOutcome(index, OutcomeKind.SUCCEEDED, code=0, response=response)

    def _cancel_requested(self) -> bool:
        if self.cancelled is None:
            return False
        return bool(self.cancelled())

    def _report_progress(self, completed: int, total: int) -> None:
        if self.progress is None:
            return
        try:
            self.progress.on_record_completed(completed, total)
        except Exception as exc:  # progress is advisory only
            logger.warning("Progress sink failed: %s", exc)


def upload_records(
    transport: Transport,
    records: Iterable[bytes],
    progress: Optional[ProgressSink] = None,
    cancelled: Optional[Callable[[], bool]] = None,
    encoding: str = DEFAULT_ENCODING,
) -> BatchResult:
    return UploadSequencer(transport, progress, cancelled, encoding).run(records)
