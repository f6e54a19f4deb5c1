# src/cold_mirror/summary.py
"""
Per-object outcomes and batch-level aggregation.

Transfer units never raise; they report a `TransferOutcome`. The
`ResultAggregator` receives dispatch notices and outcomes over a queue and is
the only writer of the batch counters and error list.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Set, Union

from cold_mirror.exceptions import ColdMirrorError

logger: logging.Logger = logging.getLogger(__name__)


class OutcomeStatus(Enum):
    """Terminal state of one transfer task."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class TransferOutcome:
    """
    The result of exactly one transfer attempt.

    Attributes:
        key (str): The object key.
        status (OutcomeStatus): How the attempt ended.
        error (BaseException, optional): The cause of a failure.
    """

    key: str
    status: OutcomeStatus
    error: Optional[BaseException] = None

    @classmethod
    def succeeded(cls, key: str) -> "TransferOutcome":
        return cls(key, OutcomeStatus.SUCCEEDED)

    @classmethod
    def skipped(cls, key: str) -> "TransferOutcome":
        return cls(key, OutcomeStatus.SKIPPED)

    @classmethod
    def failed(cls, key: str, error: BaseException) -> "TransferOutcome":
        return cls(key, OutcomeStatus.FAILED, error)


@dataclass(frozen=True)
class ObjectError:
    """
    A recorded per-object failure.

    Attributes:
        key (str): The object key.
        message (str): The error type and message.
    """

    key: str
    message: str

    def __str__(self) -> str:
        return f"{self.key}: {self.message}"


@dataclass(frozen=True)
class BatchSummary:
    """
    The finalized statistics of one synchronization pass.

    Attributes:
        operation (str): ``"Backup"`` or ``"Restore"``.
        started_at (datetime): Wall-clock start time (UTC).
        duration (timedelta): Elapsed time of the pass.
        total (int): Number of dispatched objects.
        succeeded (int): Number of objects written.
        skipped (int): Number of unchanged objects left alone.
        errors (List[ObjectError]): Failures, in the order they were recorded.
    """

    operation: str
    started_at: datetime
    duration: timedelta
    total: int
    succeeded: int
    skipped: int
    errors: List[ObjectError] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def format_line(self) -> str:
        """Renders the one-line completion message."""
        return (
            f"{self.operation} completed: {self.total} objects, "
            f"{self.skipped} skipped, {self.error_count} errors, {self.duration}"
        )


@dataclass(frozen=True)
class _Dispatched:
    key: str


_Message = Union[_Dispatched, TransferOutcome, None]


class ResultAggregator:
    """
    Single-consumer aggregation of batch results.

    Producers call `dispatched` when a task is launched and `submit` with its
    outcome. A consumer task started by `start` applies every message in
    order, so no counter is ever written concurrently. `finalize` drains the
    queue and freezes the result into a `BatchSummary`.
    """

    def __init__(self, operation: str) -> None:
        """
        Initializes an empty aggregator and records the batch start time.

        Args:
            operation (str): The label used in the summary, e.g. ``"Backup"``.
        """
        self._operation: str = operation
        self._queue: asyncio.Queue[_Message] = asyncio.Queue()
        self._consumer: Optional[asyncio.Task[None]] = None
        self._started_at: datetime = datetime.now(timezone.utc)
        self._started_monotonic: float = time.monotonic()
        self._total: int = 0
        self._succeeded: int = 0
        self._skipped: int = 0
        self._errors: List[ObjectError] = []
        self._in_flight: Set[str] = set()
        self._summary: Optional[BatchSummary] = None

    def start(self) -> None:
        """Starts the consumer task."""
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume())

    def dispatched(self, key: str) -> None:
        """Counts a launched task toward the batch total."""
        self._queue.put_nowait(_Dispatched(key))

    async def submit(self, outcome: TransferOutcome) -> None:
        """Hands an outcome to the consumer."""
        await self._queue.put(outcome)

    async def _consume(self) -> None:
        while True:
            message: _Message = await self._queue.get()
            try:
                if message is None:
                    break
                self._apply(message)
            finally:
                self._queue.task_done()

    def _apply(self, message: Union[_Dispatched, TransferOutcome]) -> None:
        if isinstance(message, _Dispatched):
            self._total += 1
            self._in_flight.add(message.key)
            return

        if message.key not in self._in_flight:
            logger.error(f"Ignoring outcome for undispatched key '{message.key}'.")
            return
        self._in_flight.discard(message.key)

        if message.status is OutcomeStatus.SUCCEEDED:
            self._succeeded += 1
        elif message.status is OutcomeStatus.SKIPPED:
            self._skipped += 1
        else:
            error: Optional[BaseException] = message.error
            text: str = f"{type(error).__name__}: {error}" if error else "unknown"
            self._errors.append(ObjectError(message.key, text))

    async def abandon(self) -> None:
        """Stops the consumer without producing a summary (fatal batch end)."""
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)

    async def finalize(self) -> BatchSummary:
        """
        Drains pending messages and builds the summary.

        Returns:
            BatchSummary: The frozen batch statistics.

        Raises:
            ColdMirrorError: If a dispatched task never reported an outcome.
        """
        if self._summary is not None:
            return self._summary
        self.start()
        await self._queue.put(None)
        if self._consumer is not None:
            await self._consumer

        if self._in_flight:
            raise ColdMirrorError(
                f"{len(self._in_flight)} dispatched objects never reported "
                "an outcome."
            )

        self._summary = BatchSummary(
            operation=self._operation,
            started_at=self._started_at,
            duration=timedelta(seconds=time.monotonic() - self._started_monotonic),
            total=self._total,
            succeeded=self._succeeded,
            skipped=self._skipped,
            errors=list(self._errors),
        )
        return self._summary
