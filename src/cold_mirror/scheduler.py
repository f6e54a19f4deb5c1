# src/cold_mirror/scheduler.py
"""
Bounded-concurrency dispatch of transfer tasks over a paginated listing.

Listing is consumed strictly one page at a time. Within a page every key is
launched as its own asyncio task, but only after a permit is acquired from a
fixed-size semaphore, so at most `concurrency` transfers are ever in flight.
A page's tasks are awaited before the next page is requested.
"""

import asyncio
import logging
from typing import AsyncIterable, Awaitable, Callable, List, Optional

from rich.progress import Progress, TaskID

from cold_mirror.exceptions import BatchCancelledError
from cold_mirror.summary import ResultAggregator, TransferOutcome

logger: logging.Logger = logging.getLogger(__name__)

TransferUnit = Callable[[str], Awaitable[TransferOutcome]]


class BoundedScheduler:
    """Runs one transfer unit per listed key under a fixed concurrency budget."""

    def __init__(
        self,
        concurrency: int,
        cancel_event: asyncio.Event,
        progress: Optional[Progress] = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            concurrency (int): Maximum number of transfers holding a permit.
            cancel_event (asyncio.Event): Batch-scoped cancellation signal.
            progress (Progress, optional): Receives one task per listing page.
        """
        if concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1, got {concurrency}.")
        self._concurrency: int = concurrency
        self._semaphore: asyncio.Semaphore = asyncio.Semaphore(concurrency)
        self._cancel_event: asyncio.Event = cancel_event
        self._progress: Optional[Progress] = progress
        self.dispatched: int = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    async def _acquire(self) -> None:
        """
        Waits for a free permit or for cancellation, whichever comes first.

        Raises:
            BatchCancelledError: If the cancellation signal is set.
        """
        if self._cancel_event.is_set():
            raise BatchCancelledError("Batch cancelled before dispatch.")

        acquire_task: asyncio.Task[bool] = asyncio.create_task(
            self._semaphore.acquire()
        )
        cancel_task: asyncio.Task[bool] = asyncio.create_task(
            self._cancel_event.wait()
        )
        try:
            await asyncio.wait(
                {acquire_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (acquire_task, cancel_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(acquire_task, cancel_task, return_exceptions=True)

        acquired: bool = acquire_task.done() and not acquire_task.cancelled()
        if self._cancel_event.is_set():
            if acquired:
                self._semaphore.release()
            raise BatchCancelledError("Batch cancelled while waiting for a permit.")

    async def _run_one(
        self, key: str, transfer: TransferUnit, aggregator: ResultAggregator
    ) -> None:
        """
        Runs one transfer unit and reports exactly one outcome.

        The permit was acquired by the caller and is always released here.
        """
        outcome: TransferOutcome
        try:
            outcome = await transfer(key)
        except asyncio.CancelledError as e:
            await aggregator.submit(TransferOutcome.failed(key, e))
            raise
        except Exception as e:
            logger.exception(f"Unhandled error transferring '{key}'")
            outcome = TransferOutcome.failed(key, e)
        finally:
            self._semaphore.release()
        await aggregator.submit(outcome)

    async def run(
        self,
        pages: AsyncIterable[List[str]],
        transfer: TransferUnit,
        aggregator: ResultAggregator,
    ) -> int:
        """
        Dispatches every key of every page.

        Args:
            pages (AsyncIterable[List[str]]): Listing pages, in order.
            transfer (TransferUnit): Coroutine function transferring one key.
            aggregator (ResultAggregator): Receives dispatch notices and outcomes.

        Returns:
            int: The number of dispatched keys.

        Raises:
            BatchCancelledError: If cancellation was signalled. Tasks already
                launched are allowed to finish first.
            ListingError: If the listing fails. Propagated unchanged.
        """
        page_number: int = 0
        async for keys in pages:
            page_number += 1
            logger.info(f"Processing page {page_number} ({len(keys)} objects).")
            await self._run_page(page_number, keys, transfer, aggregator)
        return self.dispatched

    async def _run_page(
        self,
        page_number: int,
        keys: List[str],
        transfer: TransferUnit,
        aggregator: ResultAggregator,
    ) -> None:
        task_id: Optional[TaskID] = None
        if self._progress is not None:
            task_id = self._progress.add_task(
                f"Page {page_number}", total=len(keys)
            )

        tasks: List[asyncio.Task[None]] = []
        try:
            for key in keys:
                await self._acquire()
                aggregator.dispatched(key)
                self.dispatched += 1
                tasks.append(
                    asyncio.create_task(self._run_one(key, transfer, aggregator))
                )
                if self._progress is not None and task_id is not None:
                    self._progress.advance(task_id)
        finally:
            # Page barrier: every launched task finishes before we move on.
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            if self._progress is not None and task_id is not None:
                self._progress.update(task_id, completed=len(tasks))
                self._progress.stop_task(task_id)
