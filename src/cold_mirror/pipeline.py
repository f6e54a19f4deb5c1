# src/cold_mirror/pipeline.py
"""Batch orchestration for the backup and restore passes."""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, List, Optional

from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from cold_mirror.config import Config, S3Config
from cold_mirror.scheduler import BoundedScheduler, TransferUnit
from cold_mirror.storage import ensure_bucket, iter_key_pages
from cold_mirror.summary import BatchSummary, ResultAggregator, TransferOutcome
from cold_mirror.transfer import TransferTask, backup_object, restore_object

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

logger: logging.Logger = logging.getLogger(__name__)


class BatchState(Enum):
    """Lifecycle of one synchronization pass."""

    IDLE = "idle"
    LISTING = "listing"
    TRANSFERRING = "transferring"
    FINALIZED = "finalized"


class MirrorPipeline(ABC):
    """
    Drives one full pass from a reading store to a writing store.

    Subclasses choose the direction: which endpoint is listed and read, which
    one is written, how buckets are prepared, and which transfer unit runs per
    object. `run` owns the clients; `execute` runs the batch against clients
    supplied by the caller.
    """

    operation: str = "Mirror"

    def __init__(
        self,
        config: Config,
        shutdown_event: asyncio.Event,
        session: Optional[AioSession] = None,
        show_progress: bool = True,
    ) -> None:
        """
        Initializes the pipeline with the given configuration.

        Args:
            config (Config): The application configuration.
            shutdown_event (asyncio.Event): Batch-scoped cancellation signal.
            session (AioSession, optional): Session used to create clients.
            show_progress (bool): Render per-page progress bars.
        """
        self._config: Config = config
        self._shutdown_event: asyncio.Event = shutdown_event
        self._session: AioSession = session or get_session()
        self._show_progress: bool = show_progress
        self._state: BatchState = BatchState.IDLE

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    @abstractmethod
    def reader(self) -> S3Config:
        """The store objects are read from."""

    @property
    @abstractmethod
    def writer(self) -> S3Config:
        """The store objects are written to."""

    def _boto_config(self, endpoint: S3Config) -> BotoConfig:
        return BotoConfig(
            signature_version="s3v4",
            max_pool_connections=self._config.app.concurrency * 2 + 10,
            retries={"max_attempts": self._config.app.max_attempts, "mode": "standard"},
            s3=endpoint.addressing_style(),
        )

    @abstractmethod
    async def prepare(
        self, reader_client: "S3Client", writer_client: "S3Client"
    ) -> None:
        """Checks or creates the buckets before any object is touched."""

    @abstractmethod
    def transfer_unit(
        self, reader_client: "S3Client", writer_client: "S3Client"
    ) -> TransferUnit:
        """Binds the per-object transfer coroutine to both clients."""

    async def run(self) -> BatchSummary:
        """
        Creates both clients, prepares the buckets and runs the batch.

        Returns:
            BatchSummary: The finalized statistics.
        """
        logger.info(
            f"{self.operation}: '{self.reader.bucket}' -> '{self.writer.bucket}'"
        )
        async with (
            self._session.create_client(
                "s3",
                **self.reader.as_boto_dict(),
                config=self._boto_config(self.reader),
            ) as reader_client,
            self._session.create_client(
                "s3",
                **self.writer.as_boto_dict(),
                config=self._boto_config(self.writer),
            ) as writer_client,
        ):
            await self.prepare(reader_client, writer_client)
            return await self.execute(reader_client, writer_client)

    async def _pages(self, reader_client: "S3Client") -> AsyncIterator[List[str]]:
        self._state = BatchState.LISTING
        async for keys in iter_key_pages(
            reader_client, self.reader.bucket, self._config.app.list_page_size
        ):
            self._state = BatchState.TRANSFERRING
            yield keys
            self._state = BatchState.LISTING

    def _progress(self) -> Progress:
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            transient=True,
            disable=not self._show_progress,
        )

    async def execute(
        self, reader_client: "S3Client", writer_client: "S3Client"
    ) -> BatchSummary:
        """
        Lists the reading store and transfers every object.

        Per-object failures are counted in the summary. A listing failure or
        cancellation propagates and no summary is produced.

        Args:
            reader_client (S3Client): Client for the listed store.
            writer_client (S3Client): Client for the written store.

        Returns:
            BatchSummary: The finalized statistics.
        """
        if self._state is not BatchState.IDLE:
            raise RuntimeError(f"Pipeline already ran (state: {self._state.value}).")

        aggregator: ResultAggregator = ResultAggregator(self.operation)
        aggregator.start()
        progress: Progress = self._progress()
        scheduler: BoundedScheduler = BoundedScheduler(
            self._config.app.concurrency, self._shutdown_event, progress
        )
        try:
            with progress:
                await scheduler.run(
                    self._pages(reader_client),
                    self.transfer_unit(reader_client, writer_client),
                    aggregator,
                )
        except BaseException:
            await aggregator.abandon()
            raise

        summary: BatchSummary = await aggregator.finalize()
        self._state = BatchState.FINALIZED
        logger.info(summary.format_line())
        for error in summary.errors:
            logger.debug(f"  {error}")
        return summary


class BackupPipeline(MirrorPipeline):
    """Copies every source object into the archive, Snappy-compressed."""

    operation = "Backup"

    @property
    def reader(self) -> S3Config:
        return self._config.source

    @property
    def writer(self) -> S3Config:
        return self._config.archive

    async def prepare(
        self, reader_client: "S3Client", writer_client: "S3Client"
    ) -> None:
        await ensure_bucket(reader_client, self.reader.bucket, create=False)
        await ensure_bucket(
            writer_client,
            self.writer.bucket,
            create=self._config.app.create_archive_bucket,
        )
        mode: str = "full" if self._config.app.full_backup else "incremental"
        logger.info(
            f"Backing up objects in '{self.reader.bucket}' to "
            f"'{self.writer.bucket}' ({mode}, concurrency "
            f"{self._config.app.concurrency})."
        )

    def transfer_unit(
        self, reader_client: "S3Client", writer_client: "S3Client"
    ) -> TransferUnit:
        async def transfer(key: str) -> TransferOutcome:
            return await backup_object(
                TransferTask(self.reader.bucket, self.writer.bucket, key),
                reader_client,
                writer_client,
                self._config.app,
            )

        return transfer


class RestorePipeline(MirrorPipeline):
    """Writes every archived object back to the source store, decompressed."""

    operation = "Restore"

    @property
    def reader(self) -> S3Config:
        return self._config.archive

    @property
    def writer(self) -> S3Config:
        return self._config.source

    async def prepare(
        self, reader_client: "S3Client", writer_client: "S3Client"
    ) -> None:
        await ensure_bucket(reader_client, self.reader.bucket, create=False)
        await ensure_bucket(writer_client, self.writer.bucket, create=True)
        logger.info(
            f"Restoring objects in '{self.reader.bucket}' to "
            f"'{self.writer.bucket}' (concurrency {self._config.app.concurrency})."
        )

    def transfer_unit(
        self, reader_client: "S3Client", writer_client: "S3Client"
    ) -> TransferUnit:
        async def transfer(key: str) -> TransferOutcome:
            return await restore_object(
                TransferTask(self.reader.bucket, self.writer.bucket, key),
                reader_client,
                writer_client,
                self._config.app,
            )

        return transfer
