# src/cold_mirror/signals.py
"""
Turns SIGINT/SIGTERM into the batch cancellation signal.

The event returned by `GracefulShutdown` is the one batch-scoped cancellation
signal handed to the pipelines: once it is set, the scheduler stops acquiring
permits, lets in-flight transfers finish, and the batch ends without a summary.
"""

import asyncio
import logging
import os
import signal
from types import FrameType
from typing import Any, Callable, Dict, Optional, Tuple, Union

logger: logging.Logger = logging.getLogger(__name__)

_SignalHandler = Union[Callable[[int, Optional[FrameType]], Any], int, None]

HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """
    Async context manager mapping termination signals onto an `asyncio.Event`.

    The first signal sets the event so the running batch can wind down. A
    second signal exits the process immediately. Previous handlers are
    restored on exit.
    """

    def __init__(self) -> None:
        self._event: asyncio.Event = asyncio.Event()
        self._previous: Dict[signal.Signals, _SignalHandler] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _handle(self, signum: int, _: Optional[FrameType]) -> None:
        if self._event.is_set():
            logger.critical("Received second shutdown signal. Exiting immediately.")
            os._exit(1)
        logger.warning(
            f"Received {signal.strsignal(signum)}. Finishing in-flight transfers "
            "and stopping the batch..."
        )
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._event.set)
        else:
            self._event.set()

    async def __aenter__(self) -> asyncio.Event:
        """
        Installs the handlers.

        Returns:
            asyncio.Event: The batch cancellation event.
        """
        self._loop = asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            try:
                self._previous[sig] = signal.signal(sig, self._handle)
            except (ValueError, OSError) as e:
                # Only the main thread may install handlers.
                logger.warning(f"Could not set handler for {sig.name}: {e}")
        return self._event

    async def __aexit__(self, *args: Any) -> None:
        """Restores the handlers that were active before entry."""
        for sig, previous in self._previous.items():
            if previous is None:
                continue
            try:
                signal.signal(sig, previous)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not restore handler for {sig.name}: {e}")
        self._previous.clear()
        self._loop = None
