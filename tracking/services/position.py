"""
tracking/services/position.py

Position Source Adapter.
Wraps the device's continuous fix subscription in a cancellable task that
feeds an asyncio.Queue, so consumers see fixes strictly in delivery order
and only one subscription is ever live per stream.
"""

import asyncio
import contextlib
from typing import AsyncIterator, Optional, Protocol, Union

import structlog

from config import settings
from tracking.schemas import FixError, PositionOptions, RawFix

logger = structlog.get_logger(__name__)

PositionItem = Union[RawFix, FixError]

# Marks the end of the channel
_CLOSED = object()


def watch_options() -> PositionOptions:
    """Options for the continuous subscription."""
    return PositionOptions(
        high_accuracy=settings.watch_high_accuracy,
        max_fix_age_ms=settings.watch_max_fix_age_ms,
        deadline_ms=settings.watch_deadline_ms,
    )


def bootstrap_options() -> PositionOptions:
    """Options for the one-shot fix taken when sharing is switched on."""
    return PositionOptions(
        high_accuracy=settings.bootstrap_high_accuracy,
        max_fix_age_ms=settings.bootstrap_max_fix_age_ms,
        deadline_ms=settings.bootstrap_deadline_ms,
    )


class PositionSource(Protocol):
    """Device location API (external collaborator)."""

    async def current_fix(self, options: PositionOptions) -> RawFix:
        """Return one fresh fix or raise a FixFailure subclass."""
        ...

    def watch(self, options: PositionOptions) -> AsyncIterator[PositionItem]:
        """Yield fixes, or FixError items, until the iterator is closed."""
        ...


class PositionStream:
    """A single cancellable subscription to a PositionSource."""

    def __init__(
        self,
        source: PositionSource,
        options: Optional[PositionOptions] = None,
    ) -> None:
        self._source = source
        self._options = options or watch_options()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._producer: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def active(self) -> bool:
        return self._producer is not None and not self._producer.done()

    def start(self) -> None:
        """Open the device subscription. A stream can only be started once."""
        if self._producer is not None:
            raise RuntimeError("position stream already started")
        self._producer = asyncio.create_task(self._pump())
        logger.info(
            "position_watch_started",
            high_accuracy=self._options.high_accuracy,
            max_fix_age_ms=self._options.max_fix_age_ms,
            deadline_ms=self._options.deadline_ms,
        )

    async def cancel(self) -> None:
        """Stop the subscription now. Items already queued are discarded."""
        self._closed = True
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._producer
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        logger.info("position_watch_cancelled")

    async def _pump(self) -> None:
        try:
            async for item in self._source.watch(self._options):
                await self._queue.put(item)
        except Exception as exc:
            logger.error("position_watch_failed", error=str(exc))
        finally:
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "PositionStream":
        return self

    async def __anext__(self) -> PositionItem:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._closed = True
            raise StopAsyncIteration
        return item
