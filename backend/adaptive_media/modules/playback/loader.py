"""At-most-one-in-flight media loads per logical item."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from adaptive_media.modules.playback.exceptions import LoadCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MediaLoadCoordinator:
    """Runs loads keyed by item id.

    Starting a load for an item cancels the one already running for it. A
    cancelled or superseded load raises ``LoadCancelled`` to its caller and
    never stores its result.
    """

    def __init__(self):
        self._in_flight: dict[str, asyncio.Task] = {}
        self._results: dict[str, Any] = {}

    async def load(self, item_id: str, loader: Callable[[], Awaitable[T]]) -> T:
        previous = self._in_flight.get(item_id)
        if previous is not None and not previous.done():
            logger.debug("Superseding in-flight load", extra={"item_id": item_id})
            previous.cancel()

        task = asyncio.ensure_future(loader())
        self._in_flight[item_id] = task

        try:
            result = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise LoadCancelled(item_id) from None
        finally:
            latest = self._in_flight.get(item_id) is task
            if latest:
                del self._in_flight[item_id]

        if not latest:
            raise LoadCancelled(item_id)

        self._results[item_id] = result
        return result

    def cancel(self, item_id: str) -> bool:
        """Cancel the in-flight load for an item, if any."""
        task = self._in_flight.get(item_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def is_loading(self, item_id: str) -> bool:
        task = self._in_flight.get(item_id)
        return task is not None and not task.done()

    def result(self, item_id: str) -> Optional[Any]:
        return self._results.get(item_id)

    def forget(self, item_id: str) -> None:
        self._results.pop(item_id, None)

    async def close(self) -> None:
        """Cancel every in-flight load and wait for them to unwind."""
        tasks = [task for task in self._in_flight.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()
