"""
Timers that feed the event queue.

A timer never touches session state itself: it publishes an event tagged
with the epoch it was started under, and the controller decides whether the
event is still relevant.
"""

import asyncio
from typing import Any, Optional

from event_system import EventPublisher, EventType
from loggers import logger


class EventTimer:
    """
    Publishes ``event_type`` every ``interval`` seconds (or once).

    Attributes:
        name: Timer name for logs.
        interval: Period or delay in seconds.
        repeat: Periodic when True, one-shot when False.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        publisher: EventPublisher,
        event_type: EventType,
        repeat: bool = True,
    ) -> None:
        self.name = name
        self.interval = interval
        self.repeat = repeat
        self._publisher = publisher
        self._event_type = event_type
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, **data: Any) -> None:
        """(Re)start the timer; a running instance is cancelled first."""
        self.cancel()
        self._task = asyncio.create_task(self._run(data), name=f"timer:{self.name}")
        logger.debug(f"Timer {self.name} started ({self.interval}s)")

    def cancel(self) -> None:
        """Stop the timer. Safe to call when not running."""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
                logger.debug(f"Timer {self.name} cancelled")
            self._task = None

    async def _run(self, data: dict[str, Any]) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                await self._publisher.publish(self._event_type, **data)
                if not self.repeat:
                    break
        except asyncio.CancelledError:
            pass
