"""
Frontend display sink.

Stores the latest display state in Redis (for a frontend that reloads) and
pushes it, together with sound cues, over the WebSocket bridge.
"""

from typing import Awaitable, Callable, Optional

from core.exceptions import RepositoryError
from core.value_objects import DisplaySnapshot
from infrastructure.redis_repository import DisplayStateRepository
from loggers import logger
from send_to_ws import send_to_ws


STATE_EVENT = "kiosk_state"
SOUND_EVENT = "play_sound"

WsSender = Callable[..., Awaitable[bool]]


class FrontendDisplay:
    """
    DisplaySink over Redis and WebSocket.

    Attributes:
        ws_url: WebSocket bridge URL.
    """

    def __init__(
        self,
        repository: Optional[DisplayStateRepository],
        ws_url: str,
        sender: WsSender = send_to_ws,
    ) -> None:
        self._repository = repository
        self.ws_url = ws_url
        self._send = sender
        self._last: Optional[DisplaySnapshot] = None

    @property
    def last_snapshot(self) -> Optional[DisplaySnapshot]:
        return self._last

    async def publish_state(self, snapshot: DisplaySnapshot) -> None:
        """Store and push a snapshot. Unchanged snapshots are not re-sent."""
        if snapshot == self._last:
            return
        self._last = snapshot

        data = snapshot.to_dict()
        if self._repository is not None:
            try:
                await self._repository.save(snapshot)
            except RepositoryError as e:
                logger.warning(f"Failed to store display state: {e.message}")

        await self._send(STATE_EVENT, self.ws_url, data)

    async def play_sound(self, sound: str) -> None:
        await self._send(SOUND_EVENT, self.ws_url, {"sound": sound})
