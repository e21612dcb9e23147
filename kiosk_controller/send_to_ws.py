"""
WebSocket bridge to the kiosk frontend.

Each event is one JSON message ``{"event": ..., "data": ...}`` sent over a
short-lived connection. The frontend may be down while the kiosk runs, so
failures are logged and reported as ``False``.
"""

import asyncio
import json
from typing import Any, Optional

import websockets
from websockets.exceptions import WebSocketException

from loggers import logger


DEFAULT_OPEN_TIMEOUT_S = 2.0


async def send_to_ws(
    event: str,
    ws_url: str,
    data: Optional[dict[str, Any]] = None,
    open_timeout: float = DEFAULT_OPEN_TIMEOUT_S,
) -> bool:
    """
    Send one event to the frontend bridge.

    Args:
        event: Event name (``kiosk_state``, ``play_sound``).
        ws_url: WebSocket URL of the bridge.
        data: Event payload.
        open_timeout: Seconds to wait for the connection handshake.

    Returns:
        True if the message was sent.

    Example:
        await send_to_ws(
            event='kiosk_state',
            ws_url='ws://localhost:8005/ws',
            data={'view': 'payment', 'time_left_sec': 60},
        )
    """
    message = {"event": event, "data": data}

    try:
        async with websockets.connect(ws_url, open_timeout=open_timeout) as ws:
            await ws.send(json.dumps(message))
            logger.debug(f"Frontend event sent: {event}")
            return True
    except asyncio.TimeoutError:
        logger.warning(f"Frontend bridge did not answer within {open_timeout}s, {event} dropped")
        return False
    except WebSocketException as e:
        logger.warning(f"Frontend bridge error, {event} dropped: {e}")
        return False
    except OSError as e:
        logger.warning(f"Frontend bridge unreachable, {event} dropped: {e}")
        return False
