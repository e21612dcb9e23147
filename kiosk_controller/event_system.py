"""
Event system for the kiosk controller.

Every asynchronous source (timer ticks, ledger matches, device lines,
operator commands) publishes events into one queue. A single consumer
applies them one at a time, so session state is only ever mutated from
one place.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Optional, Union

from loggers import logger


class EventType(str, Enum):
    """
    Enumeration of event types in the kiosk controller.
    """

    # Operator / presentation
    START_PAYMENT = "start_payment"
    CANCEL_PAYMENT = "cancel_payment"

    # Timers
    PAYMENT_TICK = "payment_tick"
    SUCCESS_TICK = "success_tick"
    MESSAGE_ELAPSED = "message_elapsed"

    # Chain watcher
    WATCH_SEEDED = "watch_seeded"
    WATCH_STATUS = "watch_status"
    PAYMENT_MATCHED = "payment_matched"

    # Device link
    BUTTON_PRESSED = "button_pressed"
    RELAY_STATE_CHANGED = "relay_state_changed"
    DEVICE_STATE_CHANGED = "device_state_changed"


class EventPublisher:
    """
    Publisher for sending events to the event queue.

    Attributes:
        event_queue: The asyncio queue to publish events to.
    """

    def __init__(self, event_queue: asyncio.Queue) -> None:
        """
        Initialize the event publisher.

        Args:
            event_queue: The asyncio queue for event distribution.
        """
        self.event_queue = event_queue

    async def publish(self, event_type: Union[EventType, str], **data: Any) -> None:
        """
        Publish an event to the queue.

        Args:
            event_type: The type of event to publish.
            **data: Additional event data as keyword arguments.
        """
        event = {"type": event_type, **data}
        await self.event_queue.put(event)


class EventConsumer:
    """
    Consumer for processing events from the event queue.

    Handlers run sequentially, in registration order, and each event is
    fully handled before the next one is taken from the queue.

    Attributes:
        event_queue: The asyncio queue to consume events from.
        handlers: Mapping of event types to their handler functions.
        is_consuming: Flag indicating if the consumer is active.
    """

    def __init__(self, event_queue: asyncio.Queue) -> None:
        """
        Initialize the event consumer.

        Args:
            event_queue: The asyncio queue to consume events from.
        """
        self.event_queue = event_queue
        self.handlers: dict[Union[EventType, str], list[Callable]] = {}
        self.is_consuming = False
        self._consume_task: Optional[asyncio.Task] = None

    def register_handler(
        self,
        event_type: Union[EventType, str],
        handler: Callable,
    ) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: The event type to handle.
            handler: The handler function (sync or async).
        """
        if event_type not in self.handlers:
            self.handlers[event_type] = []
        self.handlers[event_type].append(handler)

    def unregister_handler(
        self,
        event_type: Union[EventType, str],
        handler: Callable,
    ) -> None:
        """
        Unregister a handler for an event type.

        Args:
            event_type: The event type.
            handler: The handler function to remove.
        """
        if event_type in self.handlers:
            try:
                self.handlers[event_type].remove(handler)
            except ValueError:
                pass

    async def process_event(self, event: dict[str, Any]) -> None:
        """
        Process a single event by calling all registered handlers.

        Args:
            event: The event dictionary containing type and data.
        """
        event_type = event.get("type")
        for handler in self.handlers.get(event_type, []):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as e:
                logger.error(f"Handler error for {event_type}: {e}")

    async def drain(self) -> int:
        """
        Process every event already queued.

        Returns:
            Number of events processed.
        """
        processed = 0
        while not self.event_queue.empty():
            event = self.event_queue.get_nowait()
            await self.process_event(event)
            self.event_queue.task_done()
            processed += 1
        return processed

    async def _consume_loop(self) -> None:
        """
        Main consumption loop that processes events from the queue.
        """
        while self.is_consuming:
            try:
                event = await self.event_queue.get()
                await self.process_event(event)
                self.event_queue.task_done()
            except asyncio.CancelledError:
                break

    async def start_consuming(self) -> None:
        """
        Start the event consumption loop.
        """
        if self.is_consuming:
            return

        self.is_consuming = True
        self._consume_task = asyncio.create_task(self._consume_loop())

    async def stop_consuming(self) -> None:
        """
        Stop the event consumption loop and cancel the consumption task.
        """
        self.is_consuming = False

        if self._consume_task:
            self._consume_task.cancel()
            try:
                await self._consume_task
            except asyncio.CancelledError:
                pass
            self._consume_task = None
