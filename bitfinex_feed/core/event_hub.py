"""Event hub for session lifecycle notifications.

The streaming session publishes connection and channel lifecycle events here
so that surrounding code (monitoring, alerting, the CLI) can observe the feed
without reaching into the session's internals.
"""

import asyncio
import inspect
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional


class EventType:
    """Event type constants published by the feed."""

    # Connection lifecycle
    CONNECTION_ESTABLISHED: str = "connection_established"
    CONNECTION_LOST: str = "connection_lost"
    CONNECTION_RESTORED: str = "connection_restored"
    RECONNECT_FAILED: str = "reconnect_failed"
    CONNECTION_CLOSED: str = "connection_closed"

    # Channel lifecycle
    CHANNEL_SUBSCRIBED: str = "channel_subscribed"
    CHANNEL_UNSUBSCRIBED: str = "channel_unsubscribed"

    # Liveness
    CONNECTION_STALE: str = "connection_stale"


class EventHubInterface(ABC):
    """Abstract interface for event hub implementations."""

    @abstractmethod
    def subscribe(self, event_type: str, callback: Callable[[Any], None]) -> None:
        """Subscribe to an event type with a callback function."""
        pass

    @abstractmethod
    def unsubscribe(self, event_type: str, callback: Callable[[Any], None]) -> None:
        """Unsubscribe from an event type."""
        pass

    @abstractmethod
    def publish(self, event_type: str, data: Any) -> None:
        """Publish an event to all subscribers."""
        pass


class EventHub(EventHubInterface):
    """Thread-safe publish/subscribe hub.

    Subscribers are kept per event type in registration order. Publishing
    copies the subscriber list under the lock and invokes callbacks outside
    it, so a callback may subscribe or unsubscribe without deadlocking.

    Attributes:
        _subscribers: Mapping of event type to callbacks
        _lock: Re-entrant lock guarding ``_subscribers``
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Callable[[Any], None]]] = {}
        self._lock: threading.RLock = threading.RLock()
        self._logger = logging.getLogger(__name__)

    def subscribe(self, event_type: str, callback: Callable[[Any], None]) -> None:
        """Subscribe to an event type with a callback function.

        Args:
            event_type: The type of event to subscribe to (use EventType constants)
            callback: Called with the event payload on every publish

        Raises:
            ValueError: If event_type is empty or None
            TypeError: If callback is not callable
        """
        if not event_type:
            raise ValueError("Event type cannot be empty or None")

        if not callable(callback):
            raise TypeError("Callback must be callable")

        with self._lock:
            callbacks = self._subscribers.setdefault(event_type, [])
            if callback not in callbacks:
                callbacks.append(callback)

    def unsubscribe(self, event_type: str, callback: Callable[[Any], None]) -> None:
        """Unsubscribe from an event type.

        Raises:
            ValueError: If event_type is empty or None
            KeyError: If the callback is not subscribed to event_type
        """
        if not event_type:
            raise ValueError("Event type cannot be empty or None")

        with self._lock:
            if event_type not in self._subscribers:
                raise KeyError(f"No subscribers found for event type: {event_type}")

            if callback not in self._subscribers[event_type]:
                raise KeyError(
                    f"Callback not found in subscribers for event type: {event_type}"
                )

            self._subscribers[event_type].remove(callback)

            if not self._subscribers[event_type]:
                del self._subscribers[event_type]

    def publish(self, event_type: str, data: Any) -> None:
        """Publish an event to all subscribers.

        Coroutine callbacks are scheduled on the running loop; a failing
        callback is logged and does not stop delivery to the others.

        Raises:
            ValueError: If event_type is empty or None
        """
        if not event_type:
            raise ValueError("Event type cannot be empty or None")

        with self._lock:
            subscribers = list(self._subscribers.get(event_type, []))

        for callback in subscribers:
            self._execute_callback_safely(callback, data, event_type)

    def _execute_callback_safely(
        self, callback: Callable[[Any], None], data: Any, event_type: str
    ) -> None:
        try:
            if inspect.iscoroutinefunction(callback):
                self._schedule_async_callback(callback, data)
            else:
                callback(data)
        except Exception as e:
            self._logger.error(f"Error executing callback for event {event_type}: {e}")

    def _schedule_async_callback(
        self, callback: Callable[[Any], Any], data: Any
    ) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.warning(
                "No running event loop; dropping async callback "
                f"{getattr(callback, '__name__', callback)}"
            )
            return
        task = loop.create_task(callback(data))
        task.add_done_callback(self._handle_async_callback_completion)

    def _handle_async_callback_completion(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self._logger.warning("Async callback was cancelled")
            return
        if task.exception() is not None:
            self._logger.error(f"Async callback failed: {task.exception()}")

    def clear_subscribers(self, event_type: Optional[str] = None) -> None:
        """Clear subscribers for one event type, or all when None."""
        if event_type is not None and not event_type:
            raise ValueError("Event type cannot be empty")

        with self._lock:
            if event_type is None:
                self._subscribers.clear()
            else:
                self._subscribers.pop(event_type, None)
