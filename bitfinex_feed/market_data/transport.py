"""
Duplex transport used by the streaming session.

ITransport is the boundary the session depends on; WebSocketTransport is the
default implementation on top of the ``websockets`` library.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from bitfinex_feed.core.logger import get_module_logger
from bitfinex_feed.market_data.errors import TransportError

MessageHandler = Callable[[str], None]
CloseHandler = Callable[[], None]


class ITransport(ABC):
    """Interface for a text-frame duplex connection.

    Message handlers are invoked for every inbound text frame on the
    transport's receive context. Close handlers are invoked at most once per
    connection when it ends without ``close()`` having been called.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection and start delivering inbound frames."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection; safe to call on an already broken one."""
        pass

    @abstractmethod
    async def send_message(self, message: str) -> None:
        """Send one text frame."""
        pass

    @abstractmethod
    def add_message_handler(self, handler: MessageHandler) -> None:
        pass

    @abstractmethod
    def remove_message_handler(self, handler: MessageHandler) -> None:
        pass

    @abstractmethod
    def add_close_handler(self, handler: CloseHandler) -> None:
        pass


class WebSocketTransport(ITransport):
    """``websockets``-backed transport with a background receive task.

    Attributes:
        _url: Websocket endpoint
        _websocket: Live connection, None while disconnected
        _receive_task: Task reading frames and invoking message handlers
        _closing: Set by ``close()`` so the receive loop ends silently
    """

    def __init__(
        self,
        url: str,
        ping_interval: Optional[float] = 20.0,
        ping_timeout: Optional[float] = 10.0,
        close_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout
        self._close_timeout = close_timeout
        self._websocket: Optional[Any] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._message_handlers: List[MessageHandler] = []
        self._close_handlers: List[CloseHandler] = []
        self._closing = False
        self._logger = get_module_logger("websocket_transport")

    @property
    def url(self) -> str:
        return self._url

    def is_open(self) -> bool:
        return self._websocket is not None

    def add_message_handler(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def remove_message_handler(self, handler: MessageHandler) -> None:
        if handler in self._message_handlers:
            self._message_handlers.remove(handler)

    def add_close_handler(self, handler: CloseHandler) -> None:
        self._close_handlers.append(handler)

    async def connect(self) -> None:
        """Open the websocket.

        Raises:
            TransportError: If the connection cannot be established
        """
        if self._websocket is not None:
            await self.close()

        self._logger.info(f"Connecting to WebSocket: {self._url}")
        try:
            self._websocket = await websockets.connect(
                self._url,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_timeout,
                close_timeout=self._close_timeout,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            self._websocket = None
            raise TransportError(f"Failed to connect to {self._url}: {e}")

        self._closing = False
        self._receive_task = asyncio.create_task(
            self._receive_loop(self._websocket), name="websocket-receive"
        )
        self._logger.info("WebSocket connected successfully")

    async def close(self) -> None:
        """Close the websocket and stop the receive task.

        Raises:
            TransportError: If closing the websocket fails
        """
        self._closing = True
        websocket, self._websocket = self._websocket, None
        task, self._receive_task = self._receive_task, None

        error: Optional[Exception] = None
        if websocket is not None:
            try:
                await websocket.close()
            except Exception as e:
                error = e

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if error is not None:
            raise TransportError(f"Error closing WebSocket: {error}")
        self._logger.info("WebSocket disconnected")

    async def send_message(self, message: str) -> None:
        """Send a text frame.

        Raises:
            TransportError: If not connected or the send fails
        """
        if self._websocket is None:
            raise TransportError("WebSocket not connected")
        try:
            await self._websocket.send(message)
        except (ConnectionClosed, WebSocketException, OSError) as e:
            raise TransportError(f"Failed to send message: {e}")

    async def _receive_loop(self, websocket: Any) -> None:
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                for handler in list(self._message_handlers):
                    handler(message)
        except ConnectionClosed as e:
            self._logger.warning(f"WebSocket connection closed: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(f"Error in WebSocket receive loop: {e}")

        if self._closing or websocket is not self._websocket:
            return
        self._websocket = None
        self._receive_task = None
        self._notify_closed()

    def _notify_closed(self) -> None:
        for handler in list(self._close_handlers):
            try:
                handler()
            except Exception as e:
                self._logger.error(f"Close handler raised: {e}")
