"""Single shared connection to the backend's realtime event stream."""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Optional

import socketio

from .config import derive_realtime_origin

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]

CONNECT_EVENT = "connect"
DISCONNECT_EVENT = "disconnect"
CONNECT_ERROR_EVENT = "connect_error"
ERROR_EVENT = "error"

_LIFECYCLE_EVENTS = (CONNECT_EVENT, DISCONNECT_EVENT, CONNECT_ERROR_EVENT)


class ChannelState(str, Enum):
    """Connection lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def default_transport_factory() -> socketio.AsyncClient:
    """Socket.IO client that reconnects on its own with backoff."""
    return socketio.AsyncClient(
        reconnection=True,
        reconnection_attempts=0,
        reconnection_delay=1,
        reconnection_delay_max=5,
    )


class RealtimeChannel:
    """
    One live event-stream connection per session.

    Subscribers register handlers by event name. The handler registry
    belongs to the channel, not the transport, so handlers survive
    reconnects and even a transport being replaced.
    """

    def __init__(
        self,
        transport_factory: Callable[[], Any] = default_transport_factory,
        connect_timeout: float = 20.0,
        token: Optional[str] = None,
    ):
        self._transport_factory = transport_factory
        self._connect_timeout = connect_timeout
        self._token = token
        self._transport: Optional[Any] = None
        self._bound: set[str] = set()
        self._handlers: dict[str, list[Handler]] = {}
        self._state = ChannelState.DISCONNECTED
        self._url: Optional[str] = None
        self._retry_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ChannelState.CONNECTED

    @property
    def url(self) -> Optional[str]:
        return self._url

    def on(self, event: str, handler: Handler) -> None:
        """Subscribe ``handler`` to ``event``. Handlers run in subscription order."""
        self._handlers.setdefault(event, []).append(handler)
        if self._transport is not None:
            self._bind(event)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers(self, event: str) -> list[Handler]:
        return list(self._handlers.get(event, []))

    async def connect(self, base_url: str) -> None:
        """
        Open the connection for a REST API base URL.

        No-op when already connected (or connecting) to the same endpoint.
        Failures are emitted as an ``error`` event, never raised; a failed
        first attempt keeps retrying in the background with the transport's
        own backoff until it succeeds or the channel is disconnected.
        """
        url = derive_realtime_origin(base_url)
        if self._transport is not None and self._url == url and self._state != ChannelState.DISCONNECTED:
            return
        if self._transport is not None:
            await self.disconnect()

        self._url = url
        self._transport = self._transport_factory()
        self._bound = set()
        for event in (*_LIFECYCLE_EVENTS, *self._handlers):
            self._bind(event)

        self._state = ChannelState.CONNECTING
        logger.info("Connecting to realtime channel at %s", url)

        transport = self._transport
        try:
            await transport.connect(url, **self._connect_options())
        except Exception as e:
            # The transport raises its own error types; all of them mean "not connected".
            logger.error("Realtime connection to %s failed, retrying: %s", url, e)
            await self._emit(ERROR_EVENT, e)
            if self._transport is transport:
                self._retry_task = asyncio.ensure_future(self._retry(transport, url))
            return

        self._mark_connected(transport)

    def _connect_options(self, retry: bool = False) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        options: dict[str, Any] = {
            "headers": headers,
            "transports": ["websocket", "polling"],
            "wait_timeout": self._connect_timeout,
        }
        if retry:
            options["retry"] = True
        return options

    async def _retry(self, transport: Any, url: str) -> None:
        try:
            await transport.connect(url, **self._connect_options(retry=True))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._transport is transport:
                logger.error("Realtime channel gave up on %s: %s", url, e)
                self._state = ChannelState.DISCONNECTED
                await self._emit(ERROR_EVENT, e)
            return
        self._mark_connected(transport)

    def _mark_connected(self, transport: Any) -> None:
        # The transport may have fired its connect callback already.
        if self._transport is transport and getattr(transport, "connected", True):
            self._state = ChannelState.CONNECTED

    async def disconnect(self) -> None:
        """Tear down the transport. Safe to call when already disconnected."""
        transport = self._transport
        self._transport = None
        self._bound = set()
        self._state = ChannelState.DISCONNECTED
        retry_task, self._retry_task = self._retry_task, None
        if retry_task is not None and not retry_task.done():
            retry_task.cancel()
        if transport is None:
            return
        logger.info("Disconnecting realtime channel")
        try:
            await transport.disconnect()
        except Exception as e:
            logger.warning("Realtime transport teardown failed: %s", e)

    def _bind(self, event: str) -> None:
        if event in self._bound or self._transport is None:
            return
        self._bound.add(event)

        async def dispatch(*args: Any) -> None:
            await self._on_transport_event(event, *args)

        self._transport.on(event, dispatch)

    async def _on_transport_event(self, event: str, *args: Any) -> None:
        if event == CONNECT_EVENT:
            self._state = ChannelState.CONNECTED
            logger.info("Realtime channel connected")
        elif event == DISCONNECT_EVENT:
            if self._transport is not None:
                self._state = ChannelState.DISCONNECTED
            logger.info("Realtime channel disconnected: %s", args[0] if args else "unknown")
        elif event == CONNECT_ERROR_EVENT:
            logger.error("Realtime channel connection error: %s", args[0] if args else "unknown")
            await self._emit(event, *args)
            await self._emit(ERROR_EVENT, *args)
            return
        await self._emit(event, *args)

    async def _emit(self, event: str, *args: Any) -> None:
        for handler in self.handlers(event):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler for %r event failed", event)
