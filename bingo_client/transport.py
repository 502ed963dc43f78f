import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import socketio
from socketio import exceptions as sio_exceptions

from bingo_client.errors import ConnectionLostError, TransportError
from bingo_client.models import Ack, ConnectionStatus

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Optional[Awaitable[None]]]
StatusListener = Callable[[ConnectionStatus, Optional[Exception]], None]

# Disconnect reasons for which the server asked us to go away; no reconnect
SERVER_CLOSE_REASONS = {'server disconnect', 'io server disconnect'}


def backoff_delay(base_delay: float, attempt: int) -> float:
    return base_delay * (2 ** attempt)


class ReconnectPolicy:
    """Counts consecutive failures; delay grows as ``base * 2**attempt``."""

    def __init__(self, base_delay: float = 1.0, max_attempts: int = 5) -> None:
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self.attempt = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def next_delay(self) -> Optional[float]:
        """Register a failure and return the wait before retrying, or None when out of budget."""
        if self.exhausted:
            return None
        self.attempt += 1
        return backoff_delay(self.base_delay, self.attempt)

    def reset(self) -> None:
        self.attempt = 0


def default_client_factory() -> socketio.AsyncClient:
    # Reconnection is driven by ReconnectPolicy, not by the library
    return socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)


class ConnectionManager:
    """Owns the single Socket.IO channel to the game server.

    - ``connect()`` calls are serialized: concurrent callers share one attempt
    - Unexpected disconnects reconnect with exponential backoff; once the
      budget is spent a ``ConnectionLostError`` goes to status listeners
    - Handlers registered with ``on()`` live in this object, not in the
      Socket.IO client, so they survive a reconnect onto a fresh client
    """

    def __init__(self, url: str, socketio_path: str = 'socket.io', transports: Optional[List[str]] = None,
                 connect_timeout: float = 10, ack_timeout: float = 10, base_delay: float = 1.0,
                 max_attempts: int = 5, client_factory: Callable[[], Any] = default_client_factory,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self.url = url
        self.socketio_path = socketio_path
        self.transports = transports
        self.connect_timeout = connect_timeout
        self.ack_timeout = ack_timeout
        self.policy = ReconnectPolicy(base_delay, max_attempts)
        self._client_factory = client_factory
        self._sleep = sleep
        self._client = None
        self._identity: Optional[Dict[str, Any]] = None
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._status_listeners: List[StatusListener] = []
        self._connect_task: Optional[asyncio.Future] = None
        self._closing = False
        self.status = ConnectionStatus.DISCONNECTED

    # ---- handler registry ----

    def on(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: str, handler: Optional[EventHandler] = None) -> None:
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def add_status_listener(self, listener: StatusListener) -> None:
        if listener not in self._status_listeners:
            self._status_listeners.append(listener)

    def is_connected(self) -> bool:
        return self._client is not None and bool(self._client.connected)

    def _set_status(self, status: ConnectionStatus, error: Optional[Exception] = None) -> None:
        if status == self.status and error is None:
            return
        previous, self.status = self.status, status
        logger.info(f"[conn-status] {previous.value} -> {status.value}" + (f" error={error}" if error else ''))
        for listener in list(self._status_listeners):
            try:
                listener(status, error)
            except Exception:
                logger.exception(f"[conn-status] listener failed status={status.value}")

    # ---- connection lifecycle ----

    async def connect(self, identity: Optional[Dict[str, Any]] = None) -> None:
        """Resolve once connected; raise ConnectionLostError when the retry budget runs out."""
        if self.is_connected():
            return
        if self._connect_task is not None and not self._connect_task.done():
            logger.debug("[conn-wait] connection already in progress")
            await asyncio.shield(self._connect_task)
            return
        if identity is not None:
            self._identity = identity
        self._closing = False
        self._connect_task = asyncio.ensure_future(self._run_connect(wait_first=False))
        self._connect_task.add_done_callback(_consume_result)
        await asyncio.shield(self._connect_task)

    async def _run_connect(self, wait_first: bool) -> None:
        last_error: Optional[Exception] = None
        while True:
            if wait_first:
                delay = self.policy.next_delay()
                if delay is None:
                    error = ConnectionLostError(self.policy.attempt, last_error)
                    self._set_status(ConnectionStatus.FAILED, error)
                    raise error
                self._set_status(ConnectionStatus.RECONNECTING)
                logger.info(f"[conn-retry] attempt={self.policy.attempt}/{self.policy.max_attempts} in {delay}s")
                await self._sleep(delay)
                if self._closing:
                    raise TransportError('connection closed while reconnecting')
            wait_first = True
            try:
                await self._open()
            except TransportError as exc:
                last_error = exc
                logger.warning(f"[conn-fail] attempt={self.policy.attempt} error={exc}")
                continue
            self.policy.reset()
            self._set_status(ConnectionStatus.CONNECTED)
            return

    async def _open(self) -> None:
        if self.status not in (ConnectionStatus.RECONNECTING, ConnectionStatus.CONNECTED):
            self._set_status(ConnectionStatus.CONNECTING)
        client = self._client_factory()
        self._bind(client)
        logger.info(f"[conn-open] url={self.url}")
        try:
            await client.connect(
                self.url,
                auth=self._identity,
                transports=self.transports,
                socketio_path=self.socketio_path,
                wait_timeout=self.connect_timeout,
            )
        except (sio_exceptions.ConnectionError, OSError, asyncio.TimeoutError) as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        self._client = client

    def _bind(self, client: Any) -> None:
        async def on_connect():
            logger.debug(f"[conn-handshake] url={self.url}")

        async def on_disconnect(reason=None):
            await self._handle_disconnect(client, reason)

        async def on_any(event, *args):
            await self._dispatch(event, *args)

        client.on('connect', on_connect)
        client.on('disconnect', on_disconnect)
        client.on('*', on_any)

    async def _handle_disconnect(self, client: Any, reason: Optional[str]) -> None:
        if client is not self._client:
            # A client we already replaced or dropped
            return
        logger.info(f"[conn-lost] reason={reason}")
        if self._closing or reason in SERVER_CLOSE_REASONS:
            self._client = None
            self._set_status(ConnectionStatus.DISCONNECTED)
            return
        if self._connect_task is not None and not self._connect_task.done():
            return
        self._set_status(ConnectionStatus.RECONNECTING)
        self._connect_task = asyncio.ensure_future(self._run_connect(wait_first=True))
        self._connect_task.add_done_callback(_consume_result)

    async def disconnect(self) -> None:
        """Close the channel for good and drop every registered handler."""
        self._closing = True
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, TransportError):
                pass
        client, self._client = self._client, None
        if client is not None:
            await client.disconnect()
        self._handlers.clear()
        self.policy.reset()
        self._set_status(ConnectionStatus.DISCONNECTED)

    # ---- messaging ----

    async def _dispatch(self, event: str, *args: Any) -> None:
        payload = args[0] if len(args) == 1 else (list(args) if args else None)
        logger.debug(f"[recv] event={event} payload={payload}")
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"[recv-error] event={event} handler={getattr(handler, '__name__', handler)}")

    async def send(self, event: str, payload: Any = None, callback: Optional[Callable[[Ack], None]] = None) -> bool:
        """Emit an event; with a callback, wait for the ack (or its timeout) and pass it on."""
        if callback is not None:
            ack = await self.request(event, payload)
            callback(ack)
            return ack.success
        if not self.is_connected():
            logger.warning(f"[emit-skip] event={event} not connected")
            return False
        logger.debug(f"[emit] event={event} payload={payload}")
        try:
            await self._client.emit(event, payload)
        except sio_exceptions.SocketIOError as exc:
            logger.warning(f"[emit-fail] event={event} error={exc}")
            return False
        return True

    async def request(self, event: str, payload: Any = None) -> Ack:
        if not self.is_connected():
            logger.warning(f"[emit-skip] event={event} not connected")
            return Ack.rejected('Socket not connected')
        logger.debug(f"[emit] event={event} payload={payload} ack=True")
        try:
            response = await self._client.call(event, payload, timeout=self.ack_timeout)
        except sio_exceptions.TimeoutError:
            logger.warning(f"[ack-timeout] event={event} after={self.ack_timeout}s")
            return Ack.rejected(f'No acknowledgement for {event}')
        except sio_exceptions.SocketIOError as exc:
            logger.warning(f"[emit-fail] event={event} error={exc}")
            return Ack.rejected(str(exc))
        ack = Ack.from_payload(response)
        logger.debug(f"[ack] event={event} success={ack.success} message={ack.message}")
        return ack


def _consume_result(task: asyncio.Future) -> None:
    # Failures are reported through status listeners; keep asyncio quiet about them
    if not task.cancelled():
        task.exception()
