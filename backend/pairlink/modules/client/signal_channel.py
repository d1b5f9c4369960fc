"""Signaling transport between one client and the relay.

``SignalChannel`` is the leaf contract the rest of the client builds on:
named messages both ways, acknowledged requests, and lifecycle events.
``WebSocketSignalChannel`` implements it on top of the ``websockets`` client
and owns the transport's native reconnection loop.

Lifecycle events emitted:
    - connect: transport up and member id assigned
    - disconnect(reason): transport lost (``"client disconnect"`` when local)
    - connect_error(exc): a connect attempt failed
    - reconnect_attempt(n): about to retry, n starting at 1
    - reconnect(n): back up after n attempts
    - reconnect_failed: native retry budget exhausted

Every other relay frame (``signal``, ``peer-joined``, ``peer-left``) is
emitted under its own ``type`` with the frame's ``data`` as the argument.
"""
import asyncio
import inspect
import itertools
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..shared.dto import MessageType
from .config import ReconnectConfig, SignalingConfig, reconnect_config, signaling_config
from .errors import ChannelClosedError, ChannelError
from .retry import RetryBudget

logger = logging.getLogger(__name__)

LOCAL_DISCONNECT_REASON = "client disconnect"


class SignalChannel(ABC):
    """Event plumbing shared by every signaling transport.

    Handlers may be plain callables or coroutine functions; coroutines are
    scheduled as tasks in emission order and cancelled when the channel
    closes.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}
        self._handler_tasks: Set[asyncio.Task] = set()

    # transport contract

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    @property
    @abstractmethod
    def member_id(self) -> Optional[str]:
        ...

    @abstractmethod
    async def open(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def send(self, event: str, data: Any = None) -> None:
        ...

    @abstractmethod
    async def request(self, event: str, data: Any = None, timeout: Optional[float] = None) -> dict:
        ...

    # events

    def on(self, event: str, handler: Callable) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def remove_all_listeners(self) -> None:
        self._handlers.clear()

    def emit(self, event: str, *args) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(*args)
            except Exception as e:
                logger.error(f"[Channel] '{event}' handler failed: {e}", exc_info=True)
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[Channel] async handler failed: {task.exception()}")

    def _cancel_handler_tasks(self) -> None:
        current = asyncio.current_task()
        for task in list(self._handler_tasks):
            if task is not current:
                task.cancel()


class WebSocketSignalChannel(SignalChannel):
    """``websockets``-backed signaling channel.

    Attributes:
        url (str): relay WebSocket URL, e.g. ``ws://localhost:4000/ws``
        reconnection (bool): whether the native reconnection loop runs
        budget (RetryBudget): native reconnection attempts and backoff

    Examples:
        >>> channel = WebSocketSignalChannel("ws://localhost:4000/ws")
        >>> channel.on("peer-joined", lambda data: print(data["member_id"]))
        >>> await channel.open()
        >>> await channel.request("create-room", "r1")
        {'ok': True}
    """

    def __init__(
        self,
        url: str = signaling_config.SIGNALING_SERVER_URL,
        reconnect: ReconnectConfig = reconnect_config,
        signaling: SignalingConfig = signaling_config,
        reconnection: bool = True,
    ):
        super().__init__()
        self.url = url
        self.reconnection = reconnection
        self.budget = RetryBudget.from_config(reconnect)
        self.open_timeout = signaling.CONNECTION_TIMEOUT
        self.request_timeout = signaling.REQUEST_TIMEOUT

        self._ws = None
        self._member_id: Optional[str] = None
        self._closing = False
        self._run_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._request_ids = itertools.count(1)

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._member_id is not None

    @property
    def member_id(self) -> Optional[str]:
        return self._member_id

    async def open(self) -> None:
        if self._run_task is not None and not self._run_task.done():
            return
        self._closing = False
        self.budget.reset()
        self._run_task = asyncio.create_task(self._run())

    async def close(self) -> None:
        was_connected = self.connected
        self._closing = True

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.warning(f"[Channel] error closing socket: {e}")

        task = self._run_task
        self._run_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self._ws = None
        self._member_id = None
        self._fail_pending(ChannelClosedError("Channel closed"))

        if was_connected:
            self.emit("disconnect", LOCAL_DISCONNECT_REASON)
        self._cancel_handler_tasks()

    async def send(self, event: str, data: Any = None) -> None:
        await self._send_frame({"type": event, "data": data})

    async def request(self, event: str, data: Any = None, timeout: Optional[float] = None) -> dict:
        """Send an acknowledged request and wait for its ``ack``.

        Raises:
            ChannelClosedError: not connected, or the connection dropped
            ChannelError: the relay answered with an ``error`` frame
            asyncio.TimeoutError: no ack within ``timeout``
        """
        request_id = next(self._request_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send_frame({"type": event, "data": data, "request_id": request_id})
            return await asyncio.wait_for(future, timeout or self.request_timeout)
        finally:
            self._pending.pop(request_id, None)

    async def _send_frame(self, frame: dict) -> None:
        if not self.connected:
            raise ChannelClosedError("Socket not connected")
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            raise ChannelClosedError(f"Connection lost: {e}")

    async def _run(self) -> None:
        """Connect, read until the socket drops, back off, repeat."""
        while not self._closing:
            was_connected = False
            reason = "transport close"
            try:
                async with websockets.connect(self.url, open_timeout=self.open_timeout) as ws:
                    self._ws = ws
                    logger.info(f"[Channel] socket open: {self.url}")
                    await self._read_loop(ws)
            except ConnectionClosed as e:
                reason = f"transport close ({e})"
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                reason = f"transport error ({e})"
                if self._member_id is None:
                    logger.warning(f"[Channel] connect error: {e}")
                    self.emit("connect_error", e)
            finally:
                was_connected = self._member_id is not None
                self._ws = None
                self._member_id = None
                self._fail_pending(ChannelClosedError("Connection lost"))

            if was_connected:
                logger.info(f"[Channel] disconnected: {reason}")
                self.emit("disconnect", reason)

            if self._closing or not self.reconnection:
                break

            if self.budget.exhausted:
                logger.warning("[Channel] native reconnection exhausted")
                self.emit("reconnect_failed")
                break

            delay = self.budget.consume()
            logger.info(f"[Channel] reconnect attempt {self.budget.attempts}/{self.budget.max_attempts} in {delay:.1f}s")
            self.emit("reconnect_attempt", self.budget.attempts)
            await asyncio.sleep(delay)

    async def _read_loop(self, ws) -> None:
        async for raw in ws:
            try:
                frame = json.loads(raw)
            except ValueError:
                logger.warning("[Channel] non-JSON frame ignored")
                continue
            if not isinstance(frame, dict):
                continue

            frame_type = frame.get("type")
            data = frame.get("data")

            if frame_type == MessageType.ACK.value:
                future = self._pending.get(frame.get("request_id"))
                if future is not None and not future.done():
                    future.set_result(data if isinstance(data, dict) else {})

            elif frame_type == MessageType.MEMBER_ID.value:
                self._member_id = (data or {}).get("member_id")
                attempts = self.budget.attempts
                self.budget.reset()
                logger.info(f"[Channel] connected as {str(self._member_id)[:8]}")
                if attempts:
                    self.emit("reconnect", attempts)
                self.emit("connect")

            elif frame_type == MessageType.ERROR.value:
                message = (data or {}).get("message", "relay error")
                logger.warning(f"[Channel] relay error: {message}")
                future = self._pending.get(frame.get("request_id"))
                if future is not None and not future.done():
                    future.set_exception(ChannelError(message))

            elif frame_type:
                self.emit(frame_type, data)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
