"""Reconnecting signaling channel.

Wraps a ``SignalChannel`` with a bounded connect timeout, an explicit state
variable and a supervisory poll that watches the transport after an
unexpected drop.

Main features:
    - connect() bounded by CONNECTION_TIMEOUT, never retried on its own
    - Supervisory poll at a fixed interval after a transport drop
    - Native reconnection events mirrored into one RetryBudget
    - on_connect callbacks once per transport connection
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import ReconnectConfig, SignalingConfig, reconnect_config, signaling_config
from .error_messages import CONNECTION_TIMEOUT_MESSAGE, RECONNECT_FAILED_MESSAGE, format_channel_error
from .errors import ChannelClosedError, ConnectionTimeoutError, ReconnectExhaustedError
from .retry import RetryBudget
from .signal_channel import SignalChannel, WebSocketSignalChannel

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


StateListener = Callable[[ChannelState, int], None]


class ReconnectingChannel:
    """Signaling channel with connect timeout and reconnection supervision.

    Attributes:
        state (ChannelState): current channel state
        budget (RetryBudget): reconnection attempts since the last connection
        error (str): user-facing message for the last failure
        channel (SignalChannel): live transport, ``None`` when torn down

    Examples:
        >>> channel = ReconnectingChannel()
        >>> channel.on_connect(lambda: print("joined relay"))
        >>> await channel.connect({"signal": on_signal})
        >>> await channel.request("join-room", "r1")
        {'ok': True}
        >>> await channel.disconnect()

    Note:
        Handlers registered on a torn-down transport are ignored; every
        internal callback checks that its transport is still ``self.channel``.
    """

    def __init__(
        self,
        channel_factory: Optional[Callable[[], SignalChannel]] = None,
        reconnect: ReconnectConfig = reconnect_config,
        signaling: SignalingConfig = signaling_config,
    ):
        self.signaling = signaling
        self.channel_factory = channel_factory or (
            lambda: WebSocketSignalChannel(signaling.SIGNALING_SERVER_URL, reconnect, signaling)
        )
        self.budget = RetryBudget.from_config(reconnect)
        self.poll_interval = reconnect.INITIAL_RECONNECT_DELAY

        self.channel: Optional[SignalChannel] = None
        self.state = ChannelState.DISCONNECTED
        self.error: Optional[str] = None

        self._listeners: List[StateListener] = []
        self._connect_callbacks: List[Callable[[], Any]] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._first_connect: Optional[asyncio.Future] = None
        self._announced_member_id: Optional[str] = None
        self._last_connect_error: Optional[BaseException] = None

    # ------------------------------------------------------------
    # observables
    # ------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self.channel is not None and self.channel.connected

    @property
    def attempts(self) -> int:
        return self.budget.attempts

    @property
    def member_id(self) -> Optional[str]:
        return self.channel.member_id if self.channel is not None else None

    def add_listener(self, listener: StateListener) -> None:
        """Call ``listener(state, attempts)`` on every state or attempt change."""
        self._listeners.append(listener)

    def on_connect(self, callback: Callable[[], Any]) -> None:
        """Call ``callback()`` once per transport connection (first and reconnections)."""
        self._connect_callbacks.append(callback)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state, self.budget.attempts)
            except Exception as e:
                logger.error(f"[Channel] state listener failed: {e}", exc_info=True)

    def _set_state(self, state: ChannelState) -> None:
        if state == self.state:
            return
        logger.info(f"[Channel] {self.state.value} -> {state.value}")
        self.state = state
        self._notify()

    # ------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------

    async def connect(self, handlers: Optional[Dict[str, Callable]] = None) -> None:
        """Open a fresh transport and wait for its first connection.

        Args:
            handlers: named-message handlers (``signal``, ``peer-joined``,
                ``peer-left``) registered on the new transport

        Raises:
            ConnectionTimeoutError: no connection within CONNECTION_TIMEOUT
            ReconnectExhaustedError: the transport gave up before connecting
        """
        if self.channel is not None:
            await self.disconnect()

        self.error = None
        self._last_connect_error = None
        self._announced_member_id = None
        self.budget.reset()
        self._set_state(ChannelState.CONNECTING)

        channel = self.channel_factory()
        self.channel = channel
        for event, handler in (handlers or {}).items():
            channel.on(event, handler)

        channel.on("connect", lambda: self._mark_connected(channel))
        channel.on("reconnect", lambda attempts: self._on_native_reconnect(channel, attempts))
        channel.on("disconnect", lambda reason: self._on_transport_disconnect(channel, reason))
        channel.on("connect_error", lambda err: self._on_connect_error(channel, err))
        channel.on("reconnect_attempt", lambda attempt: self._on_reconnect_attempt(channel, attempt))
        channel.on("reconnect_failed", lambda: self._on_reconnect_failed(channel))

        first_connect = asyncio.get_running_loop().create_future()
        self._first_connect = first_connect

        logger.info(f"[Channel] connecting to {self.signaling.SIGNALING_SERVER_URL}")
        await channel.open()
        if channel.connected:
            self._mark_connected(channel)

        try:
            await asyncio.wait_for(asyncio.shield(first_connect), self.signaling.CONNECTION_TIMEOUT)
        except asyncio.TimeoutError:
            if channel is not self.channel:
                raise ChannelClosedError("Channel torn down while connecting")
            if self._last_connect_error is not None:
                message = format_channel_error(self._last_connect_error, self.signaling.SIGNALING_SERVER_URL)
            else:
                message = CONNECTION_TIMEOUT_MESSAGE
            logger.error(f"[Channel] connection timeout after {self.signaling.CONNECTION_TIMEOUT}s")
            await self._close_transport()
            self.error = message
            self._set_state(ChannelState.FAILED)
            raise ConnectionTimeoutError(message)
        finally:
            if self._first_connect is first_connect:
                self._first_connect = None

        if channel is not self.channel:
            raise ChannelClosedError("Channel torn down while connecting")

    async def disconnect(self) -> None:
        """Local teardown. No reconnection follows."""
        self._stop_poll()
        if self._first_connect is not None and not self._first_connect.done():
            self._first_connect.set_exception(ChannelClosedError("Channel torn down while connecting"))
        self._first_connect = None

        await self._close_transport()
        self.budget.reset()
        self.error = None
        self._set_state(ChannelState.DISCONNECTED)

    async def _close_transport(self) -> None:
        channel = self.channel
        self.channel = None
        self._announced_member_id = None
        if channel is None:
            return
        channel.remove_all_listeners()
        try:
            await channel.close()
        except Exception as e:
            logger.warning(f"[Channel] error closing transport: {e}")

    # ------------------------------------------------------------
    # messaging
    # ------------------------------------------------------------

    async def send(self, event: str, data: Any = None) -> bool:
        """Fire-and-forget send. Dropped (``False``) when not connected."""
        if not self.connected:
            logger.debug(f"[Channel] dropped '{event}': not connected")
            return False
        try:
            await self.channel.send(event, data)
        except ChannelClosedError as e:
            logger.warning(f"[Channel] dropped '{event}': {e}")
            return False
        return True

    async def request(self, event: str, data: Any = None, timeout: Optional[float] = None) -> dict:
        """Acknowledged request.

        Raises:
            ReconnectExhaustedError: reconnection gave up
            ChannelClosedError: not connected
            asyncio.TimeoutError: no ack in time
        """
        if self.state == ChannelState.FAILED:
            raise ReconnectExhaustedError(self.error or RECONNECT_FAILED_MESSAGE)
        if not self.connected:
            raise ChannelClosedError("Socket not connected")
        return await self.channel.request(event, data, timeout or self.signaling.REQUEST_TIMEOUT)

    # ------------------------------------------------------------
    # transport events
    # ------------------------------------------------------------

    def _mark_connected(self, channel: SignalChannel) -> None:
        if channel is not self.channel:
            return

        self._stop_poll()
        self.budget.reset()
        self.error = None
        self._set_state(ChannelState.CONNECTED)

        if self._first_connect is not None and not self._first_connect.done():
            self._first_connect.set_result(True)

        member_id = channel.member_id
        if member_id == self._announced_member_id:
            return
        self._announced_member_id = member_id
        logger.info(f"[Channel] connected as {str(member_id)[:8]}")
        for callback in list(self._connect_callbacks):
            try:
                callback()
            except Exception as e:
                logger.error(f"[Channel] on_connect callback failed: {e}", exc_info=True)

    def _on_native_reconnect(self, channel: SignalChannel, attempts: int) -> None:
        if channel is not self.channel:
            return
        logger.info(f"[Channel] reconnected after {attempts} attempt(s)")
        self._mark_connected(channel)

    def _on_transport_disconnect(self, channel: SignalChannel, reason: str) -> None:
        if channel is not self.channel:
            return
        logger.warning(f"[Channel] transport lost: {reason}")
        if self.state != ChannelState.CONNECTED:
            return
        self.budget.reset()
        self._set_state(ChannelState.RECONNECTING)
        self._start_poll(channel)

    def _on_connect_error(self, channel: SignalChannel, err: BaseException) -> None:
        if channel is not self.channel:
            return
        self._last_connect_error = err
        if self.state == ChannelState.RECONNECTING:
            self.error = format_channel_error(err, self.signaling.SIGNALING_SERVER_URL)

    def _on_reconnect_attempt(self, channel: SignalChannel, attempt: int) -> None:
        if channel is not self.channel or self.state != ChannelState.RECONNECTING:
            return
        self.budget.record(attempt)
        logger.info(f"[Channel] reconnect attempt {self.budget.attempts}/{self.budget.max_attempts}")
        self._notify()

    def _on_reconnect_failed(self, channel: SignalChannel) -> None:
        if channel is not self.channel:
            return
        logger.error("[Channel] transport gave up reconnecting")
        asyncio.ensure_future(self._fail())

    async def _fail(self) -> None:
        if self.state == ChannelState.FAILED:
            return
        self._stop_poll()
        if self.state == ChannelState.CONNECTING and self._last_connect_error is not None:
            self.error = format_channel_error(self._last_connect_error, self.signaling.SIGNALING_SERVER_URL)
        else:
            self.error = RECONNECT_FAILED_MESSAGE
        await self._close_transport()

        # a connect() still waiting for its first connection fails now
        if self._first_connect is not None and not self._first_connect.done():
            self._first_connect.set_exception(ReconnectExhaustedError(self.error))
        self._set_state(ChannelState.FAILED)

    # ------------------------------------------------------------
    # supervisory poll
    # ------------------------------------------------------------

    def _start_poll(self, channel: SignalChannel) -> None:
        self._stop_poll()
        self._poll_task = asyncio.ensure_future(self._poll(channel))

    def _stop_poll(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _poll(self, channel: SignalChannel) -> None:
        while channel is self.channel:
            await asyncio.sleep(self.poll_interval)
            if channel is not self.channel or self.state != ChannelState.RECONNECTING:
                return

            if channel.connected:
                self._mark_connected(channel)
                return

            self.budget.record(self.budget.attempts + 1)
            logger.info(f"[Channel] still reconnecting ({self.budget.attempts}/{self.budget.max_attempts})")
            self._notify()

            if self.budget.exhausted:
                logger.error("[Channel] reconnection budget exhausted")
                self._poll_task = None
                await self._fail()
                return
