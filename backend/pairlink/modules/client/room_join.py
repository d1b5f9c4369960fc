"""Create-or-join room protocol with bounded retries."""
import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from ..shared.dto import MessageType, RoomFailure, RoomResult
from .config import JoinConfig, join_config
from .error_messages import format_join_error
from .errors import ChannelClosedError, ChannelError, RoomJoinError

logger = logging.getLogger(__name__)

CONNECTION_LOST_MESSAGE = "Connection lost. Please retry."
NOT_CONNECTED_MESSAGE = "Socket not connected"
TIMEOUT_MESSAGE = "Room request timed out. Please retry."


class RoomJoinProtocol:
    """Get one client into a room.

    The creator sends ``create-room`` and falls back to a single
    ``join-room`` when the room already exists (it reconnected and the room
    outlived it). The joiner retries ``join-room`` on ``ROOM_NOT_FOUND``
    with a linearly growing delay, because it may arrive before the creator.

    Args:
        channel: connected ``ReconnectingChannel`` (anything with
            ``connected`` and ``request``)
        room_id: room to create or join
        is_creator: creator or joiner role
        config: retry policy

    Examples:
        >>> protocol = RoomJoinProtocol(channel, "r1", is_creator=False)
        >>> await protocol.run()
        RoomResult(ok=True, reason=None)
    """

    def __init__(self, channel, room_id: str, is_creator: bool, config: JoinConfig = join_config):
        self.channel = channel
        self.room_id = room_id
        self.is_creator = is_creator
        self.config = config

    async def run(self) -> RoomResult:
        """Run the protocol to completion.

        Returns:
            RoomResult: the successful result

        Raises:
            RoomJoinError: terminal failure, raised once
        """
        await asyncio.sleep(self.config.JOIN_START_DELAY)
        self._ensure_connected(NOT_CONNECTED_MESSAGE)

        if self.is_creator:
            return await self._create()
        return await self._join_with_retry()

    def start(
        self,
        on_success: Optional[Callable[[RoomResult], Any]] = None,
        on_error: Optional[Callable[[RoomJoinError], Any]] = None,
    ) -> asyncio.Task:
        """Run in a task and report through exactly one of the callbacks.

        Callbacks may return awaitables; they are awaited inside the task.
        Cancelling the task reports nothing.
        """

        async def _runner():
            try:
                result = await self.run()
            except RoomJoinError as e:
                callback, argument = on_error, e
            else:
                callback, argument = on_success, result

            if callback is None:
                return
            outcome = callback(argument)
            if inspect.isawaitable(outcome):
                await outcome

        return asyncio.ensure_future(_runner())

    async def _create(self) -> RoomResult:
        attempt = 1
        result = await self._request(MessageType.CREATE_ROOM)
        if result.ok:
            logger.info(f"[Join] room created: {self.room_id}")
            return result

        if result.reason == RoomFailure.ROOM_ALREADY_EXISTS:
            logger.info(f"[Join] room {self.room_id} already exists, joining instead")
            await asyncio.sleep(self.config.CREATE_FALLBACK_DELAY * attempt)
            self._ensure_connected(CONNECTION_LOST_MESSAGE)

            joined = await self._request(MessageType.JOIN_ROOM)
            if joined.ok:
                logger.info(f"[Join] joined existing room: {self.room_id}")
                return joined
            raise self._failure(joined, creating=False)

        raise self._failure(result, creating=True)

    async def _join_with_retry(self) -> RoomResult:
        max_attempts = self.config.JOIN_MAX_ATTEMPTS
        attempt = 1
        while True:
            result = await self._request(MessageType.JOIN_ROOM)
            if result.ok:
                logger.info(f"[Join] joined room {self.room_id} (attempt {attempt})")
                return result

            if result.reason != RoomFailure.ROOM_NOT_FOUND or attempt >= max_attempts:
                raise self._failure(result, creating=False)

            delay = attempt * self.config.JOIN_RETRY_DELAY
            logger.info(f"[Join] room {self.room_id} not found, retry {attempt}/{max_attempts} in {delay:.1f}s")
            await asyncio.sleep(delay)
            self._ensure_connected(CONNECTION_LOST_MESSAGE)
            attempt += 1

    async def _request(self, message_type: MessageType) -> RoomResult:
        try:
            data = await self.channel.request(message_type.value, self.room_id)
        except asyncio.TimeoutError:
            logger.error(f"[Join] {message_type.value} timed out")
            raise RoomJoinError(TIMEOUT_MESSAGE, reason="TIMEOUT")
        except ChannelClosedError:
            raise RoomJoinError(CONNECTION_LOST_MESSAGE, reason="CHANNEL_CLOSED")
        except ChannelError as e:
            raise RoomJoinError(e.message, reason="CHANNEL_ERROR")
        return RoomResult.model_validate(data)

    def _ensure_connected(self, message: str) -> None:
        if not self.channel.connected:
            logger.warning(f"[Join] {message}")
            raise RoomJoinError(message, reason="CHANNEL_CLOSED")

    def _failure(self, result: RoomResult, creating: bool) -> RoomJoinError:
        reason = result.reason.value if result.reason else None
        message = format_join_error(reason, creating)
        logger.error(f"[Join] {message}")
        return RoomJoinError(message, reason=reason)
