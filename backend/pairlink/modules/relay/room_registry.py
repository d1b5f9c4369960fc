"""Room membership registry.

Holds the relay's only shared mutable state: the table of rooms and the
members inside each one. Every client handler on the relay talks to the same
registry instance.

Rules:
    - A room holds at most ``capacity`` members (two by default).
    - A room with no members is not in the table. It is deleted in the same
      critical section that removed its last member.
    - ``create`` / ``join`` / ``leave`` / ``leave_all`` are atomic relative to
      each other: two joins racing for the last slot cannot both succeed.

Architecture:
    - rooms: Dict[str, Room] - room id -> Room
    - notifier: async callable used to tell members about peers joining or
      leaving. It is called after the lock is released, so a slow socket never
      blocks membership changes.

Examples:
    >>> registry = RoomRegistry()
    >>> await registry.create("r1", "member-a")
    RoomResult(ok=True, reason=None)
    >>> await registry.join("r1", "member-b")
    RoomResult(ok=True, reason=None)
    >>> await registry.join("r1", "member-c")
    RoomResult(ok=False, reason=<RoomFailure.ROOM_FULL: 'ROOM_FULL'>)
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional, Set, Tuple

from ..shared.dto import MessageType, RoomFailure, RoomResult

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str, dict], Awaitable[object]]


@dataclass
class Room:
    """A rendezvous namespace.

    Attributes:
        room_id (str): opaque identifier chosen by the creator
        members (Set[str]): member ids currently in the room
    """
    room_id: str
    members: Set[str] = field(default_factory=set)


class RoomRegistry:
    """In-memory table of rooms and their members.

    Attributes:
        rooms (Dict[str, Room]): live rooms keyed by room id
        capacity (int): maximum members per room
        notifier (Optional[Notifier]): ``notifier(member_id, event, data)``
            delivers ``peer-joined`` / ``peer-left`` to a member. Set by
            :class:`SignalRelay`; when ``None`` notifications are dropped.

    Thread Safety:
        - Mutations run under one ``asyncio.Lock`` with no ``await`` inside
          the critical section.
        - Notifications are sent after the lock is released.
    """

    def __init__(self, capacity: int = 2, notifier: Optional[Notifier] = None):
        self.rooms: Dict[str, Room] = {}
        self.capacity = capacity
        self.notifier = notifier
        self._lock = asyncio.Lock()

    async def create(self, room_id: str, member_id: str) -> RoomResult:
        """Create a room containing only ``member_id``.

        Args:
            room_id (str): room to create
            member_id (str): creator

        Returns:
            RoomResult: ``ROOM_ALREADY_EXISTS`` if the id is taken, else ok.
        """
        async with self._lock:
            if room_id in self.rooms:
                logger.info(f"[Rooms] create '{room_id}' refused: already exists")
                return RoomResult.failure(RoomFailure.ROOM_ALREADY_EXISTS)

            self.rooms[room_id] = Room(room_id=room_id, members={member_id})

        logger.info(f"[Rooms] room '{room_id}' created by {member_id[:8]}")
        return RoomResult.success()

    async def join(self, room_id: str, member_id: str) -> RoomResult:
        """Add ``member_id`` to an existing room.

        On success every other member receives ``peer-joined`` carrying the
        new member's id.

        Args:
            room_id (str): room to join
            member_id (str): joining member

        Returns:
            RoomResult: ``ROOM_NOT_FOUND`` if absent, ``ROOM_FULL`` if the
            room already holds ``capacity`` members, else ok.

        Note:
            - Joining a room the member is already in succeeds without
              notifying anyone, as long as the room is not full.
        """
        async with self._lock:
            room = self.rooms.get(room_id)
            if room is None:
                logger.info(f"[Rooms] join '{room_id}' by {member_id[:8]} refused: not found")
                return RoomResult.failure(RoomFailure.ROOM_NOT_FOUND)

            if len(room.members) >= self.capacity:
                logger.info(f"[Rooms] join '{room_id}' by {member_id[:8]} refused: full")
                return RoomResult.failure(RoomFailure.ROOM_FULL)

            room.members.add(member_id)
            others = [m for m in room.members if m != member_id]

        logger.info(f"[Rooms] {member_id[:8]} joined '{room_id}'. Room has {len(others) + 1} members")
        await self._notify(others, MessageType.PEER_JOINED, member_id)
        return RoomResult.success()

    async def leave(self, room_id: str, member_id: str) -> bool:
        """Remove ``member_id`` from ``room_id``.

        Idempotent: a missing room or member is a no-op. Remaining members get
        ``peer-left`` only when a removal actually happened.

        Args:
            room_id (str): room to leave
            member_id (str): departing member

        Returns:
            bool: whether the member was removed.
        """
        async with self._lock:
            removed, remaining = self._remove_locked(room_id, member_id)

        if removed:
            await self._notify(remaining, MessageType.PEER_LEFT, member_id)
        return removed

    async def leave_all(self, member_id: str) -> List[str]:
        """Remove ``member_id`` from every room it belongs to.

        Called once per transport disconnect. Scans the whole table rather
        than assuming a member sits in at most one room.

        Args:
            member_id (str): disconnected member

        Returns:
            List[str]: ids of the rooms the member was removed from.
        """
        affected: List[Tuple[str, List[str]]] = []
        async with self._lock:
            for room_id in [rid for rid, room in self.rooms.items() if member_id in room.members]:
                removed, remaining = self._remove_locked(room_id, member_id)
                if removed:
                    affected.append((room_id, remaining))

        for _, remaining in affected:
            await self._notify(remaining, MessageType.PEER_LEFT, member_id)
        return [room_id for room_id, _ in affected]

    def _remove_locked(self, room_id: str, member_id: str) -> Tuple[bool, List[str]]:
        # caller holds self._lock
        room = self.rooms.get(room_id)
        if room is None or member_id not in room.members:
            return False, []

        room.members.discard(member_id)
        if not room.members:
            del self.rooms[room_id]
            logger.info(f"[Rooms] {member_id[:8]} left '{room_id}'. Room deleted (empty)")
            return True, []

        logger.info(f"[Rooms] {member_id[:8]} left '{room_id}'. Room has {len(room.members)} members")
        return True, list(room.members)

    async def _notify(self, member_ids: List[str], event: MessageType, subject_id: str) -> None:
        if self.notifier is None:
            return
        for target in member_ids:
            try:
                await self.notifier(target, event.value, {"member_id": subject_id})
            except Exception as e:
                logger.error(f"[Rooms] {event.value} notification to {target[:8]} failed: {e}")

    def get_members(self, room_id: str) -> FrozenSet[str]:
        """Members of ``room_id`` (empty if the room does not exist)."""
        room = self.rooms.get(room_id)
        return frozenset(room.members) if room else frozenset()

    def has_room(self, room_id: str) -> bool:
        return room_id in self.rooms

    def get_member_count(self, room_id: str) -> int:
        room = self.rooms.get(room_id)
        return len(room.members) if room else 0

    def get_member_rooms(self, member_id: str) -> List[str]:
        return [room_id for room_id, room in self.rooms.items() if member_id in room.members]

    def get_room_count(self) -> int:
        return len(self.rooms)

    def get_room_list(self) -> List[dict]:
        """Snapshot of every room for the admin endpoint.

        Returns:
            List[dict]: ``{"room_id", "member_count", "members"}`` per room.
        """
        return [
            {
                "room_id": room_id,
                "member_count": len(room.members),
                "members": sorted(room.members),
            }
            for room_id, room in self.rooms.items()
        ]
