"""RoomRegistry membership rules."""
import asyncio
import random

from pairlink.modules.relay import RoomRegistry
from pairlink.modules.shared.dto import RoomFailure


# =============================================================================
# create / join
# =============================================================================

class TestCreateJoin:

    async def test_create_then_create_is_already_exists(self, registry):
        assert (await registry.create("r1", "a")).ok
        result = await registry.create("r1", "b")
        assert not result.ok
        assert result.reason == RoomFailure.ROOM_ALREADY_EXISTS

        # same caller gets the same answer
        again = await registry.create("r1", "a")
        assert again.reason == RoomFailure.ROOM_ALREADY_EXISTS
        assert registry.get_members("r1") == frozenset({"a"})

    async def test_join_absent_room(self, registry):
        result = await registry.join("nope", "a")
        assert not result.ok
        assert result.reason == RoomFailure.ROOM_NOT_FOUND
        assert not registry.has_room("nope")

    async def test_join_full_room(self, registry, notifier):
        await registry.create("r1", "a")
        await registry.join("r1", "b")
        notifier.calls.clear()

        result = await registry.join("r1", "c")
        assert result.reason == RoomFailure.ROOM_FULL
        assert registry.get_members("r1") == frozenset({"a", "b"})
        assert notifier.calls == []

    async def test_join_notifies_other_member(self, registry, notifier):
        await registry.create("r1", "a")
        assert (await registry.join("r1", "b")).ok
        assert notifier.calls == [("a", "peer-joined", {"member_id": "b"})]

    async def test_concurrent_joins_cannot_both_win(self, registry):
        await registry.create("r1", "a")
        results = await asyncio.gather(*(registry.join("r1", f"m{i}") for i in range(5)))

        assert sum(1 for r in results if r.ok) == 1
        assert all(r.reason == RoomFailure.ROOM_FULL for r in results if not r.ok)
        assert registry.get_member_count("r1") == 2

    async def test_capacity_is_configurable(self, notifier):
        registry = RoomRegistry(capacity=3, notifier=notifier)
        await registry.create("r1", "a")
        assert (await registry.join("r1", "b")).ok
        assert (await registry.join("r1", "c")).ok
        assert (await registry.join("r1", "d")).reason == RoomFailure.ROOM_FULL

    async def test_result_wire_shape(self, registry):
        assert (await registry.create("r1", "a")).to_wire() == {"ok": True}
        assert (await registry.create("r1", "b")).to_wire() == {"ok": False, "reason": "ROOM_ALREADY_EXISTS"}


# =============================================================================
# leave / leave_all
# =============================================================================

class TestLeave:

    async def test_leave_notifies_remaining(self, registry, notifier):
        await registry.create("r1", "a")
        await registry.join("r1", "b")
        notifier.calls.clear()

        assert await registry.leave("r1", "b") is True
        assert notifier.calls == [("a", "peer-left", {"member_id": "b"})]
        assert registry.get_member_count("r1") == 1

    async def test_leave_is_idempotent(self, registry, notifier):
        await registry.create("r1", "a")
        await registry.join("r1", "b")
        notifier.calls.clear()

        await registry.leave("r1", "b")
        snapshot = (registry.get_room_list(), list(notifier.calls))

        assert await registry.leave("r1", "b") is False
        assert (registry.get_room_list(), notifier.calls) == snapshot

    async def test_leave_unknown_room_or_member(self, registry, notifier):
        assert await registry.leave("ghost", "a") is False
        await registry.create("r1", "a")
        assert await registry.leave("r1", "stranger") is False
        assert notifier.calls == []

    async def test_last_leave_deletes_room(self, registry):
        await registry.create("r1", "a")
        await registry.leave("r1", "a")
        assert not registry.has_room("r1")
        assert registry.get_room_count() == 0

    async def test_leave_all_scans_every_room(self, registry, notifier):
        await registry.create("r1", "a")
        await registry.create("r2", "b")
        await registry.join("r2", "a")
        await registry.create("r3", "c")
        await registry.join("r3", "a")
        notifier.calls.clear()

        rooms = await registry.leave_all("a")

        assert sorted(rooms) == ["r1", "r2", "r3"]
        assert registry.get_member_rooms("a") == []
        assert not registry.has_room("r1")
        assert sorted(notifier.calls) == [
            ("b", "peer-left", {"member_id": "a"}),
            ("c", "peer-left", {"member_id": "a"}),
        ]

    async def test_leave_all_for_unknown_member(self, registry, notifier):
        await registry.create("r1", "a")
        assert await registry.leave_all("nobody") == []
        assert notifier.calls == []


# =============================================================================
# invariants
# =============================================================================

class TestInvariants:

    async def test_member_count_bounds_over_random_ops(self, registry):
        rng = random.Random(7)
        members = [f"m{i}" for i in range(6)]
        rooms = ["r1", "r2", "r3"]
        for _ in range(300):
            op = rng.choice(["create", "join", "leave", "leave_all"])
            member = rng.choice(members)
            room = rng.choice(rooms)
            if op == "create":
                await registry.create(room, member)
            elif op == "join":
                await registry.join(room, member)
            elif op == "leave":
                await registry.leave(room, member)
            else:
                await registry.leave_all(member)

            for entry in registry.get_room_list():
                assert 1 <= entry["member_count"] <= 2

    async def test_notifier_failure_does_not_break_membership(self):
        async def broken(member_id, event, data):
            raise RuntimeError("boom")

        registry = RoomRegistry(notifier=broken)
        await registry.create("r1", "a")
        assert (await registry.join("r1", "b")).ok
        assert await registry.leave("r1", "b") is True
        assert registry.get_members("r1") == frozenset({"a"})

    async def test_room_list_snapshot(self, registry):
        await registry.create("r1", "b")
        await registry.join("r1", "a")
        assert registry.get_room_list() == [{"room_id": "r1", "member_count": 2, "members": ["a", "b"]}]
