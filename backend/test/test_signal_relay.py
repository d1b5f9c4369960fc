"""SignalRelay fan-out and disconnect cleanup."""
from pairlink.modules.shared.dto import SignalKind

from conftest import FakeWebSocket


async def _pair(relay, room_id="r1"):
    ws_a, ws_b = FakeWebSocket(), FakeWebSocket()
    relay.register("a", ws_a)
    relay.register("b", ws_b)
    await relay.registry.create(room_id, "a")
    await relay.registry.join(room_id, "b")
    return ws_a, ws_b


class TestForward:

    async def test_forward_excludes_sender_and_attaches_origin(self, relay):
        ws_a, ws_b = await _pair(relay)

        delivered = await relay.forward("r1", "a", SignalKind.OFFER, {"type": "offer", "sdp": "v=0"})

        assert delivered == 1
        assert ws_a.frames("signal") == []
        assert ws_b.frames("signal") == [{
            "type": "signal",
            "data": {"from": "a", "kind": "offer", "payload": {"type": "offer", "sdp": "v=0"}},
        }]

    async def test_forward_to_unknown_room_is_noop(self, relay):
        ws_a, ws_b = await _pair(relay)
        assert await relay.forward("elsewhere", "a", SignalKind.ANSWER, {}) == 0
        assert ws_b.frames("signal") == []

    async def test_forward_preserves_order(self, relay):
        _, ws_b = await _pair(relay)
        for i in range(5):
            await relay.forward("r1", "a", SignalKind.ICE_CANDIDATE, {"n": i})
        assert [f["data"]["payload"]["n"] for f in ws_b.frames("signal")] == [0, 1, 2, 3, 4]

    async def test_send_failure_is_reported_not_raised(self, relay):
        relay.register("a", FakeWebSocket())
        relay.register("b", FakeWebSocket(fail=True))
        await relay.registry.create("r1", "a")
        await relay.registry.join("r1", "b")

        assert await relay.forward("r1", "a", SignalKind.OFFER, {}) == 0
        assert await relay.deliver("b", "peer-left", {"member_id": "a"}) is False
        assert await relay.deliver("unknown", "peer-left", {}) is False


class TestNotifications:

    async def test_registry_notifications_go_through_sockets(self, relay):
        ws_a, _ = await _pair(relay)
        assert ws_a.frames("peer-joined") == [{"type": "peer-joined", "data": {"member_id": "b"}}]

    async def test_disconnect_leaves_all_rooms_and_unregisters(self, relay):
        ws_a, ws_b = await _pair(relay)

        rooms = await relay.disconnect("b")

        assert rooms == ["r1"]
        assert relay.get_connection_count() == 1
        assert ws_a.frames("peer-left") == [{"type": "peer-left", "data": {"member_id": "b"}}]
        assert relay.registry.get_members("r1") == frozenset({"a"})

        await relay.disconnect("a")
        assert not relay.registry.has_room("r1")
        assert relay.get_connection_count() == 0
