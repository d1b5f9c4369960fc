"""Shared fixtures and in-memory fakes.

Fakes:
    FakeWebSocket: relay-side socket that records frames
    FakeSignalChannel: scripted signaling transport for client tests
    FakePeerConnection: RTCPeerConnection stand-in driven by the test
    FakeMedia: LocalMedia stand-in
"""
import asyncio
import inspect
import itertools
from typing import Any, Dict, List, Optional

import pytest
from aiortc import RTCSessionDescription

from pairlink.modules.client.config import JoinConfig, OrchestratorConfig, ReconnectConfig, SignalingConfig
from pairlink.modules.client.errors import ChannelClosedError
from pairlink.modules.client.signal_channel import SignalChannel
from pairlink.modules.relay import RoomRegistry, SignalRelay


# =============================================================================
# Relay side
# =============================================================================

class FakeWebSocket:
    """Records ``send_json`` frames; optionally fails every send."""

    def __init__(self, fail: bool = False):
        self.sent: List[dict] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def frames(self, frame_type: str) -> List[dict]:
        return [frame for frame in self.sent if frame["type"] == frame_type]


class RecordingNotifier:
    def __init__(self):
        self.calls: List[tuple] = []

    async def __call__(self, member_id: str, event: str, data: dict) -> bool:
        self.calls.append((member_id, event, data))
        return True


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def registry(notifier):
    return RoomRegistry(notifier=notifier)


@pytest.fixture
def relay():
    return SignalRelay(RoomRegistry())


# =============================================================================
# Client side
# =============================================================================

class FakeSignalChannel(SignalChannel):
    """Scripted signaling transport.

    ``responses`` maps a request event to a list of replies consumed in
    order; a reply may be a dict, an exception to raise, or a callable taking
    the request data. Unscripted requests are acknowledged with ``{"ok": True}``.
    """

    _ids = itertools.count(1)

    def __init__(self, responses: Optional[Dict[str, list]] = None, auto_connect: bool = True):
        super().__init__()
        self.responses = responses or {}
        self.auto_connect = auto_connect
        self.sent: List[tuple] = []
        self.requests: List[tuple] = []
        self.opened = 0
        self.closed = False
        self._connected = False
        self._member_id: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def member_id(self) -> Optional[str]:
        return self._member_id

    async def open(self) -> None:
        self.opened += 1
        if self.auto_connect:
            self.simulate_connect()

    async def close(self) -> None:
        self.closed = True
        self._connected = False
        self._member_id = None

    async def send(self, event: str, data: Any = None) -> None:
        if not self._connected:
            raise ChannelClosedError("Socket not connected")
        self.sent.append((event, data))

    async def request(self, event: str, data: Any = None, timeout: Optional[float] = None) -> dict:
        if not self._connected:
            raise ChannelClosedError("Socket not connected")
        self.requests.append((event, data))

        queue = self.responses.get(event)
        reply = queue.pop(0) if queue else {"ok": True}
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(data)
        return reply

    # test controls

    def simulate_connect(self, member_id: Optional[str] = None) -> None:
        self._connected = True
        self._member_id = member_id or f"member-{next(self._ids)}"
        self.emit("connect")

    def simulate_drop(self, reason: str = "transport close") -> None:
        self._connected = False
        self._member_id = None
        self.emit("disconnect", reason)

    def signals(self) -> List[dict]:
        return [data for event, data in self.sent if event == "signal"]


class FakePeerConnection:
    """Minimal RTCPeerConnection: descriptions, candidates, state and events."""

    def __init__(self):
        self.handlers: Dict[str, Any] = {}
        self.tracks: List[Any] = []
        self.candidates: List[Any] = []
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.connectionState = "new"
        self.closed = False

    def on(self, event: str, f=None):
        def register(func):
            self.handlers[event] = func
            return func
        return register(f) if f is not None else register

    def addTrack(self, track):
        self.tracks.append(track)

    async def createOffer(self):
        return RTCSessionDescription(sdp="v=0 offer", type="offer")

    async def createAnswer(self):
        return RTCSessionDescription(sdp="v=0 answer", type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        self.remoteDescription = description

    async def addIceCandidate(self, candidate):
        self.candidates.append(candidate)

    async def close(self):
        self.closed = True
        await self.set_state("closed")

    # test controls

    async def fire(self, event: str, *args):
        handler = self.handlers.get(event)
        if handler is None:
            return
        result = handler(*args)
        if inspect.isawaitable(result):
            await result

    async def set_state(self, state: str):
        self.connectionState = state
        await self.fire("connectionstatechange")


class SlowOfferPeerConnection(FakePeerConnection):
    """Offer creation takes a while, leaving room for a teardown to land."""

    async def createOffer(self):
        await asyncio.sleep(0.05)
        return await super().createOffer()


class SlowClosePeerConnection(FakePeerConnection):
    async def close(self):
        await asyncio.sleep(0.05)
        await super().close()


class PeerConnectionFactory:
    """Session factory that remembers every connection it built.

    ``connection_class`` may be swapped mid-test; later sessions use it.
    """

    def __init__(self, connection_class=FakePeerConnection):
        self.connection_class = connection_class
        self.created: List[FakePeerConnection] = []

    def __call__(self) -> FakePeerConnection:
        pc = self.connection_class()
        self.created.append(pc)
        return pc

    @property
    def last(self) -> FakePeerConnection:
        return self.created[-1]


class FakeMediaStream:
    def __init__(self):
        self.enabled = {"audio": True, "video": True}

    def session_tracks(self):
        return []

    def set_track_enabled(self, kind: str, enabled: bool) -> bool:
        self.enabled[kind] = enabled
        return True


class FakeMedia:
    """LocalMedia stand-in; ``error`` is raised from acquire()."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.stream: Optional[FakeMediaStream] = None
        self.acquired = 0
        self.released = 0

    async def acquire(self):
        self.acquired += 1
        if self.error is not None:
            raise self.error
        self.stream = FakeMediaStream()
        return self.stream

    def set_track_enabled(self, kind: str, enabled: bool) -> bool:
        if self.stream is None:
            return False
        return self.stream.set_track_enabled(kind, enabled)

    def release(self, stream=None):
        self.released += 1
        self.stream = None


@pytest.fixture
def fast_reconnect():
    return ReconnectConfig(MAX_RECONNECT_ATTEMPTS=3, INITIAL_RECONNECT_DELAY=0.01, MAX_RECONNECT_DELAY=0.04)


@pytest.fixture
def fast_signaling():
    return SignalingConfig(SIGNALING_SERVER_URL="ws://test/ws", CONNECTION_TIMEOUT=0.2, REQUEST_TIMEOUT=0.2)


@pytest.fixture
def fast_join():
    return JoinConfig(JOIN_START_DELAY=0, JOIN_MAX_ATTEMPTS=5, JOIN_RETRY_DELAY=0.001, CREATE_FALLBACK_DELAY=0.001)


@pytest.fixture
def fast_orchestrator():
    return OrchestratorConfig(RETRY_SETTLE_DELAY=0)


async def settle(rounds: int = 5) -> None:
    """Let scheduled handler tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
