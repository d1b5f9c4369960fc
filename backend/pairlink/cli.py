"""Command-line call client.

Creates or joins a room on the relay, sends the local capture source and
records (or discards) the remote participant's media.

Usage:
    pairlink-call --create --media-source /dev/video0 --media-format v4l2
    pairlink-call --room <room-id> --media-source clip.mp4 --record remote.mp4
"""
import argparse
import asyncio
import logging
import signal
import uuid
from pathlib import Path
from typing import List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaRecorder

from .modules.client import (
    ConnectionOrchestrator,
    ConnectionStatus,
    LocalMedia,
    MediaConfig,
    ReconnectingChannel,
    SignalingConfig,
    media_config,
    signaling_config,
)

logger = logging.getLogger(__name__)


class RemoteMediaSink:
    """Consume remote tracks: a ``MediaRecorder`` when recording, else a ``MediaBlackhole``.

    Each peer session gets its own sink; recordings after the first are
    written next to the first file with a ``_<n>`` suffix.
    """

    def __init__(self, record_path: Optional[str] = None):
        self.record_path = record_path
        self._sink = None
        self._started = False
        self._segment = 0
        self._pending_stop = None

    def _create(self):
        if not self.record_path:
            return MediaBlackhole()
        self._segment += 1
        path = Path(self.record_path)
        if self._segment > 1:
            path = path.with_name(f"{path.stem}_{self._segment}{path.suffix}")
        logger.info(f"[CLI] recording remote media to {path}")
        return MediaRecorder(str(path))

    def add_track(self, track: MediaStreamTrack) -> None:
        if self._started:
            # remote tracks of a new session: close the previous segment first
            self._pending_stop = self._sink
            self._sink = None
            self._started = False
        if self._sink is None:
            self._sink = self._create()
        self._sink.addTrack(track)

    async def start(self) -> None:
        previous, self._pending_stop = self._pending_stop, None
        if previous is not None:
            await previous.stop()
        if self._sink is not None and not self._started:
            await self._sink.start()
            self._started = True

    async def stop(self) -> None:
        sink, self._sink = self._sink, None
        self._started = False
        if sink is not None:
            await sink.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="pairlink two-party call client")
    room = parser.add_mutually_exclusive_group(required=True)
    room.add_argument("--create", action="store_true", help="create a new room (id is generated unless --room-id is given)")
    room.add_argument("--room", type=str, help="join an existing room")
    parser.add_argument("--room-id", type=str, help="room id to use with --create")
    parser.add_argument("--server", type=str, default=signaling_config.SIGNALING_SERVER_URL,
                        help=f"relay WebSocket URL (default: {signaling_config.SIGNALING_SERVER_URL})")
    parser.add_argument("--media-source", type=str, default=media_config.MEDIA_SOURCE,
                        help="capture device or media file passed to MediaPlayer")
    parser.add_argument("--media-format", type=str, default=media_config.MEDIA_FORMAT,
                        help="capture format, e.g. v4l2, avfoundation, dshow")
    parser.add_argument("--video-size", type=str, default=media_config.VIDEO_SIZE,
                        help=f"capture size (default: {media_config.VIDEO_SIZE})")
    parser.add_argument("--record", type=str, help="write remote media to this file")
    parser.add_argument("--muted", action="store_true", help="start with audio muted")
    parser.add_argument("--video-off", action="store_true", help="start with video off")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


async def run_call(args: argparse.Namespace) -> int:
    is_creator = bool(args.create)
    room_id = (args.room_id or str(uuid.uuid4())) if is_creator else args.room

    signaling = SignalingConfig(SIGNALING_SERVER_URL=args.server)
    media = LocalMedia(MediaConfig(
        MEDIA_SOURCE=args.media_source,
        MEDIA_FORMAT=args.media_format,
        VIDEO_SIZE=args.video_size,
    ))
    sink = RemoteMediaSink(args.record)
    background: List[asyncio.Task] = []

    call = ConnectionOrchestrator(
        room_id,
        is_creator,
        media=media,
        channel=ReconnectingChannel(signaling=signaling),
        on_remote_track=sink.add_track,
    )

    def on_status(status: ConnectionStatus) -> None:
        line = f"status: {status.value}"
        if call.error:
            line += f" ({call.error})"
        print(line, flush=True)
        if status == ConnectionStatus.CONNECTED:
            background.append(asyncio.ensure_future(sink.start()))

    call.add_listener(on_status)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    if is_creator:
        print(f"room id: {call.copy_room_id()}", flush=True)

    await call.start()
    if args.muted:
        call.toggle_mute()
    if args.video_off:
        call.toggle_video()

    try:
        await stop.wait()
    finally:
        print("ending call...", flush=True)
        await call.end_call()
        for task in background:
            task.cancel()
        await sink.stop()

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        return asyncio.run(run_call(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
