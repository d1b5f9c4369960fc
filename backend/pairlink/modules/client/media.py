"""Local capture media.

Opens the configured capture source with ``aiortc.contrib.media.MediaPlayer``
and exposes its tracks wrapped in :class:`ToggleableTrack`. Each peer session
gets its own ``MediaRelay`` proxy of the local tracks, so a discarded session
never stops the capture.
"""
import asyncio
import errno
import logging
from functools import partial
from typing import Callable, List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer, MediaRelay

from .config import MediaConfig, media_config
from .errors import DeviceBusyError, DeviceNotFoundError, MediaError, PermissionDeniedError
from .tracks import ToggleableTrack

logger = logging.getLogger(__name__)


def map_media_error(err: BaseException) -> MediaError:
    """Classify a capture failure.

    PyAV raises subclasses of the builtin OS errors, so the builtin classes
    and ``errno`` are enough to tell the cases apart.
    """
    if isinstance(err, MediaError):
        return err
    if isinstance(err, PermissionError):
        return PermissionDeniedError(str(err))
    if isinstance(err, FileNotFoundError):
        return DeviceNotFoundError(str(err))
    if getattr(err, "errno", None) == errno.EBUSY:
        return DeviceBusyError(str(err))
    return MediaError(str(err) or err.__class__.__name__)


class MediaStream:
    """Tracks of one acquired capture source.

    Attributes:
        player (MediaPlayer): capture source
        audio (ToggleableTrack): local audio, None if the source has none
        video (ToggleableTrack): local video, None if the source has none
    """

    def __init__(self, player, audio: Optional[ToggleableTrack] = None,
                 video: Optional[ToggleableTrack] = None):
        self.player = player
        self.audio = audio
        self.video = video
        self._relay = MediaRelay()

    @classmethod
    def from_player(cls, player) -> "MediaStream":
        audio = ToggleableTrack(player.audio) if player.audio is not None else None
        video = ToggleableTrack(player.video) if player.video is not None else None
        return cls(player, audio, video)

    def tracks(self) -> List[ToggleableTrack]:
        return [track for track in (self.audio, self.video) if track is not None]

    def session_tracks(self) -> List[MediaStreamTrack]:
        """Independent proxies of the local tracks for one peer session."""
        return [self._relay.subscribe(track) for track in self.tracks()]

    def set_track_enabled(self, kind: str, enabled: bool) -> bool:
        """Enable or blank the ``kind`` track. Returns False if there is none."""
        track = self.audio if kind == "audio" else self.video if kind == "video" else None
        if track is None:
            return False
        track.enabled = enabled
        return True

    def stop(self) -> None:
        for track in self.tracks():
            track.stop()


class LocalMedia:
    """Acquire and release the local capture source.

    Args:
        config: capture source settings
        player_factory: ``MediaPlayer``-compatible callable
            ``(file, format=..., options=...)``

    Examples:
        >>> media = LocalMedia(MediaConfig(MEDIA_SOURCE="/dev/video0", MEDIA_FORMAT="v4l2"))
        >>> stream = await media.acquire()
        >>> media.set_track_enabled("audio", False)
        >>> media.release()
    """

    def __init__(self, config: MediaConfig = media_config,
                 player_factory: Callable[..., MediaPlayer] = MediaPlayer):
        self.config = config
        self.player_factory = player_factory
        self.stream: Optional[MediaStream] = None

    async def acquire(self) -> MediaStream:
        """Open the capture source.

        The first attempt passes the configured capture options; if it fails
        for any reason other than a denied permission, a second attempt opens
        the source without options.

        Raises:
            MediaError: PermissionDeniedError, DeviceNotFoundError,
                DeviceBusyError or a generic MediaError
        """
        if self.stream is not None:
            return self.stream

        source = self.config.MEDIA_SOURCE
        if not source:
            raise DeviceNotFoundError("No capture source configured")

        options = {"video_size": self.config.VIDEO_SIZE} if self.config.VIDEO_SIZE else {}
        try:
            player = await self._open(source, options)
        except asyncio.CancelledError:
            raise
        except Exception as first_error:
            mapped = map_media_error(first_error)
            if isinstance(mapped, PermissionDeniedError) or not options:
                raise mapped
            logger.warning(f"[Media] capture with options failed ({first_error}), retrying without")
            try:
                player = await self._open(source, {})
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise map_media_error(e)

        self.stream = MediaStream.from_player(player)
        logger.info(f"[Media] capture opened: {source} "
                    f"(audio={self.stream.audio is not None}, video={self.stream.video is not None})")
        return self.stream

    async def _open(self, source: str, options: dict):
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(
            None,
            partial(self.player_factory, source, format=self.config.MEDIA_FORMAT, options=options),
        )
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            # the open keeps running in its thread; stop whatever it produces
            future.add_done_callback(self._discard_late_player)
            raise

    @staticmethod
    def _discard_late_player(future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        player = future.result()
        for track in (player.audio, player.video):
            if track is not None:
                track.stop()
        logger.info("[Media] capture opened after cancellation, released")

    def set_track_enabled(self, kind: str, enabled: bool) -> bool:
        if self.stream is None:
            return False
        return self.stream.set_track_enabled(kind, enabled)

    def release(self, stream: Optional[MediaStream] = None) -> None:
        """Stop every track of ``stream`` (the current one by default)."""
        stream = stream or self.stream
        if stream is None:
            return
        stream.stop()
        if stream is self.stream:
            self.stream = None
        logger.info("[Media] capture released")
