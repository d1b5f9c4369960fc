"""Local media track wrapper with mute / camera-off support.

Wraps a capture track and blanks its frames while disabled, so the peer
keeps receiving a steady stream (silence or a black picture) instead of a
stalled one.
"""

import logging

from aiortc import MediaStreamTrack
from av import AudioFrame, VideoFrame

logger = logging.getLogger(__name__)

# planar YUV formats: chroma planes are blanked to mid-grey (0x80) so the picture is black
YUV_FORMATS = {"yuv420p", "yuvj420p", "yuv422p", "yuv444p", "nv12"}


def blank_frame(frame) -> None:
    """Overwrite a decoded frame's planes in place."""
    if isinstance(frame, AudioFrame):
        for plane in frame.planes:
            plane.update(bytes(plane.buffer_size))
    elif isinstance(frame, VideoFrame):
        yuv = frame.format.name in YUV_FORMATS
        for index, plane in enumerate(frame.planes):
            fill = 0x80 if yuv and index > 0 else 0x00
            plane.update(bytes([fill]) * plane.buffer_size)


class ToggleableTrack(MediaStreamTrack):
    """Relay a source track, blanking frames while ``enabled`` is False.

    Attributes:
        kind (str): "audio" or "video", copied from the source track
        track (MediaStreamTrack): source track
        enabled (bool): False mutes audio / turns the picture black

    Examples:
        >>> track = ToggleableTrack(player.audio)
        >>> track.enabled = False   # mute
        >>> frame = await track.recv()  # silent frame, same timing
    """

    def __init__(self, track: MediaStreamTrack):
        super().__init__()
        self.kind = track.kind
        self.track = track
        self.enabled = True

    async def recv(self):
        frame = await self.track.recv()
        if not self.enabled:
            blank_frame(frame)
        return frame

    def stop(self):
        super().stop()
        self.track.stop()
