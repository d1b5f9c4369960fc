"""User-facing error messages."""

from typing import Optional

from .errors import DeviceBusyError, DeviceNotFoundError, PermissionDeniedError

DEFAULT_START_ERROR = "An error occurred while starting the connection."


def format_media_error(err: Optional[BaseException], default_message: str = DEFAULT_START_ERROR) -> str:
    """Message for a local media failure."""
    if err is None:
        return default_message

    if isinstance(err, PermissionDeniedError):
        return ("Camera and microphone access was denied. "
                "Please allow access to the capture device and try again.")
    if isinstance(err, DeviceNotFoundError):
        return ("No camera or microphone found. "
                "Please connect a camera and microphone and try again.")
    if isinstance(err, DeviceBusyError):
        return ("Camera or microphone is already in use by another application. "
                "Please close other applications and try again.")
    if str(err):
        return f"Error: {err}"
    return default_message


def format_channel_error(err: Optional[BaseException], server_url: str) -> str:
    """Message for a signaling connection failure."""
    detail = str(err) if err is not None and str(err) else "Connection error"
    return (f"Failed to connect to server: {detail}. Please check if the server is running "
            f"at {server_url} and your network connection.")


def format_join_error(reason: Optional[str], creating: bool) -> str:
    """Message for a terminal create/join failure."""
    if creating:
        return f"Could not create room: {reason or 'unknown'}"
    return (f"Could not join room: {reason or 'unknown'}. Please check the room ID and ensure "
            f"the room creator is connected.")


CONNECTION_TIMEOUT_MESSAGE = ("Connection timeout: Could not connect to server. "
                              "Please check if the server is running and accessible.")
RECONNECT_FAILED_MESSAGE = "Failed to reconnect to server. Please retry."
PEER_RECONNECT_FAILED_MESSAGE = "Lost connection to the other participant. Please retry."
