"""pairlink: two-party WebRTC calls over a minimal signaling relay."""

__version__ = "0.1.0"
