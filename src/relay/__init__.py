"""
Serial-to-WebSocket relay for the water controller.
"""

from .hub import FanOutHub, Subscription
from .messages import decode_message, encode_frame
from .protocol import SerialFrame, parse_line

__all__ = [
    "FanOutHub",
    "Subscription",
    "SerialFrame",
    "decode_message",
    "encode_frame",
    "parse_line",
]
