"""
Wire messages broadcast to WebSocket subscribers.

Each serial frame becomes two JSON text frames:

    {"type":"button-input","isPushed":true}
    {"type":"controller-input","left":0,"right":1,"up":2,"down":0}

Controller values: 0 = no input, 1 = low, 2 = high.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union

from .exceptions import EncodingError, MessageDecodingError
from .protocol import ControllerState, DirectionLevel, Level, SerialFrame


BUTTON_INPUT = "button-input"
CONTROLLER_INPUT = "controller-input"

LEVEL_CODES: Dict[Level, int] = {
    Level.NO_INPUT: 0,
    Level.LOW: 1,
    Level.HIGH: 2,
}
VALID_LEVEL_CODES = frozenset((0, 1, 2))

_SEPARATORS = (",", ":")


@dataclass(frozen=True)
class ButtonInputMessage:
    is_pushed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"type": BUTTON_INPUT, "isPushed": self.is_pushed}


@dataclass(frozen=True)
class ControllerInputMessage:
    left: int
    right: int
    up: int
    down: int

    @classmethod
    def from_state(cls, controller: ControllerState) -> "ControllerInputMessage":
        return cls(
            left=level_code(controller.left),
            right=level_code(controller.right),
            up=level_code(controller.up),
            down=level_code(controller.down),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": CONTROLLER_INPUT,
            "left": self.left,
            "right": self.right,
            "up": self.up,
            "down": self.down,
        }


WireMessage = Union[ButtonInputMessage, ControllerInputMessage]


def level_code(direction: DirectionLevel) -> int:
    """Map a direction reading to its wire integer."""
    try:
        return LEVEL_CODES[direction.level]
    except (KeyError, AttributeError) as e:
        raise EncodingError(f"Unsupported direction level: {direction!r}") from e


def encode_message(message: WireMessage) -> str:
    """
    Serialize a wire message to compact JSON.

    Raises:
        EncodingError: If the message cannot be serialized
    """
    try:
        return json.dumps(message.to_dict(), separators=_SEPARATORS)
    except (TypeError, ValueError, AttributeError) as e:
        raise EncodingError(f"Failed to encode {message!r}: {e}") from e


def frame_to_messages(frame: SerialFrame) -> Tuple[ButtonInputMessage, ControllerInputMessage]:
    """Split a frame into its button and controller messages."""
    try:
        button = ButtonInputMessage(is_pushed=bool(frame.button.is_pushed))
    except AttributeError as e:
        raise EncodingError(f"Frame has no button state: {frame!r}") from e
    return button, ControllerInputMessage.from_state(frame.controller)


def encode_frame(frame: SerialFrame) -> Tuple[str, str]:
    """
    Encode a frame into the two JSON text frames sent to subscribers.

    Returns:
        Tuple[str, str]: (button-input JSON, controller-input JSON)

    Raises:
        EncodingError: If the frame cannot be encoded
    """
    button, controller = frame_to_messages(frame)
    return encode_message(button), encode_message(controller)


def decode_message(text: Union[str, bytes]) -> WireMessage:
    """
    Decode a JSON text frame received from the relay.

    Raises:
        MessageDecodingError: On invalid JSON, unknown types or bad fields
    """
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MessageDecodingError(f"Invalid JSON message: {e}") from e

    if not isinstance(payload, dict):
        raise MessageDecodingError(f"Expected a JSON object, got {type(payload).__name__}")

    message_type = payload.get("type")
    if message_type == BUTTON_INPUT:
        is_pushed = payload.get("isPushed")
        if not isinstance(is_pushed, bool):
            raise MessageDecodingError(f"Invalid isPushed value: {is_pushed!r}")
        return ButtonInputMessage(is_pushed=is_pushed)

    if message_type == CONTROLLER_INPUT:
        fields = {}
        for name in ("left", "right", "up", "down"):
            value = payload.get(name)
            # bool is an int subclass; reject it explicitly
            if (
                not isinstance(value, int)
                or isinstance(value, bool)
                or value not in VALID_LEVEL_CODES
            ):
                raise MessageDecodingError(f"Invalid {name} value: {value!r}")
            fields[name] = value
        return ControllerInputMessage(**fields)

    raise MessageDecodingError(f"Unknown message type: {message_type!r}")
