"""
Custom exceptions for the water controller relay.
"""

from typing import Optional


class RelayError(Exception):
    """Base exception for all relay related errors."""
    pass


class ParseError(RelayError):
    """Raised when a serial line violates the line protocol."""
    pass


class FieldCountError(ParseError):
    """Raised when a line does not split into the expected number of fields."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"expected {expected} fields but got {actual}")


class IntegerParseError(ParseError):
    """Raised when a field is not a signed integer."""

    def __init__(self, index: int, raw_token: str, cause: str):
        self.index = index
        self.raw_token = raw_token
        self.cause = cause
        super().__init__(f"failed to parse field #{index} ('{raw_token}'): {cause}")


class InvalidButtonValueError(ParseError):
    """Raised when the button field is neither 0 nor 1."""

    def __init__(self, value: int):
        self.value = value
        super().__init__(f"invalid button value: {value} (expected 0 or 1)")


class InvalidControllerLevelError(ParseError):
    """Raised when a controller field is neither 0 nor 1."""

    def __init__(self, index: int, value: int):
        self.index = index
        self.value = value
        super().__init__(
            f"invalid controller field #{index} value: {value} (expected 0 or 1)"
        )


class InvalidControllerCombinationError(ParseError):
    """Raised when a direction reports high without low."""

    def __init__(self, low_index: int, high_index: int, low_value: int, high_value: int):
        self.low_index = low_index
        self.high_index = high_index
        self.low_value = low_value
        self.high_value = high_value
        super().__init__(
            f"invalid controller combination (field #{low_index}={low_value}, "
            f"field #{high_index}={high_value}): high=1 requires low=1"
        )


class EncodingError(RelayError):
    """Raised when a frame cannot be encoded into wire messages."""
    pass


class MessageDecodingError(RelayError):
    """Raised when a wire message cannot be decoded."""
    pass


class SubscriptionClosed(RelayError):
    """Raised when reading from a subscription that has been closed."""
    pass


class SerialConnectionError(RelayError):
    """Raised when the serial device cannot be opened or read."""
    pass


class ServerBindError(RelayError):
    """Raised when the WebSocket server cannot bind its address."""
    pass


class ConfigurationError(RelayError):
    """Raised for configuration problems that no retry can fix."""
    pass


class RetryExhaustedError(RelayError):
    """Raised when a capped retry policy runs out of attempts."""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException] = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        message = f"{operation} failed after {attempts} attempts"
        if last_error is not None:
            message += f": {last_error}"
        super().__init__(message)


class SupervisorError(RelayError):
    """Raised when a supervised unit exhausts its restart budget."""
    pass
