"""Error taxonomy for the live interview session core."""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


USER_MESSAGES: Dict[str, str] = {
    "CONNECTION_FAILED": "Unable to connect to the AI interview service. Please check your internet connection and try again.",
    "WEBSOCKET_ERROR": "Connection to the interview service was interrupted. Attempting to reconnect...",
    "MAX_RECONNECT_ATTEMPTS": "The connection to the interview service was lost and could not be restored.",
    "MEDIA_SEND_FAILED": "Unable to send audio/video data. Please check your connection.",
    "AUTHENTICATION_FAILED": "Authentication failed. Please check your API credentials.",
    "API_KEY_INVALID": "Invalid API key. Please check your configuration.",
    "PERMISSION_DENIED": "Access denied. Please verify your account permissions.",
    "RATE_LIMITED": "Too many requests. Please wait a moment before trying again.",
    "QUOTA_EXCEEDED": "API quota exceeded. Please try again later or upgrade your plan.",
    "DEVICE_NOT_FOUND": "The selected microphone or camera could not be found. Please check your device connections.",
    "DEVICE_BUSY": "The selected device is already in use by another session.",
    "DEVICE_PERMISSION_DENIED": "Access to your camera or microphone was denied. Please check your device permissions.",
    "DEVICE_UNAVAILABLE": "Unable to access your camera or microphone. Please check your device settings.",
    "DEVICE_SWITCH_FAILED": "Unable to switch devices. Please try selecting a different device.",
    "SESSION_TIMEOUT": "The interview time limit was reached.",
    "INVALID_SESSION_STATE": "That action is not available right now.",
    "PROTOCOL_ERROR": "Received an unexpected message from the interview service.",
    "TIMEOUT": "Request timed out. Please check your connection and try again.",
    "NETWORK_ERROR": "Network error occurred. Please check your internet connection.",
    "UNKNOWN_ERROR": "An unexpected error occurred. Please try again or contact support.",
}

# Remote error codes that are worth retrying
RECOVERABLE_SERVER_CODES = frozenset({
    "CONNECTION_FAILED",
    "WEBSOCKET_ERROR",
    "NETWORK_ERROR",
    "TIMEOUT",
    "RATE_LIMITED",
    "TEMPORARY_UNAVAILABLE",
})


def user_message_for(code: str) -> str:
    """Get the user-facing message for an error code."""
    return USER_MESSAGES.get(code, USER_MESSAGES["UNKNOWN_ERROR"])


class RecoveryStrategy(Enum):
    """What the caller should do about an error."""
    RECONNECT = "reconnect"
    RETRY = "retry"
    FALLBACK = "fallback"
    USER_ACTION = "user_action"
    ABORT = "abort"


# code -> (strategy, retry delay in seconds)
RECOVERY_STRATEGIES: Dict[str, Tuple[RecoveryStrategy, Optional[float]]] = {
    "CONNECTION_FAILED": (RecoveryStrategy.RECONNECT, 2.0),
    "WEBSOCKET_ERROR": (RecoveryStrategy.RECONNECT, 2.0),
    "MEDIA_SEND_FAILED": (RecoveryStrategy.RECONNECT, 2.0),
    "NETWORK_ERROR": (RecoveryStrategy.RETRY, 1.0),
    "TIMEOUT": (RecoveryStrategy.RETRY, 1.0),
    "RATE_LIMITED": (RecoveryStrategy.RETRY, 5.0),
    "AUTHENTICATION_FAILED": (RecoveryStrategy.USER_ACTION, None),
    "API_KEY_INVALID": (RecoveryStrategy.USER_ACTION, None),
    "PERMISSION_DENIED": (RecoveryStrategy.USER_ACTION, None),
    "QUOTA_EXCEEDED": (RecoveryStrategy.USER_ACTION, None),
    "DEVICE_NOT_FOUND": (RecoveryStrategy.USER_ACTION, None),
    "DEVICE_BUSY": (RecoveryStrategy.USER_ACTION, None),
    "DEVICE_UNAVAILABLE": (RecoveryStrategy.USER_ACTION, None),
    "DEVICE_PERMISSION_DENIED": (RecoveryStrategy.USER_ACTION, None),
    "DEVICE_SWITCH_FAILED": (RecoveryStrategy.FALLBACK, None),
}

USER_GUIDANCE: Dict[str, List[str]] = {
    "CONNECTION_FAILED": [
        "Check your internet connection",
        "Disable your VPN if you are using one",
    ],
    "NETWORK_ERROR": [
        "Check your internet connection",
        "Disable your VPN if you are using one",
    ],
    "RATE_LIMITED": [
        "Wait a few minutes before trying again",
        "Avoid making too many requests in a short time",
    ],
    "AUTHENTICATION_FAILED": [
        "Verify your API key or service account file is correct",
        "Check that your credentials have access to the live API",
    ],
    "DEVICE_NOT_FOUND": [
        "Make sure your microphone and camera are connected",
        "Run with --list-devices to see the available devices",
    ],
    "DEVICE_BUSY": [
        "Close other applications or sessions using the device",
    ],
    "DEVICE_PERMISSION_DENIED": [
        "Grant this terminal access to the microphone and camera in your system settings",
    ],
    "DEVICE_SWITCH_FAILED": [
        "Try selecting a different device",
    ],
}


def recovery_for(code: str) -> Tuple[RecoveryStrategy, Optional[float]]:
    """Get the recovery strategy and retry delay for an error code."""
    return RECOVERY_STRATEGIES.get(code, (RecoveryStrategy.ABORT, None))


def guidance_for(code: str) -> List[str]:
    """User-facing message followed by any code-specific guidance."""
    return [user_message_for(code)] + USER_GUIDANCE.get(code, [])


class InterviewLiveError(Exception):
    """Base class for all errors raised by the session core."""

    default_code = "UNKNOWN_ERROR"
    default_recoverable = True

    def __init__(self,
                 message: str,
                 code: Optional[str] = None,
                 recoverable: Optional[bool] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.recoverable = self.default_recoverable if recoverable is None else recoverable
        self.details = details or {}

    @property
    def user_message(self) -> str:
        return user_message_for(self.code)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}, recoverable={self.recoverable})"


class LiveConnectionError(InterviewLiveError):
    """Handshake or transport failure. Retryable via backoff."""

    default_code = "CONNECTION_FAILED"


class TransmissionError(InterviewLiveError):
    """Send attempted while disconnected, or the transport write failed."""

    default_code = "MEDIA_SEND_FAILED"


class MaxReconnectAttemptsError(InterviewLiveError):
    """Reconnection gave up after the configured number of attempts."""

    default_code = "MAX_RECONNECT_ATTEMPTS"
    default_recoverable = False


class DeviceError(InterviewLiveError):
    """Capture device unavailable.

    Recoverable unless the platform permanently denied permission.
    """

    default_code = "DEVICE_UNAVAILABLE"

    def __init__(self,
                 message: str,
                 device_id: Optional[str] = None,
                 kind: Optional[str] = None,
                 code: Optional[str] = None,
                 recoverable: Optional[bool] = None):
        if recoverable is None:
            recoverable = code != "DEVICE_PERMISSION_DENIED"
        super().__init__(message, code=code, recoverable=recoverable,
                         details={"device_id": device_id, "kind": kind})
        self.device_id = device_id
        self.kind = kind


class SessionTimeoutError(InterviewLiveError):
    """Time limit reached. Triggers normal auto-completion, not a failure."""

    default_code = "SESSION_TIMEOUT"


class ServerError(InterviewLiveError):
    """Error message sent by the remote endpoint."""

    default_code = "SERVER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        code = code or self.default_code
        super().__init__(message, code=code, recoverable=code in RECOVERABLE_SERVER_CODES, details=details)


class ProtocolError(InterviewLiveError):
    """Malformed or unexpected frame from the remote endpoint."""

    default_code = "PROTOCOL_ERROR"


class SessionStateError(InterviewLiveError):
    """Lifecycle call made from a state that does not allow it."""

    default_code = "INVALID_SESSION_STATE"
