"""Connection to the live-generation endpoint."""

from .auth import LiveCredentials
from .backoff import backoff_delay
from .manager import ConnectionManager
from .transport import AbstractTransport, AiohttpTransport

__all__ = [
    "ConnectionManager",
    "LiveCredentials",
    "AbstractTransport",
    "AiohttpTransport",
    "backoff_delay",
]
