"""Session services."""

from .session_controller import SessionController, default_bridge_factory
from .session_store import SessionStore, new_session_id
from .lifecycle import SessionEventPublisher, LIFECYCLE_TOPIC

__all__ = [
    "SessionController",
    "default_bridge_factory",
    "SessionStore",
    "new_session_id",
    "SessionEventPublisher",
    "LIFECYCLE_TOPIC",
]
