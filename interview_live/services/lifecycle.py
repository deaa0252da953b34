"""Session lifecycle publisher module for pub/sub event publishing."""

import logging
from pubsub import pub
from ..models.events import SessionEvent

logger = logging.getLogger(__name__)

LIFECYCLE_TOPIC = "session_lifecycle"


class SessionEventPublisher:
    """Publishes session lifecycle events using pubsub.pub."""

    def __init__(self, topic: str = LIFECYCLE_TOPIC):
        self.topic = topic

    def publish(self, event: SessionEvent) -> None:
        """Publish a lifecycle event to the pub/sub topic.

        Args:
            event: SessionEvent to publish
        """
        pub.sendMessage(self.topic, event=event)
        logger.debug(f"Published session event: {event.session_id} {event.event_type}")
