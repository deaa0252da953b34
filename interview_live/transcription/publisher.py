"""Pub/sub fan-out of assembled transcript entries."""

import logging
from pubsub import pub
from ..models.transcript import TranscriptEntry

logger = logging.getLogger(__name__)

TRANSCRIPT_TOPIC = "transcript_entry"


class TranscriptPublisher:
    """Sends every new or updated entry on the ``transcript_entry`` topic.

    Listeners receive the entry as the ``entry`` keyword. A partial entry is
    sent again each time a newer fragment replaces it.
    """

    def __init__(self, topic: str = TRANSCRIPT_TOPIC):
        self.topic = topic

    def publish_entry(self, entry: TranscriptEntry) -> None:
        pub.sendMessage(self.topic, entry=entry)
        logger.debug(f"Published {entry.speaker.value} entry {entry.entry_id} (final={entry.is_final})")
