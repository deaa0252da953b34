"""Assembles streamed transcript fragments into an ordered transcript."""

import itertools
import logging
import uuid
from bisect import bisect_right
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..models.transcript import TranscriptEntry, TranscriptFragment

logger = logging.getLogger(__name__)

EntryCallback = Callable[[TranscriptEntry], None]


def normalize_timestamp(timestamp: datetime) -> datetime:
    """Make a timestamp timezone-aware in local time so all entries compare."""
    return timestamp.astimezone()


class PlainTextExport:
    """Iterable of "[HH:MM:SS] SPEAKER: text" lines over final entries.

    Each iteration starts over from the assembler's current final entries.
    """

    def __init__(self, assembler: "TranscriptAssembler"):
        self._assembler = assembler

    def __iter__(self) -> Iterator[str]:
        for entry in self._assembler.final_entries:
            yield entry.to_line()

    def __str__(self) -> str:
        return "\n".join(self)


class TranscriptAssembler:
    """Ordered transcript for one session.

    Entries stay sorted by timestamp, ties broken by arrival order. A
    non-final entry is replaced when a newer fragment arrives for the same
    speaker and utterance; final entries are never modified.
    """

    def __init__(self, session_id: str, on_entry: Optional[EntryCallback] = None):
        """Initialize assembler.

        Args:
            session_id: Session the entries belong to
            on_entry: Called with each new or updated entry
        """
        self.session_id = session_id
        self.on_entry = on_entry
        self._entries: List[TranscriptEntry] = []
        self._keys: List[Tuple[datetime, int]] = []
        self._arrival: Dict[str, int] = {}
        self._counter = itertools.count()

    def ingest(self, fragment: TranscriptFragment) -> TranscriptEntry:
        """Add a fragment, replacing the open entry for its utterance if any.

        Returns:
            The new or updated entry
        """
        timestamp = normalize_timestamp(fragment.timestamp)
        index = self._find_open_entry(fragment)

        if index is not None:
            previous = self._entries.pop(index)
            self._keys.pop(index)
            entry = replace(
                previous,
                text=fragment.text,
                confidence=fragment.confidence,
                is_final=fragment.is_final,
                timestamp=timestamp,
                key_phrases=list(fragment.key_phrases),
            )
            logger.debug(f"Updated entry {entry.entry_id} (final={entry.is_final})")
        else:
            entry = TranscriptEntry(
                entry_id=uuid.uuid4().hex,
                session_id=self.session_id,
                speaker=fragment.speaker,
                text=fragment.text,
                confidence=fragment.confidence,
                is_final=fragment.is_final,
                timestamp=timestamp,
                utterance_id=fragment.utterance_id,
                key_phrases=list(fragment.key_phrases),
            )
            self._arrival[entry.entry_id] = next(self._counter)
            logger.debug(f"New entry {entry.entry_id} from {entry.speaker.value} (final={entry.is_final})")

        key = (timestamp, self._arrival[entry.entry_id])
        position = bisect_right(self._keys, key)
        self._keys.insert(position, key)
        self._entries.insert(position, entry)

        if self.on_entry is not None:
            try:
                self.on_entry(entry)
            except Exception:
                logger.exception("Error in transcript entry callback")
        return entry

    def _find_open_entry(self, fragment: TranscriptFragment) -> Optional[int]:
        for index in range(len(self._entries) - 1, -1, -1):
            entry = self._entries[index]
            if (not entry.is_final
                    and entry.speaker == fragment.speaker
                    and entry.utterance_id == fragment.utterance_id):
                return index
        return None

    @property
    def entries(self) -> List[TranscriptEntry]:
        return list(self._entries)

    @property
    def final_entries(self) -> List[TranscriptEntry]:
        return [entry for entry in self._entries if entry.is_final]

    def export_plain_text(self) -> PlainTextExport:
        return PlainTextExport(self)

    def __len__(self) -> int:
        return len(self._entries)
