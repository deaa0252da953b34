"""On-disk storage for session snapshots and completed transcripts."""

import json
import logging
import random
import string
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models.session import Session, SessionResult

logger = logging.getLogger(__name__)

SNAPSHOT_FILE = "session.json"
RESULT_FILE = "result.json"
TRANSCRIPT_FILE = "transcript.txt"


def new_session_id() -> str:
    """Timestamp-based session id with a random suffix."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    random_suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"{timestamp}_{random_suffix}"


class SessionStore:
    """Writes session snapshots and results under ``<data_dir>/sessions/<id>/``."""

    def __init__(self, data_dir: str = "./data"):
        """Initialize session store.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.sessions_dir = self.data_dir / "sessions"
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"SessionStore initialized with data_dir: {self.data_dir}")

    def get_session_path(self, session_id: str) -> Path:
        return self.sessions_dir / session_id

    def _write_json(self, path: Path, data: Dict[str, Any]) -> str:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(path)
        return str(path)

    def save_snapshot(self, session: Session) -> str:
        """Save the current session state.

        Args:
            session: Session to snapshot

        Returns:
            Path to the snapshot file
        """
        return self.write_snapshot(session.session_id, session.to_dict())

    def write_snapshot(self, session_id: str, data: Dict[str, Any]) -> str:
        """Write an already serialized snapshot. Safe to call from a worker thread."""
        data = dict(data, saved_at=datetime.now().isoformat())
        path = self._write_json(self.get_session_path(session_id) / SNAPSHOT_FILE, data)
        logger.debug(f"Session snapshot saved: {path}")
        return path

    def save_result(self, result: SessionResult) -> str:
        """Save a completed session's result and plain-text transcript.

        Returns:
            Path to the transcript text file
        """
        session_path = self.get_session_path(result.session_id)
        self._write_json(session_path / RESULT_FILE, {
            "session_id": result.session_id,
            "subject_id": result.subject_id,
            "duration_ms": result.duration_ms,
            "started_at": result.started_at.isoformat(),
            "ended_at": result.ended_at.isoformat(),
            "completion_reason": result.completion_reason.value,
            "metadata": result.metadata,
            "transcript": [entry.to_dict() for entry in result.transcript],
        })

        transcript_path = session_path / TRANSCRIPT_FILE
        with open(transcript_path, 'w', encoding='utf-8') as f:
            for line in result.transcript_text:
                f.write(line + "\n")

        logger.info(f"Session result saved: {session_path} ({len(result.transcript)} entries)")
        return str(transcript_path)

    def load_snapshot(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Load a session snapshot.

        Returns:
            Snapshot dict or None if not found
        """
        snapshot_file = self.get_session_path(session_id) / SNAPSHOT_FILE
        if not snapshot_file.exists():
            logger.warning(f"Session snapshot not found: {snapshot_file}")
            return None

        try:
            with open(snapshot_file, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading session snapshot: {e}")
            return None

    def list_sessions(self) -> List[str]:
        """List stored session IDs in chronological order."""
        sessions = [
            path.name for path in self.sessions_dir.iterdir()
            if path.is_dir() and (path / SNAPSHOT_FILE).exists()
        ]
        sessions.sort()
        return sessions
