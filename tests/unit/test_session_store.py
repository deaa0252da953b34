"""Unit tests for SessionStore class."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from interview_live.models.session import CompletionReason, Session, SessionErrorInfo, SessionResult, SessionStatus
from interview_live.models.transcript import Speaker, TranscriptFragment
from interview_live.services.session_store import SessionStore, new_session_id
from interview_live.transcription import TranscriptAssembler

STARTED = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)
ENDED = datetime(2024, 5, 1, 10, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def session():
    assembler = TranscriptAssembler("20240501_100000_ab12")
    assembler.ingest(TranscriptFragment(Speaker.AI, "What problem do you solve?", True, STARTED))
    assembler.ingest(TranscriptFragment(Speaker.SUBJECT, "Onboarding for", False, ENDED))
    return Session(
        session_id="20240501_100000_ab12",
        subject_id="subject-1",
        time_limit_minutes=10,
        transcript=assembler,
        status=SessionStatus.ACTIVE,
        start_time=STARTED,
    )


@pytest.mark.unit
class TestSessionStore:
    """Test cases for SessionStore class."""

    def test_initialization(self, temp_data_dir):
        """Test SessionStore initialization."""
        store = SessionStore(temp_data_dir)

        assert store.data_dir == Path(temp_data_dir)
        assert store.sessions_dir == Path(temp_data_dir) / "sessions"
        assert store.sessions_dir.exists()

    def test_new_session_id_format(self):
        """Session ID should be timestamp format with random suffix."""
        session_id = new_session_id()

        assert len(session_id) == 20  # YYYYMMDD_HHMMSS_XXXX
        assert session_id.count("_") == 2

    def test_save_and_load_snapshot(self, temp_data_dir, session):
        """Test snapshot round trip keeps only final transcript entries."""
        store = SessionStore(temp_data_dir)

        path = store.save_snapshot(session)
        snapshot = store.load_snapshot(session.session_id)

        assert Path(path).name == "session.json"
        assert not Path(path + ".tmp").exists()
        assert snapshot["status"] == "active"
        assert snapshot["start_time"] == STARTED.isoformat()
        assert snapshot["end_time"] is None
        assert "saved_at" in snapshot
        assert [entry["text"] for entry in snapshot["transcript"]] == ["What problem do you solve?"]

    def test_snapshot_includes_last_error(self, temp_data_dir, session):
        store = SessionStore(temp_data_dir)
        session.status = SessionStatus.ERROR
        session.last_error = SessionErrorInfo("CONNECTION_FAILED", "refused", "Unable to connect.", True)

        store.save_snapshot(session)

        last_error = store.load_snapshot(session.session_id)["last_error"]
        assert last_error["code"] == "CONNECTION_FAILED"
        assert last_error["recovery"] == "abort"

    def test_save_result(self, temp_data_dir, session):
        """Test saving a completed session result."""
        store = SessionStore(temp_data_dir)
        result = SessionResult(
            session_id=session.session_id,
            subject_id=session.subject_id,
            transcript=session.transcript.final_entries,
            transcript_text=list(session.transcript.export_plain_text()),
            duration_ms=570000,
            started_at=STARTED,
            ended_at=ENDED,
            completion_reason=CompletionReason.TIME_LIMIT,
        )

        transcript_path = store.save_result(result)

        with open(transcript_path, 'r', encoding='utf-8') as f:
            lines = f.read().splitlines()
        assert len(lines) == 1
        assert lines[0].endswith("AI: What problem do you solve?")

        with open(Path(transcript_path).parent / "result.json", 'r', encoding='utf-8') as f:
            saved = json.load(f)
        assert saved["completion_reason"] == "time_limit"
        assert saved["duration_ms"] == 570000
        assert saved["transcript"][0]["speaker"] == "ai"

    def test_load_missing_snapshot(self, temp_data_dir):
        """Test loading a session that was never saved."""
        store = SessionStore(temp_data_dir)

        assert store.load_snapshot("nonexistent") is None

    def test_load_corrupt_snapshot(self, temp_data_dir):
        store = SessionStore(temp_data_dir)
        session_dir = store.get_session_path("broken")
        session_dir.mkdir(parents=True)
        (session_dir / "session.json").write_text("{not json", encoding="utf-8")

        assert store.load_snapshot("broken") is None

    def test_list_sessions(self, temp_data_dir, session):
        """Test listing sessions in chronological order."""
        store = SessionStore(temp_data_dir)
        later = Session(session_id="20240502_090000_zz99", subject_id="subject-1",
                        time_limit_minutes=10, transcript=TranscriptAssembler("20240502_090000_zz99"))

        store.save_snapshot(later)
        store.save_snapshot(session)
        store.get_session_path("empty").mkdir()

        assert store.list_sessions() == ["20240501_100000_ab12", "20240502_090000_zz99"]
