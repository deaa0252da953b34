"""Transcript assembly and publishing."""

from .assembler import TranscriptAssembler, PlainTextExport, normalize_timestamp
from .publisher import TranscriptPublisher, TRANSCRIPT_TOPIC

__all__ = [
    "TranscriptAssembler",
    "PlainTextExport",
    "normalize_timestamp",
    "TranscriptPublisher",
    "TRANSCRIPT_TOPIC",
]
