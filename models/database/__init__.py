"""
Database models package - SQLAlchemy ORM models
"""

from .local_cache import LocalBase, LocalCueEntry
from .negative_cache import NoTranscriptRecord
from .transcript import TranscriptRecord

__all__ = [
    "LocalBase",
    "LocalCueEntry",
    "NoTranscriptRecord",
    "TranscriptRecord",
]
