"""
Client-side persistent cue cache, kept in its own database file
"""

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.orm import declarative_base

from shared.utils import utcnow

LocalBase = declarative_base()


class LocalCueEntry(LocalBase):
    """Cues stored under ``videoId:language`` with their provenance"""

    __tablename__ = "cue_cache"

    cache_key = Column(String(128), primary_key=True)
    video_id = Column(String(16), nullable=False, index=True)
    language = Column(String(16), nullable=False)
    source = Column(String(16), nullable=False)
    cues = Column(JSON, nullable=False)
    stored_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
