"""
Negative cache model - lookups known to have no transcript
"""

from sqlalchemy import Column, DateTime, String

from database import Base
from shared.utils import utcnow


class NoTranscriptRecord(Base):
    __tablename__ = "no_transcript_cache"

    video_id = Column(String(16), primary_key=True)
    language = Column(String(16), primary_key=True)
    source = Column(String(16), primary_key=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
