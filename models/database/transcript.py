"""
Transcript model - permanent store and pending AI job ledger
"""

from sqlalchemy import JSON, Column, DateTime, String, Text

from database import Base
from shared.utils import utcnow


class TranscriptRecord(Base):
    """One transcript per (video, language); ``status`` doubles as the AI job ledger"""

    __tablename__ = "transcripts"

    video_id = Column(String(16), primary_key=True)
    language = Column(String(16), primary_key=True)
    source = Column(String(16), nullable=False)  # native, ai
    status = Column(String(16), nullable=False, default="pending", index=True)  # pending, complete
    segments = Column(JSON, nullable=True)
    result_handle = Column(Text, nullable=True)  # NULL once complete
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<TranscriptRecord {self.video_id}:{self.language} {self.source}/{self.status}>"
