"""
Negative cache: (video, language, source) lookups known to have no transcript.

A short-lived in-process tier answers repeat lookups without touching the
database; the persisted tier survives restarts for a longer period.
"""

from collections.abc import Callable
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.database.negative_cache import NoTranscriptRecord
from shared.cache import MemoryCache
from shared.config import config
from shared.enums import NEGATIVE_CACHE_PERSIST_TTL, NEGATIVE_CACHE_TTL
from shared.utils import setup_logging, utcnow

logger = setup_logging("negative-cache")


class NegativeCache:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        memory: MemoryCache | None = None,
        ttl: float | None = None,
        persist_ttl: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.ttl = ttl or config.get_pipeline_value("negative_cache.ttl", NEGATIVE_CACHE_TTL)
        self.persist_ttl = persist_ttl or config.get_pipeline_value(
            "negative_cache.persist_ttl", NEGATIVE_CACHE_PERSIST_TTL
        )
        self.memory = memory if memory is not None else MemoryCache(default_ttl=self.ttl)

    @staticmethod
    def _key(video_id: str, language: str, source: str) -> str:
        return f"none:{video_id}:{language}:{source}"

    def contains(self, video_id: str, language: str, source: str) -> bool:
        key = self._key(video_id, language, source)
        if key in self.memory:
            return True
        try:
            with self.session_factory() as session:
                record = session.get(NoTranscriptRecord, (video_id, language, source))
                hit = record is not None and record.expires_at > utcnow()
        except SQLAlchemyError as e:
            logger.warning(f"Negative cache read failed for {key}: {e}")
            return False
        if hit:
            self.memory.set(key, True)
        return hit

    def mark(self, video_id: str, language: str, source: str) -> None:
        """Remember a confirmed absence. Write failures only cost a repeat lookup."""
        self.memory.set(self._key(video_id, language, source), True)
        now = utcnow()
        try:
            with self.session_factory() as session:
                session.merge(
                    NoTranscriptRecord(
                        video_id=video_id,
                        language=language,
                        source=source,
                        created_at=now,
                        expires_at=now + timedelta(seconds=self.persist_ttl),
                    )
                )
                session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Negative cache write failed for {video_id}:{language}:{source}: {e}")

    def purge_expired(self) -> int:
        self.memory.cleanup_expired()
        with self.session_factory() as session:
            removed = (
                session.query(NoTranscriptRecord)
                .filter(NoTranscriptRecord.expires_at <= utcnow())
                .delete(synchronize_session=False)
            )
            session.commit()
        return removed
