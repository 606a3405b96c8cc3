"""
Permanent transcript store whose ``status`` column doubles as the pending AI job ledger.

Each (video, language) moves ``none -> pending -> complete``. A pending row
holds the provider's result handle so a later request resumes polling the
same job instead of paying for a second transcription.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.database.transcript import TranscriptRecord
from shared.config import config
from shared.enums import STALE_PENDING_AGE, StoredSource, TranscriptStatus
from shared.models import AvailableLanguages, RawSegment
from shared.utils import setup_logging, utcnow

logger = setup_logging("transcript-ledger")


class StoredTranscript(BaseModel):
    """Detached snapshot of a ``transcripts`` row."""

    video_id: str
    language: str
    source: StoredSource
    status: TranscriptStatus
    segments: list[RawSegment] = Field(default_factory=list)
    result_handle: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: TranscriptRecord) -> "StoredTranscript":
        return cls(
            video_id=record.video_id,
            language=record.language,
            source=record.source,
            status=record.status,
            segments=record.segments or [],
            result_handle=record.result_handle,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


def _dump_segments(segments: list[RawSegment]) -> list[dict[str, Any]]:
    return [segment.model_dump() for segment in segments]


class TranscriptLedger:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        stale_after: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.stale_after = stale_after or config.get_pipeline_value(
            "ledger.stale_pending_age", STALE_PENDING_AGE
        )

    def _stale_cutoff(self) -> datetime:
        return utcnow() - timedelta(seconds=self.stale_after)

    def is_stale(self, transcript: StoredTranscript) -> bool:
        return (
            transcript.status == TranscriptStatus.PENDING
            and transcript.updated_at is not None
            and transcript.updated_at < self._stale_cutoff()
        )

    def get(self, video_id: str, language: str) -> StoredTranscript | None:
        with self.session_factory() as session:
            record = session.get(TranscriptRecord, (video_id, language))
            return StoredTranscript.from_record(record) if record else None

    def find_complete(self, video_id: str, language: str) -> StoredTranscript | None:
        """Authoritative "already have it" lookup."""
        transcript = self.get(video_id, language)
        if transcript and transcript.status == TranscriptStatus.COMPLETE and transcript.segments:
            return transcript
        return None

    def find_pending(self, video_id: str, language: str) -> StoredTranscript | None:
        """Pending job for the key, ignoring rows abandoned longer than ``stale_after``."""
        transcript = self.get(video_id, language)
        if transcript and transcript.status == TranscriptStatus.PENDING and not self.is_stale(transcript):
            return transcript
        return None

    def find_ai_fallback(self, video_id: str, exclude_language: str | None = None) -> StoredTranscript | None:
        """Most recent complete AI transcript of the video in any other language."""
        with self.session_factory() as session:
            query = session.query(TranscriptRecord).filter(
                TranscriptRecord.video_id == video_id,
                TranscriptRecord.source == StoredSource.AI.value,
                TranscriptRecord.status == TranscriptStatus.COMPLETE.value,
            )
            if exclude_language:
                query = query.filter(TranscriptRecord.language != exclude_language)
            record = query.order_by(TranscriptRecord.updated_at.desc()).first()
            return StoredTranscript.from_record(record) if record else None

    def available_languages(self, video_id: str) -> AvailableLanguages:
        with self.session_factory() as session:
            rows = (
                session.query(TranscriptRecord.language, TranscriptRecord.source)
                .filter(
                    TranscriptRecord.video_id == video_id,
                    TranscriptRecord.status == TranscriptStatus.COMPLETE.value,
                )
                .order_by(TranscriptRecord.language)
                .all()
            )
        available = AvailableLanguages()
        for language, source in rows:
            target = available.ai if source == StoredSource.AI.value else available.native
            target.append(language)
        return available

    def record_native(self, video_id: str, language: str, segments: list[RawSegment]) -> bool:
        """Store native captions; never clobbers a pending AI job. Failures are logged, not raised."""
        try:
            with self.session_factory() as session:
                record = session.get(TranscriptRecord, (video_id, language))
                if record is None:
                    session.add(
                        TranscriptRecord(
                            video_id=video_id,
                            language=language,
                            source=StoredSource.NATIVE.value,
                            status=TranscriptStatus.COMPLETE.value,
                            segments=_dump_segments(segments),
                        )
                    )
                elif record.status == TranscriptStatus.COMPLETE.value:
                    record.source = StoredSource.NATIVE.value
                    record.segments = _dump_segments(segments)
                else:
                    return False
                session.commit()
                return True
        except SQLAlchemyError as e:
            logger.warning(f"Could not store native transcript {video_id}:{language}: {e}")
            return False

    def reserve(self, video_id: str, language: str) -> tuple[StoredTranscript, bool]:
        """Claim the right to dispatch an AI job for the key.

        Returns the row and ``True`` when this caller owns a fresh pending row.
        ``False`` means another request already holds the job and its handle
        (possibly not attached yet) must be reused.
        """
        now = utcnow()
        with self.session_factory() as session:
            try:
                session.add(
                    TranscriptRecord(
                        video_id=video_id,
                        language=language,
                        source=StoredSource.AI.value,
                        status=TranscriptStatus.PENDING.value,
                        created_at=now,
                        updated_at=now,
                    )
                )
                session.commit()
                logger.info(f"Reserved AI job for {video_id}:{language}")
                return self.get(video_id, language), True
            except IntegrityError:
                session.rollback()

            # Take over only rows nobody is legitimately waiting on: stale pending
            # jobs, or native captions being replaced by an AI transcript.
            result = session.execute(
                update(TranscriptRecord)
                .where(
                    TranscriptRecord.video_id == video_id,
                    TranscriptRecord.language == language,
                    or_(
                        and_(
                            TranscriptRecord.status == TranscriptStatus.PENDING.value,
                            TranscriptRecord.updated_at < self._stale_cutoff(),
                        ),
                        and_(
                            TranscriptRecord.status == TranscriptStatus.COMPLETE.value,
                            TranscriptRecord.source == StoredSource.NATIVE.value,
                        ),
                    ),
                )
                .values(
                    source=StoredSource.AI.value,
                    status=TranscriptStatus.PENDING.value,
                    result_handle=None,
                    created_at=now,
                    updated_at=now,
                )
            )
            session.commit()
            claimed = result.rowcount == 1

        if claimed:
            logger.info(f"Took over AI job slot for {video_id}:{language}")
        return self.get(video_id, language), claimed

    def attach_handle(self, video_id: str, language: str, result_handle: str) -> None:
        with self.session_factory() as session:
            session.execute(
                update(TranscriptRecord)
                .where(
                    TranscriptRecord.video_id == video_id,
                    TranscriptRecord.language == language,
                    TranscriptRecord.status == TranscriptStatus.PENDING.value,
                )
                .values(result_handle=result_handle, updated_at=utcnow())
            )
            session.commit()

    def find_by_handle(self, result_handle: str) -> StoredTranscript | None:
        with self.session_factory() as session:
            record = (
                session.query(TranscriptRecord)
                .filter(TranscriptRecord.result_handle == result_handle)
                .first()
            )
            return StoredTranscript.from_record(record) if record else None

    def complete(
        self,
        video_id: str,
        language: str,
        segments: list[RawSegment],
        detected_language: str | None = None,
    ) -> StoredTranscript:
        """Write segments, flip to complete and clear the handle in one transaction.

        When the provider detected a different language the row moves to that
        language so it is never served as a transcript it is not.
        """
        final_language = detected_language or language
        with self.session_factory() as session:
            with session.begin():
                pending = session.get(TranscriptRecord, (video_id, language))
                if pending is not None and final_language != language:
                    session.delete(pending)
                    session.flush()
                record = session.get(TranscriptRecord, (video_id, final_language))
                if record is None:
                    record = TranscriptRecord(video_id=video_id, language=final_language)
                    session.add(record)
                record.source = StoredSource.AI.value
                record.status = TranscriptStatus.COMPLETE.value
                record.segments = _dump_segments(segments)
                record.result_handle = None
                record.updated_at = utcnow()
        logger.info(f"Completed AI job for {video_id}:{final_language} ({len(segments)} segments)")
        return self.get(video_id, final_language)

    def release(self, video_id: str, language: str) -> None:
        """Drop a pending row after the provider failed, so the next request may retry."""
        with self.session_factory() as session:
            session.query(TranscriptRecord).filter(
                TranscriptRecord.video_id == video_id,
                TranscriptRecord.language == language,
                TranscriptRecord.status == TranscriptStatus.PENDING.value,
            ).delete(synchronize_session=False)
            session.commit()

    def cleanup_stale(self) -> int:
        """Delete pending rows older than ``stale_after``; returns how many were removed."""
        with self.session_factory() as session:
            removed = (
                session.query(TranscriptRecord)
                .filter(
                    TranscriptRecord.status == TranscriptStatus.PENDING.value,
                    TranscriptRecord.updated_at < self._stale_cutoff(),
                )
                .delete(synchronize_session=False)
            )
            session.commit()
        if removed:
            logger.info(f"Removed {removed} stale pending jobs")
        return removed
