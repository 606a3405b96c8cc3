"""
Persistent-local cue store backed by its own SQLite file.
"""

import os
from collections.abc import Callable

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from models.database.local_cache import LocalBase, LocalCueEntry
from shared.config import config
from shared.models import CachedTranscript
from shared.utils import ensure_directory


class LocalTranscriptStore:
    """Durable, TTL-free cue cache keyed like the memory tier."""

    def __init__(self, url: str | None = None, session_factory: Callable[[], Session] | None = None) -> None:
        if session_factory is None:
            if url is None:
                path = os.path.abspath(config.get("local_store_path", "./transcript_cache.db"))
                ensure_directory(os.path.dirname(path))
                url = f"sqlite:///{path}"
            engine = create_engine(url, connect_args={"check_same_thread": False})
            LocalBase.metadata.create_all(bind=engine)
            session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
        self.session_factory = session_factory

    def get(self, key: str) -> CachedTranscript | None:
        with self.session_factory() as session:
            entry = session.get(LocalCueEntry, key)
            if entry is None:
                return None
            return CachedTranscript(language=entry.language, source=entry.source, cues=entry.cues)

    def put(self, key: str, video_id: str, transcript: CachedTranscript) -> None:
        with self.session_factory() as session:
            session.merge(
                LocalCueEntry(
                    cache_key=key,
                    video_id=video_id,
                    language=transcript.language,
                    source=transcript.source.value,
                    cues=[cue.model_dump() for cue in transcript.cues],
                )
            )
            session.commit()

    def delete_video(self, video_id: str) -> int:
        with self.session_factory() as session:
            removed = (
                session.query(LocalCueEntry)
                .filter(LocalCueEntry.video_id == video_id)
                .delete(synchronize_session=False)
            )
            session.commit()
            return removed

    def clear(self) -> None:
        with self.session_factory() as session:
            session.query(LocalCueEntry).delete(synchronize_session=False)
            session.commit()
