"""Memory -> persistent-local -> remote transcript lookups.

The first tier that hits wins. A remote hit is written back into both local
tiers, and concurrent lookups of the same key share one remote call.
"""

import asyncio
from collections.abc import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError

from services.acquisition.local_store import LocalTranscriptStore
from shared.cache import MemoryCache
from shared.enums import StoredSource
from shared.models import CachedTranscript, SubtitleCue
from shared.utils import content_hash, setup_logging

logger = setup_logging("acquisition")

RemoteLookup = Callable[[], Awaitable[CachedTranscript | None]]


class TieredTranscriptCache:
    def __init__(self, memory: MemoryCache | None = None, local: LocalTranscriptStore | None = None) -> None:
        self.memory = memory if memory is not None else MemoryCache()
        self.local = local
        self._inflight: dict[str, asyncio.Task] = {}

    @staticmethod
    def key(video_id: str, language: str) -> str:
        return f"{video_id}:{language}"

    @staticmethod
    def content_key(video_id: str, text: str) -> str:
        """Key for data derived from cue text, e.g. tokenization results."""
        return f"{video_id}:{content_hash(text)}"

    def get_local(self, video_id: str, language: str) -> CachedTranscript | None:
        key = self.key(video_id, language)
        cached = self.memory.get(key)
        if cached is not None:
            return cached
        if self.local is None:
            return None
        try:
            cached = self.local.get(key)
        except SQLAlchemyError as e:
            logger.warning(f"Local cache read failed for {key}: {e}")
            return None
        if cached is not None:
            self.memory.set(key, cached)
        return cached

    async def get_entry(
        self, video_id: str, language: str, remote: RemoteLookup | None = None
    ) -> CachedTranscript | None:
        cached = self.get_local(video_id, language)
        if cached is not None or remote is None:
            return cached

        key = self.key(video_id, language)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load_remote(video_id, remote))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def get(
        self, video_id: str, language: str, remote: RemoteLookup | None = None
    ) -> list[SubtitleCue] | None:
        entry = await self.get_entry(video_id, language, remote)
        return entry.cues if entry else None

    async def _load_remote(self, video_id: str, remote: RemoteLookup) -> CachedTranscript | None:
        entry = await remote()
        if entry is not None and entry.cues:
            self.put(video_id, entry.language, entry.cues, entry.source)
        return entry

    def put(self, video_id: str, language: str, cues: list[SubtitleCue], source: StoredSource) -> None:
        """Write to memory and persistent-local tiers; a failed local write is logged and ignored."""
        key = self.key(video_id, language)
        entry = CachedTranscript(language=language, source=source, cues=cues)
        self.memory.set(key, entry)
        if self.local is None:
            return
        try:
            self.local.put(key, video_id, entry)
        except SQLAlchemyError as e:
            logger.warning(f"Local cache write failed for {key}: {e}")

    def clear(self, video_id: str | None = None) -> None:
        if video_id is None:
            self.memory.clear()
            if self.local is not None:
                self.local.clear()
            return
        self.memory.delete_prefix(f"{video_id}:")
        if self.local is not None:
            self.local.delete_video(video_id)

    def cancel_pending(self) -> None:
        """Abort remote lookups still in flight; their callers see cancellation."""
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
