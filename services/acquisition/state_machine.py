"""Client-side transcript acquisition.

Resolves a transcript through the cache tiers and the transcript API, drives
AI generation by re-polling the job handle at a fixed interval, and exposes
one coherent state for the UI. All work runs on a single event loop; the
state is only replaced here, never mutated from outside.
"""

import asyncio
from collections.abc import Awaitable, Callable, Hashable

from services.acquisition.api_client import TRANSPORT_ERRORS, TranscriptAPIClient, error_state_from_exception
from services.acquisition.state import (
    AcquisitionState,
    CompleteState,
    ErrorState,
    FallbackInfo,
    GeneratingAIState,
    IdleState,
    LoadingState,
)
from services.acquisition.tiered_cache import TieredTranscriptCache
from services.transcripts.normalizer import normalize
from shared.config import config
from shared.enums import POLL_INTERVAL, ErrorCode, JobStatus, StoredSource, TranscriptSource
from shared.models import AvailableLanguages, CachedTranscript, SubtitleCue, TranscriptResponse
from shared.utils import setup_logging

logger = setup_logging("acquisition")

StateListener = Callable[[AcquisitionState], None]


class AcquisitionFailure(Exception):
    """Carries the error state a lookup ended in through the cache layer."""

    def __init__(self, state: ErrorState) -> None:
        super().__init__(state.code.value)
        self.state = state


class TranscriptAcquisition:
    def __init__(
        self,
        cache: TieredTranscriptCache,
        api: TranscriptAPIClient,
        poll_interval: float | None = None,
    ) -> None:
        self.cache = cache
        self.api = api
        self.poll_interval = (
            poll_interval
            if poll_interval is not None
            else config.get_pipeline_value("acquisition.poll_interval", POLL_INTERVAL)
        )
        self.fallback_info: FallbackInfo | None = None
        self.available_languages = AvailableLanguages()
        self.warning: str | None = None
        self._state: AcquisitionState = IdleState()
        self._listeners: list[StateListener] = []
        self._session: tuple[str, str] | None = None
        self._cancelled = asyncio.Event()
        self._inflight: dict[Hashable, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> AcquisitionState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; returns a callable that unregisters it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _set_state(self, state: AcquisitionState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    # Public operations

    async def fetch_transcript(self, video_id: str, lang: str) -> list[SubtitleCue]:
        """Resolve cues through memory, persistent-local and network tiers."""
        self._enter_session(video_id, lang)
        return await self._dedup((video_id, lang, False), lambda: self._run_fetch(video_id, lang))

    async def generate_with_ai(
        self, video_id: str, lang: str, result_handle: str | None = None
    ) -> list[SubtitleCue]:
        """Request AI transcription and poll it until it completes or fails.

        With ``result_handle`` polling resumes an existing job; such calls are
        never coalesced with others since each drives its own timer.
        """
        self._enter_session(video_id, lang)
        if result_handle is None:
            return await self._dedup((video_id, lang, True), lambda: self._run_ai(video_id, lang, None))
        return await self._track(self._run_ai(video_id, lang, result_handle))

    def reset(self) -> None:
        """Cancel all network calls and poll timers and return to idle."""
        self._cancel_all()
        self._session = None
        self.fallback_info = None
        self.warning = None
        self._set_state(IdleState())

    def clear_cache(self, video_id: str | None = None) -> None:
        self.cache.clear(video_id)

    # Task bookkeeping

    def _enter_session(self, video_id: str, lang: str) -> None:
        if self._session is not None and self._session != (video_id, lang):
            logger.debug(f"Switching from {self._session} to {(video_id, lang)}, cancelling work")
            self._cancel_all()
        self._session = (video_id, lang)

    def _cancel_all(self) -> None:
        self._cancelled.set()
        for task in [*self._inflight.values(), *self._tasks]:
            task.cancel()
        self._inflight.clear()
        self._tasks.clear()
        self.cache.cancel_pending()
        self._cancelled = asyncio.Event()

    async def _await_task(self, task: asyncio.Task) -> list[SubtitleCue]:
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return []
            raise

    async def _track(self, coro: Awaitable[list[SubtitleCue]]) -> list[SubtitleCue]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return await self._await_task(task)

    async def _dedup(
        self, key: Hashable, factory: Callable[[], Awaitable[list[SubtitleCue]]]
    ) -> list[SubtitleCue]:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task

            def _forget(done: asyncio.Task) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            task.add_done_callback(_forget)
        return await self._await_task(task)

    # Native / cached lookup

    async def _run_fetch(self, video_id: str, lang: str) -> list[SubtitleCue]:
        self.fallback_info = None
        self.warning = None
        self._set_state(LoadingState())
        try:
            entry = await self.cache.get_entry(video_id, lang, remote=lambda: self._remote_lookup(video_id, lang))
        except AcquisitionFailure as failure:
            self._set_state(failure.state)
            return []

        if entry is None or not entry.cues:
            self._set_state(ErrorState(code=ErrorCode.NO_SUBTITLES))
            return []
        self._set_state(CompleteState(language=entry.language, source=entry.source.value, cues=entry.cues))
        return entry.cues

    async def _remote_lookup(self, video_id: str, lang: str) -> CachedTranscript:
        try:
            response = await self.api.request(video_id, lang)
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Transcript request failed for {video_id}:{lang}: {e!r}")
            raise AcquisitionFailure(error_state_from_exception(e)) from e

        self._absorb_metadata(response)
        cues = normalize(response.segments) if response.success else []
        if not cues:
            raise AcquisitionFailure(self._error_from_response(response))
        return self._transcript_from_response(response, lang, cues)

    # AI generation

    async def _run_ai(self, video_id: str, lang: str, result_handle: str | None) -> list[SubtitleCue]:
        cancelled = self._cancelled
        self.fallback_info = None
        self.warning = None
        self._set_state(GeneratingAIState(result_handle=result_handle, is_resuming=result_handle is not None))

        while True:
            try:
                response = await self.api.request(video_id, lang, prefer_ai=True, result_handle=result_handle)
            except TRANSPORT_ERRORS as e:
                logger.warning(f"AI transcript request failed for {video_id}:{lang}: {e!r}")
                self._set_state(error_state_from_exception(e))
                return []

            self._absorb_metadata(response)
            if response.status == JobStatus.PROCESSING.value:
                result_handle = response.result_handle or result_handle
                self._set_state(GeneratingAIState(result_handle=result_handle, is_resuming=True))
                if await self._wait_or_cancel(cancelled):
                    return []
                continue

            cues = normalize(response.segments) if response.success else []
            if not cues:
                self._set_state(self._error_from_response(response))
                return []

            transcript = self._transcript_from_response(response, lang, cues)
            self.cache.put(video_id, transcript.language, cues, transcript.source)
            self._set_state(
                CompleteState(language=transcript.language, source=transcript.source.value, cues=cues)
            )
            return cues

    async def _wait_or_cancel(self, cancelled: asyncio.Event) -> bool:
        """Sleep one poll interval; True if the session was cancelled meanwhile."""
        try:
            await asyncio.wait_for(cancelled.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            return cancelled.is_set()
        return True

    # Response helpers

    def _absorb_metadata(self, response: TranscriptResponse) -> None:
        self.available_languages = response.available_languages
        if response.warning and response.success:
            self.warning = response.warning

    def _transcript_from_response(
        self, response: TranscriptResponse, requested: str, cues: list[SubtitleCue]
    ) -> CachedTranscript:
        language = response.language or requested
        requested_language = response.requested_language or requested
        if requested_language != language:
            self.fallback_info = FallbackInfo(requested=requested_language, returned=language)
        source = StoredSource.AI if response.source == TranscriptSource.AI else StoredSource.NATIVE
        return CachedTranscript(language=language, source=source, cues=cues)

    @staticmethod
    def _error_from_response(response: TranscriptResponse) -> ErrorState:
        return ErrorState(
            code=response.error_code or ErrorCode.NO_SUBTITLES,
            retry_after=response.retry_after,
            ai_available=bool(response.ai_available),
            message=response.warning,
        )
