"""Server-side transcript resolution.

Permanent store first, then the negative cache and native captions, then an
AI transcription job whose handle is persisted so any later request can
resume polling it.
"""

import asyncio
import re

import aiohttp
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from services.transcripts.drivers.base import CaptionProvider, ProviderError, TranscriptionProvider
from services.transcripts.ledger import StoredTranscript, TranscriptLedger
from services.transcripts.negative_cache import NegativeCache
from services.transcripts.normalizer import normalize, normalize_inverse
from services.transcripts.rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
    rate_limit_headers,
)
from shared.config import config
from shared.enums import MAX_AI_VIDEO_DURATION, ErrorCode, JobStatus, StoredSource, TranscriptSource
from shared.models import AvailableLanguages, RawSegment, TranscriptRequest, TranscriptResponse
from shared.utils import setup_logging

logger = setup_logging("transcript-service")

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
LANGUAGE_PATTERN = re.compile(r"^[a-z]{2,3}(-[A-Za-z]{2,4})?$")

UPSTREAM_ERRORS = (ProviderError, aiohttp.ClientError, asyncio.TimeoutError)


class TranscriptError(Exception):
    """A request that ends in one of the error codes of the transcript API."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 400,
        retry_after: int | None = None,
        ai_available: bool | None = None,
        headers: dict[str, str] | None = None,
        available_languages: AvailableLanguages | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        self.ai_available = ai_available
        self.headers = headers or {}
        self.available_languages = available_languages

    def to_response(self, requested_language: str | None = None) -> TranscriptResponse:
        return TranscriptResponse(
            success=False,
            requested_language=requested_language,
            error_code=self.code,
            retry_after=self.retry_after,
            ai_available=self.ai_available,
            available_languages=self.available_languages or AvailableLanguages(),
            warning=self.message,
        )


class TranscriptReply(BaseModel):
    response: TranscriptResponse
    status_code: int = 200
    headers: dict[str, str] = Field(default_factory=dict)


class TranscriptService:
    def __init__(
        self,
        ledger: TranscriptLedger,
        negative_cache: NegativeCache,
        rate_limiter: RateLimiter,
        captions: CaptionProvider | None = None,
        transcriber: TranscriptionProvider | None = None,
        transcript_limit: RateLimitConfig | None = None,
        ai_limit: RateLimitConfig | None = None,
        max_ai_duration: float | None = None,
    ) -> None:
        self.ledger = ledger
        self.negative_cache = negative_cache
        self.rate_limiter = rate_limiter
        self.captions = captions
        self.transcriber = transcriber
        self.transcript_limit = transcript_limit or RateLimitConfig.from_pipeline("transcript", 20)
        self.ai_limit = ai_limit or RateLimitConfig.from_pipeline("ai", 3)
        self.max_ai_duration = max_ai_duration or config.get_pipeline_value(
            "providers.max_ai_video_duration", MAX_AI_VIDEO_DURATION
        )
        # Dispatches in flight in this process; concurrent requests wait for the handle
        self._dispatching: dict[tuple[str, str], asyncio.Future] = {}

    @property
    def ai_available(self) -> bool:
        return self.transcriber is not None

    def cleanup(self) -> dict[str, int]:
        """Drop abandoned pending jobs and expired negative-cache rows."""
        removed = {
            "stale_jobs": self.ledger.cleanup_stale(),
            "expired_negative": self.negative_cache.purge_expired(),
        }
        logger.info(f"Cleanup removed {removed['stale_jobs']} stale jobs, {removed['expired_negative']} negative entries")
        return removed

    async def handle(self, request: TranscriptRequest, identity: str) -> TranscriptReply:
        video_id, language = self._validate(request)
        if request.result_handle:
            return await self._poll(video_id, language, request.result_handle)
        if request.prefer_ai:
            return await self._generate(video_id, language, identity, request.duration)
        return await self._lookup(video_id, language, identity)

    @staticmethod
    def _validate(request: TranscriptRequest) -> tuple[str, str]:
        video_id = (request.video_id or "").strip()
        language = (request.lang or "").strip()
        if not VIDEO_ID_PATTERN.match(video_id):
            raise TranscriptError(ErrorCode.REQUEST_ERROR, "Invalid video id", status_code=400)
        if not LANGUAGE_PATTERN.match(language):
            raise TranscriptError(ErrorCode.REQUEST_ERROR, "Invalid language code", status_code=400)
        return video_id, language

    def _consume(self, identity: str, limit: RateLimitConfig) -> RateLimitResult:
        result = self.rate_limiter.consume(identity, limit)
        if not result.allowed:
            raise TranscriptError(
                ErrorCode.RATE_LIMITED,
                "Too many requests, please try again later",
                status_code=429,
                retry_after=result.retry_after,
                ai_available=False,
                headers=rate_limit_headers(result),
            )
        return result

    def _success(
        self,
        stored: StoredTranscript,
        requested_language: str,
        source: TranscriptSource,
        limit: RateLimitResult | None = None,
        warning: str | None = None,
    ) -> TranscriptReply:
        if stored.language != requested_language and warning is None:
            warning = f"No {requested_language} transcript, returning {stored.language}"
        headers = rate_limit_headers(limit) if limit else {}
        headers["X-Cache"] = "HIT" if source == TranscriptSource.CACHE else "MISS"
        return TranscriptReply(
            response=TranscriptResponse(
                success=True,
                language=stored.language,
                requested_language=requested_language,
                segments=stored.segments,
                source=source,
                available_languages=self.ledger.available_languages(stored.video_id),
                ai_available=self.ai_available,
                warning=warning,
            ),
            headers=headers,
        )

    def _processing(
        self,
        video_id: str,
        requested_language: str,
        result_handle: str | None,
        limit: RateLimitResult | None = None,
    ) -> TranscriptReply:
        return TranscriptReply(
            response=TranscriptResponse(
                success=False,
                requested_language=requested_language,
                status=JobStatus.PROCESSING.value,
                result_handle=result_handle,
                available_languages=self.ledger.available_languages(video_id),
                ai_available=True,
            ),
            headers=rate_limit_headers(limit) if limit else {},
        )

    def _no_subtitles(self, video_id: str, message: str) -> TranscriptError:
        return TranscriptError(
            ErrorCode.NO_SUBTITLES,
            message,
            status_code=200,
            ai_available=self.ai_available,
            available_languages=self.ledger.available_languages(video_id),
        )

    @staticmethod
    def _dispatch_failed() -> TranscriptError:
        return TranscriptError(ErrorCode.SERVER_ERROR, "AI transcription could not be started", status_code=502)

    @staticmethod
    def _clean(segments: list[RawSegment]) -> list[RawSegment]:
        return normalize_inverse(normalize(segments))

    async def _lookup(self, video_id: str, language: str, identity: str) -> TranscriptReply:
        limit = self._consume(identity, self.transcript_limit)

        stored = self.ledger.find_complete(video_id, language)
        if stored:
            return self._success(stored, language, TranscriptSource.CACHE, limit)

        upstream_failed = False
        if self.captions and not self.negative_cache.contains(video_id, language, StoredSource.NATIVE.value):
            try:
                result = await self.captions.fetch(video_id, language)
            except UPSTREAM_ERRORS as e:
                logger.warning(f"Caption provider failed for {video_id}:{language}: {e}")
                result, upstream_failed = None, True

            segments = self._clean(result.segments) if result else []
            if segments:
                self.ledger.record_native(video_id, result.language, segments)
                stored = self.ledger.find_complete(video_id, result.language) or StoredTranscript(
                    video_id=video_id,
                    language=result.language,
                    source=StoredSource.NATIVE,
                    status="complete",
                    segments=segments,
                )
                return self._success(stored, language, TranscriptSource.NATIVE, limit)
            if not upstream_failed:
                self.negative_cache.mark(video_id, language, StoredSource.NATIVE.value)

        fallback = self.ledger.find_ai_fallback(video_id, exclude_language=language)
        if fallback:
            return self._success(fallback, language, TranscriptSource.CACHE, limit)

        if upstream_failed:
            raise TranscriptError(
                ErrorCode.SERVER_ERROR,
                "Caption provider unavailable",
                status_code=502,
                ai_available=self.ai_available,
                headers=rate_limit_headers(limit),
            )
        error = self._no_subtitles(video_id, "No captions available for this video")
        error.headers = rate_limit_headers(limit)
        raise error

    async def _generate(
        self, video_id: str, language: str, identity: str, duration: float | None
    ) -> TranscriptReply:
        if self.transcriber is None:
            raise TranscriptError(
                ErrorCode.SERVER_ERROR, "AI transcription not configured", status_code=503, ai_available=False
            )
        if duration and duration > self.max_ai_duration:
            raise TranscriptError(
                ErrorCode.VIDEO_TOO_LONG,
                f"Video exceeds the {int(self.max_ai_duration // 60)} minute limit for AI transcription",
                status_code=400,
            )

        pending = self.ledger.find_pending(video_id, language)
        if pending:
            logger.info(f"Resuming pending AI job for {video_id}:{language}")
            handle = pending.result_handle or await self._await_dispatch(video_id, language)
            return self._processing(video_id, language, handle)

        existing = self.ledger.find_complete(video_id, language)
        if existing and existing.source == StoredSource.AI:
            return self._success(existing, language, TranscriptSource.CACHE)
        fallback = self.ledger.find_ai_fallback(video_id, exclude_language=language)
        if fallback:
            # A previous job detected another language; do not pay for the same audio twice
            return self._success(fallback, language, TranscriptSource.CACHE)
        if self.negative_cache.contains(video_id, language, StoredSource.AI.value):
            raise self._no_subtitles(video_id, "AI transcription found no speech in this video")

        limit = self._consume(identity, self.ai_limit)

        row, owner = self.ledger.reserve(video_id, language)
        if not owner:
            if row and row.status == "complete":
                return self._success(row, language, TranscriptSource.CACHE, limit)
            handle = (row.result_handle if row else None) or await self._await_dispatch(video_id, language)
            return self._processing(video_id, language, handle, limit)

        key = (video_id, language)
        future = asyncio.get_running_loop().create_future()
        self._dispatching[key] = future
        try:
            handle = await self.transcriber.dispatch(video_id, language)
            self.ledger.attach_handle(video_id, language, handle)
            future.set_result(handle)
        except UPSTREAM_ERRORS as e:
            logger.error(f"AI dispatch failed for {video_id}:{language}: {e}")
            self.ledger.release(video_id, language)
            # Waiters share the failure instead of seeing a handle-less job; reading
            # it back marks it retrieved when nobody is waiting
            future.set_exception(self._dispatch_failed())
            future.exception()
            error = self._dispatch_failed()
            error.headers = rate_limit_headers(limit)
            raise error from e
        finally:
            if not future.done():
                future.cancel()
            self._dispatching.pop(key, None)

        logger.info(f"AI job dispatched for {video_id}:{language}")
        try:
            self.ledger.cleanup_stale()
        except SQLAlchemyError as e:
            logger.warning(f"Stale job cleanup after dispatch failed: {e}")
        return self._processing(video_id, language, handle, limit)

    async def _await_dispatch(self, video_id: str, language: str) -> str | None:
        """Handle of a dispatch running in this process, or None if another process owns it.

        Re-raises the owner's TranscriptError when that dispatch failed.
        """
        future = self._dispatching.get((video_id, language))
        if future is None:
            return None
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            if future.cancelled():
                return None
            raise

    async def _poll(self, video_id: str, language: str, result_handle: str) -> TranscriptReply:
        if self.transcriber is None:
            raise TranscriptError(
                ErrorCode.SERVER_ERROR, "AI transcription not configured", status_code=503, ai_available=False
            )

        job = self.ledger.find_by_handle(result_handle)
        if job is None:
            # Another poller may already have completed it
            done = self.ledger.find_complete(video_id, language) or self.ledger.find_ai_fallback(video_id)
            if done and done.source == StoredSource.AI:
                return self._success(done, language, TranscriptSource.AI)
            raise TranscriptError(ErrorCode.REQUEST_ERROR, "Unknown result handle", status_code=400)
        if job.video_id != video_id:
            raise TranscriptError(
                ErrorCode.REQUEST_ERROR, "Result handle belongs to another video", status_code=400
            )

        try:
            result = await self.transcriber.poll(result_handle)
        except ProviderError as e:
            logger.error(f"AI job {result_handle} failed: {e}")
            self.ledger.release(job.video_id, job.language)
            raise TranscriptError(ErrorCode.SERVER_ERROR, "AI transcription failed", status_code=502) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Transient error polling {result_handle}: {e}")
            return self._processing(video_id, language, result_handle)

        if result.status == JobStatus.PROCESSING:
            return self._processing(video_id, language, result_handle)
        if result.status == JobStatus.ERROR:
            logger.error(f"AI job {result_handle} reported error: {result.error}")
            self.ledger.release(job.video_id, job.language)
            raise TranscriptError(ErrorCode.SERVER_ERROR, "AI transcription failed", status_code=502)

        segments = self._clean(result.segments)
        if not segments:
            self.ledger.release(job.video_id, job.language)
            self.negative_cache.mark(job.video_id, job.language, StoredSource.AI.value)
            raise self._no_subtitles(video_id, "AI transcription found no speech in this video")

        stored = self.ledger.complete(job.video_id, job.language, segments, detected_language=result.language)
        return self._success(stored, language, TranscriptSource.AI)
