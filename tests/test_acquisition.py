"""Tests for the client-side acquisition state machine."""

import asyncio

import aiohttp
import pytest

from conftest import VIDEO_ID, make_segments
from services.acquisition.local_store import LocalTranscriptStore
from services.acquisition.state import CompleteState, ErrorState, FallbackInfo, GeneratingAIState, IdleState
from services.acquisition.state_machine import TranscriptAcquisition
from services.acquisition.tiered_cache import TieredTranscriptCache
from shared.cache import MemoryCache
from shared.enums import ErrorCode, JobStatus, StoredSource, TranscriptSource
from shared.http_client import HTTPResponseError
from shared.models import AvailableLanguages, SubtitleCue, TranscriptResponse

SEGMENTS = make_segments(("Hello there", 0.0, 2.0), ("General Kenobi", 3.0, 2.5))
CUES = [SubtitleCue(id=1, start_time=0.0, end_time=2.0, text="cached")]


def done(language: str = "en", source: TranscriptSource = TranscriptSource.NATIVE, **kwargs) -> TranscriptResponse:
    return TranscriptResponse(success=True, language=language, segments=SEGMENTS, source=source, **kwargs)


def processing(handle: str = "https://ai.example.com/jobs/1") -> TranscriptResponse:
    return TranscriptResponse(success=False, status=JobStatus.PROCESSING.value, result_handle=handle, ai_available=True)


class FakeTranscriptAPI:
    """Scripted stand-in for TranscriptAPIClient."""

    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.calls: list[dict] = []
        self.gate: asyncio.Event | None = None

    async def request(self, video_id, lang, prefer_ai=False, result_handle=None) -> TranscriptResponse:
        self.calls.append(
            {"video_id": video_id, "lang": lang, "prefer_ai": prefer_ai, "result_handle": result_handle}
        )
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def cache(tmp_path) -> TieredTranscriptCache:
    return TieredTranscriptCache(MemoryCache(), LocalTranscriptStore(url=f"sqlite:///{tmp_path / 'cues.db'}"))


def make_acquisition(cache, *replies) -> tuple[TranscriptAcquisition, FakeTranscriptAPI]:
    api = FakeTranscriptAPI(*replies)
    return TranscriptAcquisition(cache, api, poll_interval=0), api


class TestFetchTranscript:
    @pytest.mark.asyncio
    async def test_cached_transcript_needs_no_network(self, cache) -> None:
        cache.put(VIDEO_ID, "en", CUES, StoredSource.NATIVE)
        acquisition, api = make_acquisition(cache, done())

        cues = await acquisition.fetch_transcript(VIDEO_ID, "en")

        assert cues == CUES
        assert api.calls == []
        assert acquisition.state == CompleteState(language="en", source=TranscriptSource.NATIVE, cues=CUES)

    @pytest.mark.asyncio
    async def test_persistent_tier_survives_new_memory(self, cache) -> None:
        cache.put(VIDEO_ID, "en", CUES, StoredSource.AI)
        fresh = TieredTranscriptCache(MemoryCache(), cache.local)
        acquisition, api = make_acquisition(fresh, done())

        assert await acquisition.fetch_transcript(VIDEO_ID, "en") == CUES
        assert api.calls == []
        assert acquisition.state.source == TranscriptSource.AI

    @pytest.mark.asyncio
    async def test_network_result_is_normalized_and_cached(self, cache) -> None:
        acquisition, api = make_acquisition(cache, done())

        cues = await acquisition.fetch_transcript(VIDEO_ID, "en")
        again = await acquisition.fetch_transcript(VIDEO_ID, "en")

        assert [(c.id, c.start_time, c.end_time, c.text) for c in cues] == [
            (1, 0.0, 3.0, "Hello there"),
            (2, 3.0, 5.5, "General Kenobi"),
        ]
        assert again == cues
        assert len(api.calls) == 1
        assert isinstance(acquisition.state, CompleteState)
        assert acquisition.state.source == TranscriptSource.NATIVE

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_request(self, cache) -> None:
        acquisition, api = make_acquisition(cache, done())

        first, second = await asyncio.gather(
            acquisition.fetch_transcript(VIDEO_ID, "en"),
            acquisition.fetch_transcript(VIDEO_ID, "en"),
        )

        assert first == second
        assert len(api.calls) == 1

    @pytest.mark.asyncio
    async def test_language_fallback_is_reported_and_cached_under_returned_language(self, cache) -> None:
        acquisition, _ = make_acquisition(
            cache, done("en", requested_language="de", warning="No de transcript, returning en")
        )

        cues = await acquisition.fetch_transcript(VIDEO_ID, "de")

        assert cues
        assert acquisition.fallback_info == FallbackInfo(requested="de", returned="en")
        assert acquisition.warning == "No de transcript, returning en"
        assert acquisition.state.language == "en"
        assert cache.get_local(VIDEO_ID, "en") is not None
        assert cache.get_local(VIDEO_ID, "de") is None

    @pytest.mark.asyncio
    async def test_available_languages_are_tracked(self, cache) -> None:
        languages = AvailableLanguages(native=["en"], ai=["ja"])
        acquisition, _ = make_acquisition(cache, done(available_languages=languages))

        await acquisition.fetch_transcript(VIDEO_ID, "en")

        assert acquisition.available_languages == languages

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure, code, retry_after, ai_available",
        [
            (
                HTTPResponseError(429, {"Retry-After": "60"}, {"errorCode": "RATE_LIMITED", "retryAfter": 120}),
                ErrorCode.RATE_LIMITED,
                120,
                False,
            ),
            (HTTPResponseError(429, {"retry-after": "60"}, None), ErrorCode.RATE_LIMITED, 60, False),
            (HTTPResponseError(502, {}, {"errorCode": "SERVER_ERROR", "aiAvailable": True}), ErrorCode.SERVER_ERROR, None, True),
            (HTTPResponseError(400, {}, {"errorCode": "VIDEO_TOO_LONG"}), ErrorCode.VIDEO_TOO_LONG, None, False),
            (HTTPResponseError(404, {}, "not json"), ErrorCode.REQUEST_ERROR, None, False),
            (aiohttp.ClientConnectionError("offline"), ErrorCode.NETWORK_ERROR, None, False),
            (asyncio.TimeoutError(), ErrorCode.NETWORK_ERROR, None, False),
        ],
    )
    async def test_failures_map_to_error_states(self, cache, failure, code, retry_after, ai_available) -> None:
        acquisition, _ = make_acquisition(cache, failure)

        assert await acquisition.fetch_transcript(VIDEO_ID, "en") == []

        state = acquisition.state
        assert isinstance(state, ErrorState)
        assert state.code == code
        assert state.retry_after == retry_after
        assert state.ai_available is ai_available

    @pytest.mark.asyncio
    async def test_no_subtitles_offers_ai(self, cache) -> None:
        reply = TranscriptResponse(success=False, error_code=ErrorCode.NO_SUBTITLES, ai_available=True)
        acquisition, _ = make_acquisition(cache, reply)

        assert await acquisition.fetch_transcript(VIDEO_ID, "fr") == []
        assert acquisition.state == ErrorState(code=ErrorCode.NO_SUBTITLES, ai_available=True)
        assert cache.get_local(VIDEO_ID, "fr") is None

    @pytest.mark.asyncio
    async def test_empty_success_is_no_subtitles(self, cache) -> None:
        acquisition, _ = make_acquisition(cache, TranscriptResponse(success=True, language="en", segments=[]))

        await acquisition.fetch_transcript(VIDEO_ID, "en")

        assert acquisition.state.code == ErrorCode.NO_SUBTITLES

    @pytest.mark.asyncio
    async def test_clear_cache_forces_network(self, cache) -> None:
        acquisition, api = make_acquisition(cache, done())
        await acquisition.fetch_transcript(VIDEO_ID, "en")

        acquisition.clear_cache(VIDEO_ID)
        await acquisition.fetch_transcript(VIDEO_ID, "en")

        assert len(api.calls) == 2


class TestGenerateWithAI:
    @pytest.mark.asyncio
    async def test_polls_until_complete(self, cache) -> None:
        acquisition, api = make_acquisition(
            cache, processing("h1"), processing("h1"), done("ja", source=TranscriptSource.AI)
        )
        states = []
        acquisition.subscribe(states.append)

        cues = await acquisition.generate_with_ai(VIDEO_ID, "ja")

        assert len(cues) == 2
        assert [call["result_handle"] for call in api.calls] == [None, "h1", "h1"]
        assert all(call["prefer_ai"] for call in api.calls)
        assert states[0] == GeneratingAIState(result_handle=None, is_resuming=False)
        assert states[1] == GeneratingAIState(result_handle="h1", is_resuming=True)
        assert states[-1] == CompleteState(language="ja", source=TranscriptSource.AI, cues=cues)
        assert cache.get_local(VIDEO_ID, "ja").source == StoredSource.AI

    @pytest.mark.asyncio
    async def test_concurrent_generation_is_coalesced(self, cache) -> None:
        acquisition, api = make_acquisition(cache, done("ja", source=TranscriptSource.AI))

        await asyncio.gather(
            acquisition.generate_with_ai(VIDEO_ID, "ja"),
            acquisition.generate_with_ai(VIDEO_ID, "ja"),
        )

        assert len(api.calls) == 1

    @pytest.mark.asyncio
    async def test_resumed_polls_are_not_coalesced(self, cache) -> None:
        acquisition, api = make_acquisition(cache, done("ja", source=TranscriptSource.AI))

        await asyncio.gather(
            acquisition.generate_with_ai(VIDEO_ID, "ja", result_handle="h1"),
            acquisition.generate_with_ai(VIDEO_ID, "ja", result_handle="h1"),
        )

        assert len(api.calls) == 2
        assert api.calls[0]["result_handle"] == "h1"

    @pytest.mark.asyncio
    async def test_resume_starts_in_resuming_state(self, cache) -> None:
        acquisition, _ = make_acquisition(cache, done("ja", source=TranscriptSource.AI))
        states = []
        acquisition.subscribe(states.append)

        await acquisition.generate_with_ai(VIDEO_ID, "ja", result_handle="h1")

        assert states[0] == GeneratingAIState(result_handle="h1", is_resuming=True)

    @pytest.mark.asyncio
    async def test_detected_language_is_cached_and_reported(self, cache) -> None:
        acquisition, _ = make_acquisition(
            cache, done("ja", source=TranscriptSource.AI, requested_language="en")
        )

        await acquisition.generate_with_ai(VIDEO_ID, "en")

        assert acquisition.fallback_info == FallbackInfo(requested="en", returned="ja")
        assert cache.get_local(VIDEO_ID, "ja") is not None

    @pytest.mark.asyncio
    async def test_rate_limited_generation(self, cache) -> None:
        acquisition, _ = make_acquisition(
            cache, HTTPResponseError(429, {}, {"errorCode": "RATE_LIMITED", "retryAfter": 1800, "aiAvailable": True})
        )

        assert await acquisition.generate_with_ai(VIDEO_ID, "ja") == []
        assert acquisition.state == ErrorState(code=ErrorCode.RATE_LIMITED, retry_after=1800, ai_available=False)

    @pytest.mark.asyncio
    async def test_job_failure_ends_in_error(self, cache) -> None:
        failed = TranscriptResponse(success=False, error_code=ErrorCode.NO_SUBTITLES, ai_available=True)
        acquisition, _ = make_acquisition(cache, processing("h1"), failed)

        assert await acquisition.generate_with_ai(VIDEO_ID, "ja") == []
        assert acquisition.state.code == ErrorCode.NO_SUBTITLES


class TestCancellation:
    @pytest.mark.asyncio
    async def test_reset_stops_polling(self, cache) -> None:
        api = FakeTranscriptAPI(processing("h1"))
        acquisition = TranscriptAcquisition(cache, api, poll_interval=30)

        job = asyncio.ensure_future(acquisition.generate_with_ai(VIDEO_ID, "ja"))
        while not (isinstance(acquisition.state, GeneratingAIState) and acquisition.state.is_resuming):
            await asyncio.sleep(0)
        acquisition.reset()

        assert await asyncio.wait_for(job, timeout=1) == []
        assert acquisition.state == IdleState()
        assert len(api.calls) == 1

    @pytest.mark.asyncio
    async def test_switching_video_cancels_previous_lookup(self, cache) -> None:
        api = FakeTranscriptAPI(done())
        api.gate = asyncio.Event()
        acquisition = TranscriptAcquisition(cache, api, poll_interval=0)

        stale = asyncio.ensure_future(acquisition.fetch_transcript(VIDEO_ID, "en"))
        while not api.calls:
            await asyncio.sleep(0)
        api.gate = None
        current = await acquisition.fetch_transcript("aaaaaaaaaaa", "en")

        assert await asyncio.wait_for(stale, timeout=1) == []
        assert current
        assert acquisition.state.cues == current
        assert cache.get_local(VIDEO_ID, "en") is None

    @pytest.mark.asyncio
    async def test_unsubscribe(self, cache) -> None:
        acquisition, _ = make_acquisition(cache, done())
        states = []
        unsubscribe = acquisition.subscribe(states.append)
        unsubscribe()

        await acquisition.fetch_transcript(VIDEO_ID, "en")

        assert states == []
