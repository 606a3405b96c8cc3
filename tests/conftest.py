import asyncio
import os
import sys
import tempfile
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, Generator

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# Must be in place before database.py creates its engine
_TEST_DIR = tempfile.mkdtemp(prefix="transcripts-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR}/app.db"
os.environ["LOCAL_STORE_PATH"] = f"{_TEST_DIR}/local.db"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ.pop("SUPADATA_API_KEY", None)
os.environ.pop("GLADIA_API_KEY", None)

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, update
from sqlalchemy.orm import Session, sessionmaker

import models.database  # noqa: F401  registers tables
from database import Base
from models.database.transcript import TranscriptRecord
from services.transcripts import rate_limiter as rate_limiter_module
from services.transcripts.app import app as transcripts_app, get_transcript_service
from services.transcripts.drivers.base import (
    CaptionProvider,
    CaptionResult,
    PollResult,
    ProviderError,
    TranscriptionProvider,
)
from services.transcripts.ledger import TranscriptLedger
from services.transcripts.negative_cache import NegativeCache
from services.transcripts.rate_limiter import InMemoryRateLimitStore, RateLimitConfig, RateLimiter
from services.transcripts.service import TranscriptService
from shared.enums import JobStatus
from shared.models import RawSegment
from shared.utils import utcnow

VIDEO_ID = "dQw4w9WgXcQ"


def make_segments(*items: tuple[str, float, float]) -> list[RawSegment]:
    return [RawSegment(text=text, start=start, duration=duration) for text, start, duration in items]


def age_row(session_factory, video_id: str, language: str, seconds: int) -> None:
    """Backdate a transcript row so it looks abandoned."""
    with session_factory() as session:
        session.execute(
            update(TranscriptRecord)
            .where(TranscriptRecord.video_id == video_id, TranscriptRecord.language == language)
            .values(updated_at=utcnow() - timedelta(seconds=seconds))
        )
        session.commit()


class FakeCaptionProvider(CaptionProvider):
    name = "fake-captions"

    def __init__(self, results: dict[tuple[str, str], CaptionResult | None] | None = None) -> None:
        self.results = results or {}
        self.calls: list[tuple[str, str]] = []
        self.error: Exception | None = None

    async def fetch(self, video_id: str, language: str) -> CaptionResult | None:
        self.calls.append((video_id, language))
        if self.error is not None:
            raise self.error
        return self.results.get((video_id, language))


class FakeTranscriber(TranscriptionProvider):
    name = "fake-ai"

    def __init__(self) -> None:
        self.dispatch_calls: list[tuple[str, str]] = []
        self.poll_calls: list[str] = []
        self.poll_results: list[PollResult] = []
        self.dispatch_error: Exception | None = None

    async def dispatch(self, video_id: str, language: str) -> str:
        self.dispatch_calls.append((video_id, language))
        # Yield so concurrent requests interleave with the dispatch
        await asyncio.sleep(0.01)
        if self.dispatch_error is not None:
            raise self.dispatch_error
        return f"https://ai.example.com/jobs/{video_id}-{language}-{len(self.dispatch_calls)}"

    async def poll(self, result_handle: str) -> PollResult:
        self.poll_calls.append(result_handle)
        if self.poll_results:
            return self.poll_results.pop(0)
        return PollResult(status=JobStatus.PROCESSING)


class DummyPipeline:
    def __init__(self, store: "DummyRedis") -> None:
        self.store = store
        self.ops: list[tuple[str, tuple]] = []

    def incr(self, key: str) -> "DummyPipeline":
        self.ops.append(("_incr", (key,)))
        return self

    def expire(self, key: str, seconds: int, nx: bool = False) -> "DummyPipeline":
        self.ops.append(("_expire", (key, seconds, nx)))
        return self

    def pttl(self, key: str) -> "DummyPipeline":
        self.ops.append(("_pttl", (key,)))
        return self

    def execute(self) -> list:
        with self.store.lock:
            return [getattr(self.store, name)(*args) for name, args in self.ops]


class DummyRedis:
    """In-memory stand-in for the subset of redis used by the rate limiter."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self._values: dict[str, int] = {}
        self._deadlines: dict[str, float] = {}

    def pipeline(self, transaction: bool = True) -> DummyPipeline:
        return DummyPipeline(self)

    def _purge(self, key: str) -> None:
        deadline = self._deadlines.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self._values.pop(key, None)
            self._deadlines.pop(key, None)

    def _incr(self, key: str) -> int:
        self._purge(key)
        self._values[key] = self._values.get(key, 0) + 1
        return self._values[key]

    def _expire(self, key: str, seconds: int, nx: bool = False) -> bool:
        if key not in self._values or (nx and key in self._deadlines):
            return False
        self._deadlines[key] = time.monotonic() + seconds
        return True

    def _pttl(self, key: str) -> int:
        self._purge(key)
        if key not in self._values:
            return -2
        if key not in self._deadlines:
            return -1
        return int((self._deadlines[key] - time.monotonic()) * 1000)

    def expire(self, key: str, seconds: int) -> bool:
        with self.lock:
            return self._expire(key, seconds)


@pytest.fixture(scope="session", autouse=True)
def fake_redis() -> Generator[None, None, None]:
    """Patch redis client to use in-memory storage for tests."""
    original_from_url = rate_limiter_module.redis.Redis.from_url

    def fake_from_url(cls, url: str, *args, **kwargs):  # type: ignore[unused-argument]
        return DummyRedis()

    rate_limiter_module.redis.Redis.from_url = classmethod(fake_from_url)  # type: ignore[assignment]
    try:
        yield
    finally:
        rate_limiter_module.redis.Redis.from_url = original_from_url  # type: ignore[assignment]


@pytest.fixture
def session_factory(tmp_path: Path) -> Generator[Callable[[], Session], None, None]:
    """Create a SQLite session factory backed by a fresh file per test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()


@pytest.fixture
def ledger(session_factory) -> TranscriptLedger:
    return TranscriptLedger(session_factory, stale_after=3600)


@pytest.fixture
def negative_cache(session_factory) -> NegativeCache:
    return NegativeCache(session_factory, ttl=3600, persist_ttl=7 * 24 * 3600)


@pytest.fixture
def captions() -> FakeCaptionProvider:
    return FakeCaptionProvider()


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def transcript_service(ledger, negative_cache, captions, transcriber) -> TranscriptService:
    return TranscriptService(
        ledger=ledger,
        negative_cache=negative_cache,
        rate_limiter=RateLimiter(InMemoryRateLimitStore()),
        captions=captions,
        transcriber=transcriber,
        transcript_limit=RateLimitConfig(max=20, window_seconds=3600, key_prefix="transcript"),
        ai_limit=RateLimitConfig(max=3, window_seconds=3600, key_prefix="ai"),
        max_ai_duration=3600,
    )


@pytest.fixture
def api_client(transcript_service) -> Generator[TestClient, None, None]:
    transcripts_app.dependency_overrides[get_transcript_service] = lambda: transcript_service
    try:
        yield TestClient(transcripts_app)
    finally:
        transcripts_app.dependency_overrides.clear()


__all__ = ["FakeCaptionProvider", "FakeTranscriber", "ProviderError", "VIDEO_ID", "age_row", "make_segments"]
