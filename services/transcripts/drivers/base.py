from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from shared.enums import JobStatus
from shared.models import RawSegment


class ProviderError(Exception):
    """An upstream caption or transcription provider failed."""


class CaptionResult(BaseModel):
    segments: list[RawSegment]
    language: str
    available_languages: list[str] = Field(default_factory=list)


class PollResult(BaseModel):
    status: JobStatus
    segments: list[RawSegment] = Field(default_factory=list)
    language: str | None = None
    error: str | None = None


class CaptionProvider(ABC):
    """Source of existing (native) captions for a video."""

    name = "captions"

    @abstractmethod
    async def fetch(self, video_id: str, language: str) -> CaptionResult | None:
        """Return captions, or None when the provider confirms there are none."""
        pass


class TranscriptionProvider(ABC):
    """Asynchronous AI transcription: dispatch once, then poll the returned handle."""

    name = "ai"

    @abstractmethod
    async def dispatch(self, video_id: str, language: str) -> str:
        """Start a job and return its opaque result handle."""
        pass

    @abstractmethod
    async def poll(self, result_handle: str) -> PollResult:
        pass
