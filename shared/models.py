from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shared.enums import ErrorCode, StoredSource, TranscriptSource


class RawSegment(BaseModel):
    """One caption entry as received from a provider."""

    text: str = Field(default="", description="Caption text, possibly empty")
    start: float = Field(..., description="Start offset in seconds")
    duration: float = Field(default=0.0, description="Duration in seconds")


class SubtitleCue(BaseModel):
    """Normalized, display-ready subtitle unit."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    start_time: float = Field(..., alias="startTime")
    end_time: float = Field(..., alias="endTime")
    text: str

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class AvailableLanguages(BaseModel):
    native: list[str] = Field(default_factory=list)
    ai: list[str] = Field(default_factory=list)


class TranscriptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(..., alias="videoId", description="YouTube video id")
    lang: str = Field(default="en", description="Requested language code")
    prefer_ai: bool = Field(default=False, alias="preferAI")
    result_handle: str | None = Field(default=None, alias="resultHandle")
    duration: float | None = Field(default=None, description="Video length in seconds, if known")


class TranscriptResponse(BaseModel):
    """Payload of ``POST /transcript``; serialized by alias with ``None`` fields dropped."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    language: str | None = None
    requested_language: str | None = Field(default=None, alias="requestedLanguage")
    segments: list[RawSegment] = Field(default_factory=list)
    source: TranscriptSource = TranscriptSource.NONE
    available_languages: AvailableLanguages = Field(
        default_factory=AvailableLanguages, alias="availableLanguages"
    )
    status: str | None = None
    result_handle: str | None = Field(default=None, alias="resultHandle")
    error_code: ErrorCode | None = Field(default=None, alias="errorCode")
    ai_available: bool | None = Field(default=None, alias="aiAvailable")
    retry_after: int | None = Field(default=None, alias="retryAfter")
    warning: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CachedTranscript(BaseModel):
    """Entry held by the client-side cache tiers."""

    language: str
    source: StoredSource
    cues: list[SubtitleCue]
