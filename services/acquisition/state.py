"""UI-facing acquisition states; exactly one is live per session."""

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from shared.enums import ErrorCode, TranscriptSource
from shared.models import SubtitleCue


class IdleState(BaseModel):
    status: Literal["idle"] = "idle"


class LoadingState(BaseModel):
    status: Literal["loading"] = "loading"


class GeneratingAIState(BaseModel):
    status: Literal["generating_ai"] = "generating_ai"
    result_handle: str | None = None
    is_resuming: bool = False


class CompleteState(BaseModel):
    status: Literal["complete"] = "complete"
    language: str
    source: TranscriptSource
    cues: list[SubtitleCue]


class ErrorState(BaseModel):
    status: Literal["error"] = "error"
    code: ErrorCode
    retry_after: int | None = None
    ai_available: bool = False
    message: str | None = None


AcquisitionState = Annotated[
    IdleState | LoadingState | GeneratingAIState | CompleteState | ErrorState,
    Field(discriminator="status"),
]


class FallbackInfo(BaseModel):
    """Set when the server answered in a different language than requested."""

    requested: str
    returned: str
