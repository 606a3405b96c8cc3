"""Client-side transcript acquisition: cache tiers, API client and state machine"""

from .api_client import TranscriptAPIClient, error_state_from_exception
from .local_store import LocalTranscriptStore
from .state import (
    AcquisitionState,
    CompleteState,
    ErrorState,
    FallbackInfo,
    GeneratingAIState,
    IdleState,
    LoadingState,
)
from .state_machine import TranscriptAcquisition
from .tiered_cache import TieredTranscriptCache

__all__ = [
    "AcquisitionState",
    "CompleteState",
    "ErrorState",
    "FallbackInfo",
    "GeneratingAIState",
    "IdleState",
    "LoadingState",
    "LocalTranscriptStore",
    "TieredTranscriptCache",
    "TranscriptAPIClient",
    "TranscriptAcquisition",
    "error_state_from_exception",
]
