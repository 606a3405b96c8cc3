"""Caption and AI transcription provider drivers"""

from .base import CaptionProvider, CaptionResult, PollResult, ProviderError, TranscriptionProvider
from .gladia import GladiaTranscriptionProvider
from .supadata import SupadataCaptionProvider

__all__ = [
    "CaptionProvider",
    "CaptionResult",
    "GladiaTranscriptionProvider",
    "PollResult",
    "ProviderError",
    "SupadataCaptionProvider",
    "TranscriptionProvider",
]
