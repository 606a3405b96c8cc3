"""
Enums and constants used across the application.
"""

from enum import Enum


class TranscriptSource(str, Enum):
    """Where a transcript returned to the UI came from."""

    CACHE = "cache"
    NATIVE = "native"
    AI = "ai"
    NONE = "none"


class StoredSource(str, Enum):
    """Provenance tag kept alongside persisted cues."""

    NATIVE = "native"
    AI = "ai"


class TranscriptStatus(str, Enum):
    """Lifecycle of a row in the permanent transcript store."""

    PENDING = "pending"
    COMPLETE = "complete"


class JobStatus(str, Enum):
    """Status reported by an AI transcription provider when polled."""

    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Error taxonomy shared by the server and the client state machine."""

    RATE_LIMITED = "RATE_LIMITED"
    NO_SUBTITLES = "NO_SUBTITLES"
    SERVER_ERROR = "SERVER_ERROR"
    REQUEST_ERROR = "REQUEST_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    VIDEO_TOO_LONG = "VIDEO_TOO_LONG"


# Normalizer defaults (seconds)
MIN_CUE_GAP = 0.5
MIN_CUE_DURATION = 0.5
MAX_CUE_DURATION = 10.0
MERGE_GAP_TOLERANCE = 0.1
SIMILARITY_THRESHOLD = 0.8

# Server-side defaults (seconds)
STALE_PENDING_AGE = 3600
NEGATIVE_CACHE_TTL = 3600
NEGATIVE_CACHE_PERSIST_TTL = 7 * 24 * 3600
MAX_AI_VIDEO_DURATION = 3600
PROVIDER_TIMEOUT = 10

# Client defaults (seconds)
POLL_INTERVAL = 4.0
REQUEST_TIMEOUT = 10
