"""Transcript service.

This service handles:
- Segment normalization of raw captions into display-ready cues
- Native caption lookup with a negative cache
- Resumable AI transcription jobs and per-identity rate limits
"""

__version__ = "1.0.0"
