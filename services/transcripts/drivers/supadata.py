import logging

from services.transcripts.drivers.base import CaptionProvider, CaptionResult, ProviderError
from shared.config import config
from shared.enums import PROVIDER_TIMEOUT
from shared.http_client import AsyncHTTPClient, HTTPResponseError
from shared.models import RawSegment

logger = logging.getLogger(__name__)


class SupadataCaptionProvider(CaptionProvider):
    """YouTube native captions through the Supadata transcript API."""

    name = "supadata"

    def __init__(self, api_key: str | None = None, api_url: str | None = None, timeout: float | None = None) -> None:
        self.api_key = api_key or config.get("supadata_api_key")
        self.api_url = api_url or config.get("supadata_api_url")
        self.timeout = timeout or config.get_pipeline_value("providers.timeout", PROVIDER_TIMEOUT)

    async def fetch(self, video_id: str, language: str) -> CaptionResult | None:
        if not self.api_key:
            raise ProviderError("Supadata API key is not configured")

        params = {"videoId": video_id, "lang": language, "text": "false", "mode": "native"}
        try:
            async with AsyncHTTPClient(timeout=self.timeout) as client:
                data = await client.get(self.api_url, headers={"x-api-key": self.api_key}, params=params)
        except HTTPResponseError as e:
            if e.status == 404:
                return None
            raise ProviderError(f"Supadata returned HTTP {e.status}") from e

        content = data.get("content") or []
        if not isinstance(content, list) or not content:
            return None

        # Supadata reports offsets and durations in milliseconds
        segments = [
            RawSegment(
                text=str(item.get("text") or ""),
                start=float(item.get("offset") or 0) / 1000.0,
                duration=float(item.get("duration") or 0) / 1000.0,
            )
            for item in content
            if isinstance(item, dict)
        ]
        returned = data.get("lang") or language
        logger.info(f"Supadata returned {len(segments)} segments for {video_id} ({returned})")
        return CaptionResult(
            segments=segments,
            language=returned,
            available_languages=list(data.get("availableLangs") or []),
        )
