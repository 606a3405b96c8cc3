import logging

from services.transcripts.drivers.base import PollResult, ProviderError, TranscriptionProvider
from shared.config import config
from shared.enums import PROVIDER_TIMEOUT, JobStatus
from shared.http_client import AsyncHTTPClient, HTTPResponseError
from shared.models import RawSegment

logger = logging.getLogger(__name__)


class GladiaTranscriptionProvider(TranscriptionProvider):
    """Gladia pre-recorded transcription; the handle is the job's ``result_url``."""

    name = "gladia"

    def __init__(self, api_key: str | None = None, api_url: str | None = None, timeout: float | None = None) -> None:
        self.api_key = api_key or config.get("gladia_api_key")
        self.api_url = api_url or config.get("gladia_api_url")
        self.timeout = timeout or config.get_pipeline_value("providers.timeout", PROVIDER_TIMEOUT)

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ProviderError("Gladia API key is not configured")
        return {"x-gladia-key": self.api_key, "Content-Type": "application/json"}

    async def dispatch(self, video_id: str, language: str) -> str:
        payload = {"audio_url": f"https://www.youtube.com/watch?v={video_id}"}
        try:
            async with AsyncHTTPClient(timeout=self.timeout) as client:
                data = await client.post(self.api_url, data=payload, headers=self._headers())
        except HTTPResponseError as e:
            raise ProviderError(f"Gladia submit failed: HTTP {e.status}") from e

        result_url = data.get("result_url")
        if not result_url:
            raise ProviderError("Gladia did not return a result_url")
        logger.info(f"Dispatched Gladia job for {video_id} ({language})")
        return result_url

    async def poll(self, result_handle: str) -> PollResult:
        try:
            async with AsyncHTTPClient(timeout=self.timeout) as client:
                data = await client.get(result_handle, headers=self._headers())
        except HTTPResponseError as e:
            if e.status >= 500:
                # Upstream hiccup; the job itself may still be running
                logger.warning(f"Gladia poll returned HTTP {e.status}, treating as processing")
                return PollResult(status=JobStatus.PROCESSING)
            raise ProviderError(f"Gladia poll failed: HTTP {e.status}") from e

        status = data.get("status")
        if status == "done":
            transcription = (data.get("result") or {}).get("transcription") or {}
            segments = [
                RawSegment(
                    text=str(utterance.get("text") or "").strip(),
                    start=float(utterance.get("start") or 0),
                    duration=float(utterance.get("end") or 0) - float(utterance.get("start") or 0),
                )
                for utterance in transcription.get("utterances") or []
            ]
            languages = transcription.get("languages") or []
            return PollResult(
                status=JobStatus.DONE,
                segments=[segment for segment in segments if segment.text],
                language=languages[0] if languages else None,
            )
        if status == "error":
            return PollResult(status=JobStatus.ERROR, error=data.get("error_message") or "transcription failed")
        return PollResult(status=JobStatus.PROCESSING)
