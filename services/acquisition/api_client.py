"""Client for ``POST /transcript`` and mapping of its failures onto error states."""

import asyncio
from typing import Any

import aiohttp

from services.acquisition.state import ErrorState
from shared.config import config
from shared.enums import REQUEST_TIMEOUT, ErrorCode
from shared.http_client import AsyncHTTPClient, HTTPResponseError
from shared.models import TranscriptRequest, TranscriptResponse

TRANSPORT_ERRORS = (HTTPResponseError, aiohttp.ClientError, asyncio.TimeoutError)


class TranscriptAPIClient:
    def __init__(self, url: str | None = None, timeout: float | None = None) -> None:
        self.url = url or config.get("transcript_api_url")
        self.timeout = timeout or config.get_pipeline_value("acquisition.request_timeout", REQUEST_TIMEOUT)

    async def request(
        self,
        video_id: str,
        lang: str,
        prefer_ai: bool = False,
        result_handle: str | None = None,
    ) -> TranscriptResponse:
        body = TranscriptRequest(video_id=video_id, lang=lang, prefer_ai=prefer_ai, result_handle=result_handle)
        async with AsyncHTTPClient(timeout=self.timeout) as client:
            data = await client.post(self.url, data=body.model_dump(by_alias=True, exclude_none=True))
        return TranscriptResponse.model_validate(data)


def _header(headers: dict[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def _as_int(value: Any) -> int | None:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def error_state_from_exception(exc: BaseException) -> ErrorState:
    """Translate a failed request into the error taxonomy shown to the UI."""
    if not isinstance(exc, HTTPResponseError):
        return ErrorState(code=ErrorCode.NETWORK_ERROR, message=str(exc) or type(exc).__name__)

    body = exc.payload if isinstance(exc.payload, dict) else {}
    message = body.get("warning") or body.get("error")
    if exc.status == 429:
        retry_after = _as_int(body.get("retryAfter")) or _as_int(_header(exc.headers, "Retry-After"))
        # No paid AI action may be offered while throttled
        return ErrorState(code=ErrorCode.RATE_LIMITED, retry_after=retry_after, ai_available=False, message=message)
    ai_available = bool(body.get("aiAvailable", False))
    if exc.status >= 500:
        return ErrorState(code=ErrorCode.SERVER_ERROR, ai_available=ai_available, message=message)
    try:
        code = ErrorCode(body.get("errorCode"))
    except ValueError:
        code = ErrorCode.REQUEST_ERROR
    return ErrorState(code=code, ai_available=ai_available, message=message)
