"""Tests for HTTP client utility module."""

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from shared.http_client import AsyncHTTPClient, HTTPResponseError


def mock_response(status: int, payload: Any, headers: dict[str, str] | None = None) -> AsyncMock:
    response = AsyncMock()
    response.status = status
    response.headers = headers or {}
    response.json.return_value = payload
    return response


class TestAsyncHTTPClient:
    """Test HTTP client functionality."""

    @pytest.mark.asyncio
    async def test_context_manager(self) -> None:
        """Test HTTP client as async context manager."""
        async with AsyncHTTPClient() as client:
            assert client.session is not None

    @pytest.mark.asyncio
    async def test_get_request_with_params(self) -> None:
        mock_response_data: dict[str, Any] = {"content": [], "lang": "en"}
        headers = {"x-api-key": "secret"}
        params = {"videoId": "dQw4w9WgXcQ", "lang": "en"}

        with patch("aiohttp.ClientSession") as mock_session_class:
            mock_session = AsyncMock()
            mock_session.get.return_value.__aenter__.return_value = mock_response(200, mock_response_data)
            mock_session_class.return_value = mock_session

            async with AsyncHTTPClient() as client:
                result = await client.get("https://api.example.com/transcript", headers=headers, params=params)
                assert result == mock_response_data
                mock_session.get.assert_called_once_with(
                    "https://api.example.com/transcript", headers=headers, params=params
                )

    @pytest.mark.asyncio
    async def test_post_request(self) -> None:
        """Test POST request functionality."""
        mock_response_data: dict[str, Any] = {"id": "job-1", "result_url": "https://api.example.com/jobs/1"}
        post_data: dict[str, Any] = {"audio_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ"}

        with patch("aiohttp.ClientSession") as mock_session_class:
            mock_session = AsyncMock()
            mock_session.post.return_value.__aenter__.return_value = mock_response(201, mock_response_data)
            mock_session_class.return_value = mock_session

            async with AsyncHTTPClient() as client:
                result = await client.post("https://api.example.com/jobs", data=post_data)
                assert result == mock_response_data
                mock_session.post.assert_called_once_with(
                    "https://api.example.com/jobs", json=post_data, headers=None
                )

    @pytest.mark.asyncio
    async def test_not_initialized_error(self) -> None:
        """Test error when client not used as context manager."""
        client = AsyncHTTPClient()
        with pytest.raises(RuntimeError, match="HTTP client not initialized"):
            await client.get("https://api.example.com/test")

    @pytest.mark.asyncio
    async def test_http_error_status_keeps_body_and_headers(self) -> None:
        body = {"success": False, "errorCode": "RATE_LIMITED", "retryAfter": 120}

        with patch("aiohttp.ClientSession") as mock_session_class:
            mock_session = AsyncMock()
            mock_session.post.return_value.__aenter__.return_value = mock_response(
                429, body, headers={"Retry-After": "120"}
            )
            mock_session_class.return_value = mock_session

            async with AsyncHTTPClient() as client:
                with pytest.raises(HTTPResponseError) as exc:
                    await client.post("https://api.example.com/transcript", data={})

        assert exc.value.status == 429
        assert exc.value.payload == body
        assert exc.value.headers["Retry-After"] == "120"

    @pytest.mark.asyncio
    async def test_http_error_with_undecodable_body(self) -> None:
        with patch("aiohttp.ClientSession") as mock_session_class:
            mock_session = AsyncMock()
            response = mock_response(502, None)
            response.json.side_effect = ValueError("not json")
            mock_session.get.return_value.__aenter__.return_value = response
            mock_session_class.return_value = mock_session

            async with AsyncHTTPClient() as client:
                with pytest.raises(HTTPResponseError) as exc:
                    await client.get("https://api.example.com/down")

        assert exc.value.status == 502
        assert exc.value.payload is None
