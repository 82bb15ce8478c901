"""
Unit tests for HttpStatusProvider and payload parsing.
"""

import httpx
import pytest

from call_sync.errors import StatusProviderError
from call_sync.providers import HttpStatusProvider, parse_call_payload

BASE = "https://calls.test"


def make_provider(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpStatusProvider(BASE, "key-1", client=http), http


class TestParseCallPayload:
    def test_call_length_is_minutes(self):
        result = parse_call_payload({"status": "completed", "call_length": 1.5})
        assert result.duration_seconds == 90.0

    def test_seconds_field_wins(self):
        result = parse_call_payload({"call_length": 9, "call_length_seconds": 42})
        assert result.duration_seconds == 42.0

    def test_defaults(self):
        result = parse_call_payload({})
        assert result.status == "completed"
        assert result.duration_seconds == 0.0
        assert result.transcript is None
        assert result.recording_url is None

    def test_formatted_transcript_preferred(self):
        data = {
            "status": "completed",
            "concatenated_transcript": "raw text",
            "transcripts": [
                {"created_at": "2024-05-01T10:00:05Z", "user": "user", "text": "Hi"},
                {"created_at": "2024-05-01T10:00:01Z", "user": "assistant", "text": "Hello"},
            ],
        }
        result = parse_call_payload(data)
        assert result.transcript == "[10:00:01] Assistant: Hello\n[10:00:05] Customer: Hi"

    def test_concatenated_transcript_fallback(self):
        result = parse_call_payload({"concatenated_transcript": "raw text"})
        assert result.transcript == "raw text"


@pytest.mark.asyncio
async def test_get_status_success():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "status": "Completed",
                "call_length": 2,
                "recording_url": "https://rec/1",
                "error_message": None,
            },
        )

    provider, http = make_provider(handler)
    async with http:
        result = await provider.get_status("abc")

    assert seen[0].url == httpx.URL(f"{BASE}/v1/calls/abc")
    assert seen[0].headers["Authorization"] == "Bearer key-1"
    assert result.status == "completed"
    assert result.duration_seconds == 120.0
    assert result.recording_url == "https://rec/1"
    assert result.error_message is None


@pytest.mark.asyncio
async def test_not_found_raises():
    provider, http = make_provider(lambda request: httpx.Response(404, text="not found"))
    async with http:
        with pytest.raises(StatusProviderError, match="404"):
            await provider.get_status("missing")


@pytest.mark.asyncio
async def test_malformed_payload_raises():
    provider, http = make_provider(lambda request: httpx.Response(200, text="<html>"))
    async with http:
        with pytest.raises(StatusProviderError, match="malformed"):
            await provider.get_status("abc")


@pytest.mark.asyncio
async def test_negative_duration_rejected():
    payload = {"status": "completed", "call_length_seconds": -3}
    provider, http = make_provider(lambda request: httpx.Response(200, json=payload))
    async with http:
        with pytest.raises(StatusProviderError):
            await provider.get_status("abc")


@pytest.mark.asyncio
async def test_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider, http = make_provider(handler)
    async with http:
        with pytest.raises(StatusProviderError, match="failed"):
            await provider.get_status("abc")
