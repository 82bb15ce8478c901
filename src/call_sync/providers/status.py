"""
HTTP StatusProvider for the call-status API (``GET {base}/v1/calls/{id}``).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from ..errors import StatusProviderError
from ..models import CallStatus
from ..utils import format_transcript, to_float


def parse_call_payload(data: Dict[str, Any]) -> CallStatus:
    """Map a call-status API payload onto CallStatus.

    ``call_length`` is reported in minutes. The formatted per-speaker
    transcript wins over ``concatenated_transcript`` when both are present.
    """
    if "call_length_seconds" in data:
        duration = to_float(data.get("call_length_seconds"))
    else:
        duration = round(to_float(data.get("call_length")) * 60, 3)

    transcript = format_transcript(data.get("transcripts")) or data.get("concatenated_transcript")
    return CallStatus(
        status=data.get("status") or "completed",
        duration_seconds=duration,
        transcript=transcript or None,
        recording_url=data.get("recording_url") or None,
        error_message=data.get("error_message") or None,
    )


class HttpStatusProvider:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    async def __aenter__(self) -> "HttpStatusProvider":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_status(self, external_id: str) -> CallStatus:
        url = f"{self.base_url}/v1/calls/{external_id}"
        try:
            resp = await self._client.get(url, headers=self._headers)
        except httpx.HTTPError as exc:
            raise StatusProviderError(f"status request for {external_id} failed: {exc}") from exc

        if resp.status_code != 200:
            raise StatusProviderError(
                f"status request for {external_id} returned {resp.status_code}: {resp.text[:200]}"
            )
        try:
            result = parse_call_payload(resp.json())
        except (ValueError, ValidationError) as exc:
            raise StatusProviderError(f"malformed status payload for {external_id}: {exc}") from exc

        logger.debug(f"Call {external_id}: status={result.status} ({result.duration_seconds}s)")
        return result
