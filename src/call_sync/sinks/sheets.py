"""
Google Sheets v4 REST SinkClient over httpx.

``sink_key`` is the spreadsheet id and ``section`` the tab title. Calls are
plain ``values`` endpoints authenticated with a bearer access token; token
minting (service account / OAuth) happens outside this client.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import httpx
from loguru import logger

from ..coordinator.types import Row, UpdateTarget
from ..errors import SinkError, SinkThrottledError, THROTTLE_STATUS_CODES, is_throttle_message

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"


class SheetsSinkClient:
    """
    Usage:
        async with SheetsSinkClient(token) as client:
            await client.append_rows(sheet_id, "Call Logs", [["..."]])
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = SHEETS_API,
        read_columns: str = "A:K",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.read_columns = read_columns
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def __aenter__(self) -> "SheetsSinkClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _values_url(self, sink_key: str, a1: str) -> str:
        return f"{self.base_url}/{sink_key}/values/{a1}"

    async def append_rows(self, sink_key: str, section: str, rows: Sequence[Row]) -> None:
        await self._request(
            "POST",
            self._values_url(sink_key, f"{section}!A1") + ":append",
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"majorDimension": "ROWS", "values": [list(r) for r in rows]},
        )

    async def update_range(self, sink_key: str, target: UpdateTarget, rows: Sequence[Row]) -> None:
        a1 = f"{target.section}!{target.range}"
        await self._request(
            "PUT",
            self._values_url(sink_key, a1),
            params={"valueInputOption": "USER_ENTERED"},
            json={"range": a1, "majorDimension": "ROWS", "values": [list(r) for r in rows]},
        )

    async def read_rows(self, sink_key: str, section: str) -> List[Row]:
        data = await self._request(
            "GET", self._values_url(sink_key, f"{section}!{self.read_columns}")
        )
        return [[str(v) for v in row] for row in data.get("values", [])]

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            resp = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise SinkError(f"{method} {url} failed: {type(exc).__name__}: {exc}") from exc

        if resp.status_code >= 400:
            raise _error_for(resp)
        if not resp.content:
            return {}
        return resp.json()


def _error_for(resp: httpx.Response) -> SinkError:
    """Sheets reports quota exhaustion as 429, or 403 with a rateLimitExceeded reason."""
    message = resp.text
    try:
        err = resp.json().get("error", {})
        reasons = " ".join(d.get("reason", "") for d in err.get("errors", []) or [])
        message = f"{err.get('message', '')} {reasons}".strip() or message
    except (ValueError, AttributeError):
        pass

    if resp.status_code in THROTTLE_STATUS_CODES or is_throttle_message(message):
        logger.warning(f"Sheets API throttled ({resp.status_code}): {message}")
        return SinkThrottledError(message, status_code=resp.status_code)
    return SinkError(
        f"Sheets API error {resp.status_code}: {message}", status_code=resp.status_code
    )
