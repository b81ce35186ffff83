"""
HTTP client for the device-facing backend API.

Every call converts failures into the terminal's error taxonomy:

- transport errors, timeouts, 5xx          -> TransientError
- 401 "invalid device token"               -> InvalidCredentialError
- any other 4xx (bad code, wrong PIN, ...) -> InvalidInputError
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable, Optional

import httpx

from .errors import InvalidCredentialError, InvalidInputError, TransientError

INVALID_DEVICE_TOKEN = "invalid device token"


def _detail(response: httpx.Response) -> str:
    try:
        parsed = response.json()
    except ValueError:
        return (response.text or "")[:300]
    if isinstance(parsed, dict):
        return str(parsed.get("detail") or parsed.get("error") or parsed)
    return str(parsed)


def raise_for_status(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    detail = _detail(response)
    if response.status_code >= 500:
        raise TransientError(f"HTTP {response.status_code}: {detail}")
    if response.status_code == 401 and detail == INVALID_DEVICE_TOKEN:
        raise InvalidCredentialError(detail)
    raise InvalidInputError(detail or f"HTTP {response.status_code}")


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, dict]]:
    """Parse a text/event-stream into (event, data) pairs. Comment lines are keep-alives."""
    event = "message"
    data_lines: list[str] = []
    async for line in lines:
        if line == "":
            if data_lines:
                try:
                    data = json.loads("\n".join(data_lines))
                except ValueError:
                    data = None
                if isinstance(data, dict):
                    yield event, data
            event = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)


class BackendClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 10.0,
        stream_read_timeout_s: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.stream_read_timeout_s = stream_read_timeout_s
        self._client = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout_s)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @staticmethod
    def _device_headers(token: str) -> dict[str, str]:
        return {"X-Device-Token": token or ""}

    async def _request(self, method: str, path: str, *, headers=None, payload=None) -> dict[str, Any]:
        try:
            response = await self._client.request(method, self._url(path), headers=headers, json=payload)
        except httpx.HTTPError as ex:
            raise TransientError(f"network error calling {path}: {ex}") from ex
        raise_for_status(response)
        try:
            parsed = response.json()
        except ValueError as ex:
            raise TransientError(f"invalid JSON from {path}") from ex
        return parsed if isinstance(parsed, dict) else {"data": parsed}

    async def exchange_pairing_code(self, code: str, device_name: str) -> dict[str, Any]:
        return await self._request("POST", "/devices/pair", payload={"code": code, "device_name": device_name})

    async def resolve_session(self, token: str) -> dict[str, Any]:
        return await self._request("POST", "/devices/session", headers=self._device_headers(token))

    async def fetch_store_config(self, token: str) -> dict[str, Any]:
        return await self._request("GET", "/devices/store-config", headers=self._device_headers(token))

    async def verify_pin(self, token: str, pin: str, store_id: Optional[str] = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"pin": pin}
        if store_id:
            payload["store_id"] = store_id
        res = await self._request("POST", "/employees/verify-pin", headers=self._device_headers(token), payload=payload)
        employee = res.get("employee")
        if not isinstance(employee, dict) or not employee.get("id"):
            raise InvalidInputError("invalid pin")
        return employee

    async def unbind(self, token: str) -> None:
        await self._request("POST", "/devices/unbind", headers=self._device_headers(token))

    async def stream_events(
        self, token: str, on_open: Optional[Callable[[], None]] = None
    ) -> AsyncIterator[tuple[str, dict]]:
        """
        Open the realtime stream and yield (event, data) until it ends.
        `on_open` fires once the backend has accepted the subscription.
        Raises the same error taxonomy as the request helpers.
        """
        timeout = httpx.Timeout(self._client.timeout.connect, read=self.stream_read_timeout_s)
        try:
            async with self._client.stream(
                "GET",
                self._url("/realtime/stream"),
                headers={**self._device_headers(token), "Accept": "text/event-stream"},
                timeout=timeout,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise_for_status(response)
                if on_open is not None:
                    on_open()
                async for event, data in iter_sse(response.aiter_lines()):
                    yield event, data
        except httpx.HTTPError as ex:
            raise TransientError(f"realtime stream error: {ex}") from ex
