"""
Vault Transport — JSON request/response layer over aiohttp.

Maps connection failures to ``EngineUnavailable``, deadlines to
``EngineTimeout`` and non-2xx answers to ``EngineResponseError``.
"""
import asyncio
import logging
from typing import Any, Optional

import aiohttp
import orjson

from ..exceptions import EngineResponseError, EngineTimeout, EngineUnavailable

logger = logging.getLogger("navigator.pii")

API_PREFIX = "/v1"


class VaultTransport:
    """Thin HTTP layer bound to one engine address.

    The aiohttp session is created lazily inside the running loop and can be
    shared by every client built on the same transport.
    """

    def __init__(
        self,
        address: str,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._address = address.rstrip("/")
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    @property
    def address(self) -> str:
        return self._address

    def url(self, path: str) -> str:
        return f"{self._address}{API_PREFIX}/{path.lstrip('/')}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> tuple[int, dict[str, Any]]:
        """Issue one request and return ``(status, parsed_body)``.

        Does not raise on HTTP status; see ``call`` for that.

        Raises:
            EngineTimeout: If the request exceeds ``timeout`` seconds.
            EngineUnavailable: On connection errors or an unparseable body.
        """
        session = self._get_session()
        deadline = aiohttp.ClientTimeout(total=timeout or self._timeout)
        data = orjson.dumps(body) if body is not None else None
        try:
            async with session.request(
                method,
                self.url(path),
                data=data,
                headers=headers,
                timeout=deadline,
            ) as response:
                raw = await response.read()
                status = response.status
        except asyncio.TimeoutError as err:
            raise EngineTimeout(
                f"Vault request {method} {path} timed out"
            ) from err
        except aiohttp.ClientError as err:
            raise EngineUnavailable(
                f"Vault unreachable at {self._address}: {err}"
            ) from err
        try:
            parsed = orjson.loads(raw) if raw else {}
        except orjson.JSONDecodeError as err:
            raise EngineUnavailable(
                f"Failed to parse Vault response (status {status})"
            ) from err
        if not isinstance(parsed, dict):
            raise EngineUnavailable(
                f"Unexpected Vault response shape (status {status})"
            )
        return status, parsed

    async def call(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """Issue one request, raising ``EngineResponseError`` on status >= 400."""
        status, parsed = await self.request(
            method, path, body=body, headers=headers, timeout=timeout,
        )
        if status >= 400:
            errors = parsed.get("errors") or []
            raise EngineResponseError(
                status, [str(e) for e in errors], body=parsed,
            )
        return parsed
