"""Factories for httpx-backed API sessions."""
from __future__ import annotations

import contextlib
from pathlib import Path
from typing import AsyncIterator, Dict, Mapping, Optional
from urllib.parse import urlparse

import httpx


class HttpSession:
    """Thin wrapper over `httpx.AsyncClient` that also serves `file://` URLs."""

    def __init__(self, client: Optional[httpx.AsyncClient]) -> None:
        self._client = client

    async def get(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """GET a URL returning an HTTPX response object."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            location = (parsed.netloc + parsed.path) or parsed.path
            target = Path(location)
            if not target.is_absolute():
                target = Path.cwd() / target
            try:
                body = target.read_bytes()
            except OSError as exc:
                raise httpx.TransportError(f"cannot read {target}: {exc}") from exc
            return httpx.Response(200, content=body, request=httpx.Request("GET", url))
        if self._client is None:
            raise RuntimeError("No HTTP client available")
        kwargs: Dict[str, object] = {"params": params, "headers": headers}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return await self._client.get(url, **kwargs)  # type: ignore[arg-type]


@contextlib.asynccontextmanager
async def create_http_session(
    *,
    user_agent: str,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[HttpSession]:
    """Yield a configured `HttpSession` for the duration of the context."""
    headers = {"User-Agent": user_agent, "Accept": "application/json"}
    limits = httpx.Limits(max_connections=1, max_keepalive_connections=1)
    async with httpx.AsyncClient(headers=headers, limits=limits, timeout=timeout, transport=transport) as client:
        yield HttpSession(client)
