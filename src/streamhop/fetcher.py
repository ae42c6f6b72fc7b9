"""
HTTP collaborator. Wraps aiohttp with common defaults, headers and optional
proxy support, and returns a frozen HopResult for every response, whatever its
status. Status classification and retries belong to the walker.

Any coroutine with the signature of `Fetcher.__call__` can be injected instead.
"""
from __future__ import annotations
import aiohttp
from typing import Awaitable, Callable, Mapping, Optional

from .base import HopResult
from .settings import DEFAULT_UA

FetchFn = Callable[[str, Mapping[str, str], float], Awaitable[HopResult]]


class Fetcher:
    def __init__(self, *, user_agent: str = DEFAULT_UA, proxy: str | None = None,
                 follow_redirects: bool = True):
        self.user_agent = user_agent
        self.proxy = proxy
        self.follow_redirects = follow_redirects
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent},
                connector=aiohttp.TCPConnector(ssl=False),
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def __call__(self, url: str, headers: Mapping[str, str], timeout: float) -> HopResult:
        """GET `url`. Raises asyncio.TimeoutError / aiohttp.ClientError on transport failure."""
        session = await self._get_session()
        async with session.get(
            url,
            headers=dict(headers),
            allow_redirects=self.follow_redirects,
            proxy=self.proxy,
            timeout=aiohttp.ClientTimeout(total=timeout, connect=min(timeout, 4)),
        ) as resp:
            body = await resp.text(errors="replace")
            return HopResult(
                url=str(resp.url),
                status=resp.status,
                body=body,
                headers={k: v for k, v in resp.headers.items()},
            )
