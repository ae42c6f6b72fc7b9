"""
HopWalker — follows the dependent chain embed → intermediate → final.

Hop n+1's URL only exists once hop n's body has been read (and sometimes
decoded), so hops run strictly in sequence. The one parallel point is frame
probing: when a page exposes several iframes, candidates are fetched with
bounded fan-out and the first match in document order wins.
"""
from __future__ import annotations
import asyncio
import html
import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Optional, Sequence
from urllib.parse import urljoin, urlparse

import aiohttp

from .base import HopResult, ResolutionContext
from .errors import (
    DeadlineExceeded, FrameNotFound, HopConnectionError, HopFailure, HopHttpError,
    HopLimitExceeded, HopTimeout, NextHopNotFound,
)
from .fetcher import FetchFn
from .settings import DEFAULT_UA

log = logging.getLogger("streamhop.walker")

IFRAME_RE = re.compile(
    r"""<iframe\b[^>]*?\s(?:data-src|src)\s*=\s*["']([^"']+)["']""",
    re.IGNORECASE,
)

PayloadHook = Callable[[HopResult, int, object, ResolutionContext], str]


def frame_candidates(body: str, base_url: str, pattern: Optional[str] = None) -> list[str]:
    """Candidate frame URLs in document order, de-duplicated."""
    regex = re.compile(pattern) if pattern else IFRAME_RE
    seen = []
    for m in regex.finditer(body):
        raw = html.unescape(m.group(1)).strip()
        if not raw or raw.startswith(("about:", "javascript:", "data:")):
            continue
        url = urljoin(base_url, raw)
        if url not in seen:
            seen.append(url)
    return seen


def referer_for(rule, previous_url: str) -> Optional[str]:
    if rule.referer is None:
        return previous_url
    if rule.referer == "none":
        return None
    if rule.referer == "origin":
        p = urlparse(previous_url)
        return f"{p.scheme}://{p.netloc}/"
    return rule.referer


@dataclass
class RetryPolicy:
    retries: int = 2
    base_delay: float = 0.5
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)


class HopWalker:
    def __init__(
        self,
        fetch: FetchFn,
        *,
        timeout: float = 15.0,
        retry: Optional[RetryPolicy] = None,
        probe_fanout: int = 4,
        user_agent: str = DEFAULT_UA,
    ):
        self.fetch = fetch
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.probe_fanout = max(1, probe_fanout)
        self.user_agent = user_agent

    async def walk(
        self,
        start_url: str,
        rules: Sequence,
        max_hops: int,
        ctx: ResolutionContext,
        resolve_payload: Optional[PayloadHook] = None,
    ) -> list[HopResult]:
        if len(rules) + 1 > max_hops:
            raise HopLimitExceeded(
                f"{len(rules) + 1} hops requested, limit is {max_hops}", hop_index=max_hops)

        hop = await self.fetch_hop(start_url, 0, ctx.site.start_referer, ctx)
        hops = [hop]
        for n, rule in enumerate(rules):
            index = n + 1
            referer = referer_for(rule, hop.url)
            if rule.frame_marker:
                hop = await self.probe_frames(hop, rule, index, referer, ctx)
            else:
                next_url = self._next_url(hop, rule, index, ctx, resolve_payload)
                hop = await self.fetch_hop(next_url, index, referer, ctx, rule.headers)
            hops.append(hop)
        return hops

    def _next_url(self, hop: HopResult, rule, index: int, ctx: ResolutionContext,
                  resolve_payload: Optional[PayloadHook]) -> str:
        if rule.payload is not None:
            if resolve_payload is None:
                raise ValueError("hop rule needs a payload decoder but none was given")
            target = resolve_payload(hop, index - 1, rule.payload, ctx)
        else:
            m = re.search(rule.pattern, hop.body)
            if not m:
                ctx.record("hop", hop.url, "failed", f"next hop pattern not found: {rule.pattern}",
                           hop_index=index)
                raise NextHopNotFound(f"pattern {rule.pattern!r} not found", hop_index=index, url=hop.url)
            target = html.unescape(m.group(1) if m.groups() else m.group(0))
        return urljoin(hop.url, target.strip())

    # ── single fetch with retries ──────────────────

    def _headers(self, referer: Optional[str], extra: Optional[Mapping[str, str]]) -> dict:
        headers = {"User-Agent": self.user_agent}
        if referer:
            headers["Referer"] = referer
        headers.update(extra or {})
        return headers

    async def _fetch_once(self, url: str, headers: Mapping[str, str], index: int,
                          ctx: ResolutionContext) -> HopResult:
        timeout = self.timeout
        remaining = ctx.remaining()
        if remaining is not None:
            if remaining <= 0:
                raise DeadlineExceeded("resolution deadline exhausted", hop_index=index, url=url)
            timeout = min(timeout, remaining)
        if ctx.rate_limiter is not None:
            await ctx.rate_limiter.wait()

        ctx.bump(f"hop:{index}")
        try:
            hop = await asyncio.wait_for(self.fetch(url, headers, timeout), timeout)
        except asyncio.TimeoutError as e:
            raise HopTimeout(f"no response within {timeout:.1f}s", hop_index=index, url=url) from e
        except (aiohttp.ClientError, OSError) as e:
            raise HopConnectionError(str(e) or type(e).__name__, hop_index=index, url=url) from e

        if hop.status >= 400:
            raise HopHttpError(hop.status, hop_index=index, url=url)
        return hop

    async def fetch_hop(self, url: str, index: int, referer: Optional[str], ctx: ResolutionContext,
                        extra_headers: Optional[Mapping[str, str]] = None) -> HopResult:
        headers = self._headers(referer, extra_headers)
        ctx.referers.append(referer)
        attempt = 0
        while True:
            try:
                hop = await self._fetch_once(url, headers, index, ctx)
            except HopFailure as e:
                if not e.retryable or attempt >= self.retry.retries:
                    ctx.record("hop", url, "failed", f"{e.kind}: {e}", hop_index=index, attempt=attempt)
                    raise
                delay = self.retry.delay(attempt)
                remaining = ctx.remaining()
                if remaining is not None and delay >= remaining:
                    ctx.record("hop", url, "failed", f"{e.kind}: {e}; no budget left to retry",
                               hop_index=index, attempt=attempt)
                    raise DeadlineExceeded(
                        f"retry of hop {index} would pass the deadline", hop_index=index, url=url) from e
                ctx.record("hop", url, "retry", f"{e.kind}: {e}; retrying in {delay:.2f}s",
                           hop_index=index, attempt=attempt)
                log.info(f"[{ctx.site.id}] hop {index} {e.kind}, retry {attempt + 1}/{self.retry.retries} in {delay:.2f}s")
                await self.retry.sleep(delay)
                attempt += 1
                continue
            ctx.record("hop", url, "ok", f"HTTP {hop.status}", hop_index=index, attempt=attempt)
            return hop

    # ── frame probing ──────────────────

    async def probe_frames(self, hop: HopResult, rule, index: int, referer: Optional[str],
                           ctx: ResolutionContext) -> HopResult:
        candidates = frame_candidates(hop.body, hop.url, rule.frame_pattern)
        if not candidates:
            ctx.record("probe", hop.url, "failed", "no candidate frames", hop_index=index)
            raise FrameNotFound("no candidate frames", hop_index=index, url=hop.url)

        log.debug(f"[{ctx.site.id}] probing {len(candidates)} frame(s) for {rule.frame_marker!r}")
        ctx.referers.append(referer)
        headers = self._headers(referer, rule.headers)
        gate = asyncio.Semaphore(self.probe_fanout)
        first_match = len(candidates)       # document position of the earliest match so far

        async def _probe(pos: int, url: str) -> Optional[HopResult]:
            nonlocal first_match
            try:
                async with gate:
                    if pos > first_match:
                        ctx.record("probe", url, "cancelled", hop_index=index)
                        return None
                    try:
                        result = await self._fetch_once(url, headers, index, ctx)
                    except DeadlineExceeded:
                        raise
                    except HopFailure as e:
                        ctx.record("probe", url, "failed", f"{e.kind}: {e}", hop_index=index)
                        return None
                    if pos > first_match:
                        # an earlier frame matched while this one was in flight
                        ctx.record("probe", url, "cancelled", hop_index=index)
                        return None
                    matched = rule.frame_marker in result.body
                    ctx.record("probe", url, "matched" if matched else "no_match", hop_index=index)
                    if not matched:
                        return None
                    first_match = min(first_match, pos)
                    return result
            except asyncio.CancelledError:
                ctx.record("probe", url, "cancelled", hop_index=index)
                raise

        tasks = [asyncio.create_task(_probe(pos, u)) for pos, u in enumerate(candidates)]
        try:
            # awaiting in document order makes the first match the winner
            for task in tasks:
                result = await task
                if result is not None:
                    return result
        finally:
            # later siblings still queued or in flight are abandoned
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        ctx.record("probe", hop.url, "failed", f"no frame contains {rule.frame_marker!r}", hop_index=index)
        raise FrameNotFound(f"no frame contains {rule.frame_marker!r}", hop_index=index, url=hop.url)
