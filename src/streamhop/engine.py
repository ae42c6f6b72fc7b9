"""
Resolution engine — walks hops, locates the payload, decodes it, validates it.

Usage:
    async with ResolutionEngine() as engine:
        result = await engine.resolve(embed_url, sites["rapidshare"])
        print(result.to_dict())
"""
from __future__ import annotations
import asyncio
import logging
import time
from typing import Iterable, Optional, Union

from .base import DecodedCandidate, HopResult, MediaRef, Resolution, ResolutionContext
from .errors import HopFailure, PayloadNotFound, StreamhopError
from .fetcher import FetchFn, Fetcher
from .locator import PayloadLocator
from .ratelimit import RateLimiter
from .registry import CodecRegistry, available_codecs
from .settings import Settings
from .sites import PayloadRule, SiteConfig
from .walker import HopWalker, RetryPolicy

log = logging.getLogger("streamhop.engine")

Job = tuple[Union[str, MediaRef], SiteConfig]


class ResolutionEngine:
    def __init__(self, fetch: Optional[FetchFn] = None, *, settings: Optional[Settings] = None,
                 sleep=None):
        self.settings = settings or Settings.from_env()
        self._own_fetcher = fetch is None
        self.fetch = fetch or Fetcher(user_agent=self.settings.user_agent, proxy=self.settings.proxy)
        self.walker = HopWalker(
            self.fetch,
            timeout=self.settings.timeout,
            retry=RetryPolicy(self.settings.retries, self.settings.backoff, sleep or asyncio.sleep),
            probe_fanout=self.settings.probe_fanout,
            user_agent=self.settings.user_agent,
        )
        self.locator = PayloadLocator()

    async def close(self):
        if self._own_fetcher:
            await self.fetch.close()

    async def __aenter__(self) -> "ResolutionEngine":
        return self

    async def __aexit__(self, *exc):
        await self.close()

    def list_codecs(self):
        return available_codecs()

    def new_context(self, start_url: str, site: SiteConfig,
                    deadline: Optional[float] = None) -> ResolutionContext:
        budget = deadline if deadline is not None else self.settings.deadline
        return ResolutionContext(
            start_url=start_url,
            site=site,
            validator=site.validator(),
            rate_limiter=RateLimiter(self.settings.min_interval),
            deadline=time.monotonic() + budget if budget else None,
        )

    # ── payload stage ──────────────────

    def decode_payload(self, hop: HopResult, hop_index: int, rule: PayloadRule,
                       ctx: ResolutionContext) -> DecodedCandidate:
        try:
            payload = self.locator.locate(hop.body, rule, url=hop.url, headers=hop.headers,
                                          hop_index=hop_index)
        except PayloadNotFound as e:
            ctx.record("locate", hop.url, "failed", str(e), hop_index=hop_index)
            raise
        ctx.record("locate", hop.url, "ok", f"{rule.kind}, {len(payload.raw)} chars", hop_index=hop_index)
        return CodecRegistry.for_site(ctx.site).decode(payload, ctx)

    def _payload_url(self, hop: HopResult, hop_index: int, rule: PayloadRule,
                     ctx: ResolutionContext) -> str:
        candidate = self.decode_payload(hop, hop_index, rule, ctx)
        url, _ = ctx.validator.best(candidate.text)
        return url

    # ── orchestration ──────────────────

    async def resolve(self, start_url: str, site: SiteConfig, *,
                      deadline: Optional[float] = None) -> Resolution:
        """Try each rule set in order until one yields a validated URL."""
        if not site.rule_sets:
            raise ValueError(f"site {site.id} has no rule sets")
        ctx = self.new_context(start_url, site, deadline)
        last_error: Optional[StreamhopError] = None
        hops_traversed = 0

        for rule_set in site.rule_sets:
            ctx.record("rule_set", rule_set.name, "started")
            mark = len(ctx.diagnostics)
            log.info(f"[{site.id}] resolving {start_url} via {rule_set.name}")
            try:
                hops = await self.walker.walk(start_url, rule_set.hops, self.settings.max_hops,
                                              ctx, self._payload_url)
                candidate = self.decode_payload(hops[-1], len(hops) - 1, rule_set.payload, ctx)
            except StreamhopError as e:
                last_error = e
                hops_traversed = self._hops_done(ctx, mark, e)
                ctx.record("rule_set", rule_set.name, "failed", f"{e.kind}: {e}")
                log.warning(f"[{site.id}] {rule_set.name} failed at {e.stage}: {e.kind}: {e}")
                continue

            url, confidence = ctx.validator.best(candidate.text)
            ctx.record("rule_set", rule_set.name, "ok",
                       f"{candidate.strategy_id} ({confidence.name})")
            log.info(f"[{site.id}] resolved via {candidate.strategy_id}: {url[:120]}")
            return Resolution(
                success=True,
                url=url,
                strategy_used=candidate.strategy_id,
                hops_traversed=len(hops),
                diagnostics=ctx.diagnostics,
            )

        return Resolution(
            success=False,
            hops_traversed=hops_traversed,
            error=last_error.kind,
            stage=last_error.stage,
            detail=str(last_error),
            diagnostics=ctx.diagnostics,
        )

    @staticmethod
    def _hops_done(ctx: ResolutionContext, mark: int, error: StreamhopError) -> int:
        if isinstance(error, HopFailure) and error.hop_index is not None:
            return error.hop_index
        return len({d.hop_index for d in ctx.diagnostics[mark:]
                    if d.stage in ("hop", "probe") and d.outcome in ("ok", "matched")})

    async def resolve_media(self, media: MediaRef, site: SiteConfig, **kwargs) -> Resolution:
        return await self.resolve(site.start_url(media), site, **kwargs)

    async def resolve_many(self, jobs: Iterable[Job], *, concurrency: int = 4) -> list[Resolution]:
        """Resolve independent jobs concurrently; results keep the input order."""
        gate = asyncio.Semaphore(max(1, concurrency))

        async def _one(target, site):
            async with gate:
                if isinstance(target, MediaRef):
                    return await self.resolve_media(target, site)
                return await self.resolve(target, site)

        jobs = list(jobs)
        results = await asyncio.gather(*(_one(t, s) for t, s in jobs), return_exceptions=True)

        # a misconfigured job fails on its own, siblings still finish
        out = []
        for (target, site), res in zip(jobs, results):
            if isinstance(res, asyncio.CancelledError):
                raise res
            if isinstance(res, BaseException):
                log.warning(f"[{site.id}] job {target} failed: {type(res).__name__}: {res}")
                res = Resolution(success=False, error=type(res).__name__, stage="config", detail=str(res))
            out.append(res)
        return out
