import asyncio
import time

import pytest

from streamhop.base import MediaRef
from streamhop.encoding import b64url_encode
from streamhop.engine import ResolutionEngine
from streamhop.ratelimit import RateLimiter
from streamhop.settings import Settings
from streamhop.sites import HopRule, PayloadRule, RuleSet
from streamhop.strategies.repeating_xor import xor_repeating

from conftest import FakeWeb, make_site

A, B, C = "https://a.test/embed/1", "https://b.test/rcp/xyz", "https://b.test/prorcp/abc"
STREAM = "https://cdn.test/hls/abc/master.m3u8"
KEY = b"k3y"


def _encoded(url, key=KEY):
    return b64url_encode(xor_repeating(url.encode(), key))


def _site(**kwargs):
    kwargs.setdefault("hops", (HopRule(pattern=r'src="(https://b\.test/[^"]+)"'),
                               HopRule(pattern=r'href="(/prorcp/[^"]+)"')))
    kwargs.setdefault("codecs", ("aes_ctr", "repeating_xor"))
    kwargs.setdefault("material", {"xor_keys": [KEY.decode()]})
    return make_site(**kwargs)


def _pages(final=None):
    return {
        A: '<iframe src="https://b.test/rcp/xyz"></iframe>',
        B: '<a href="/prorcp/abc">go</a>',
        C: final if final is not None else f"<script>var PAGE_DATA = '{_encoded(STREAM)}';</script>",
    }


def _resolve(web, site, settings, sleeps=None, **kwargs):
    async def run():
        async with ResolutionEngine(web, settings=settings, sleep=sleeps) as engine:
            return await engine.resolve(A, site, **kwargs)
    return asyncio.run(run())


def test_resolves_three_hop_chain(settings, sleeps):
    """embed → rcp → prorcp, payload decoded on the last hop"""
    web = FakeWeb(_pages())
    result = _resolve(web, _site(), settings, sleeps)

    assert result.success
    assert result.url == STREAM
    assert result.strategy_used == "repeating_xor"
    assert result.hops_traversed == 3
    trail = [(d.stage, d.subject, d.outcome) for d in result.diagnostics if d.stage in ("codec", "locate")]
    assert trail == [("locate", C, "ok"), ("codec", "aes_ctr", "skipped"), ("codec", "repeating_xor", "accepted")]


def test_hop_503_reported_after_retries(settings, sleeps):
    """A 503 on the last hop is retried, earlier hops are not re-fetched"""
    pages = _pages()
    pages[C] = 503
    web = FakeWeb(pages)
    result = _resolve(web, _site(), settings, sleeps)

    assert not result.success
    assert result.error == "HopHttpError"
    assert result.stage == "hop"
    assert result.hops_traversed == 2
    assert web.count(A) == 1 and web.count(B) == 1 and web.count(C) == 3
    assert sleeps.delays == [0.01, 0.02]


def test_decode_exhausted_is_terminal(settings, sleeps):
    """Decode failures are never retried"""
    web = FakeWeb(_pages(final=f"var PAGE_DATA = '{_encoded(STREAM, b'other')}';"))
    result = _resolve(web, _site(), settings, sleeps)

    assert not result.success
    assert result.error == "DecodeExhausted"
    assert result.stage == "codec"
    assert result.hops_traversed == 3
    assert web.count(C) == 1
    assert sleeps.delays == []


def test_missing_payload(settings):
    result = _resolve(FakeWeb(_pages(final="<html></html>")), _site(), settings)
    assert result.error == "PayloadNotFound"
    assert result.stage == "locate"


def test_rule_sets_tried_in_order(settings, sleeps):
    broken = RuleSet(hops=(HopRule(pattern=r'src="(https://nowhere\.test/[^"]+)"'),),
                     payload=PayloadRule(kind="variable", name="PAGE_DATA"), name="broken")
    direct = RuleSet(hops=(), payload=PayloadRule(kind="variable", name="INLINE"), name="direct")
    pages = _pages()
    pages[A] += f"<script>const INLINE = \"{_encoded(STREAM)}\";</script>"
    site = make_site(rule_sets=(broken, direct), codecs=("repeating_xor",),
                     material={"xor_keys": [KEY.decode()]})

    result = _resolve(FakeWeb(pages), site, settings, sleeps)

    assert result.success
    assert result.hops_traversed == 1
    sets = [(d.subject, d.outcome) for d in result.diagnostics if d.stage == "rule_set"]
    assert sets == [("broken", "started"), ("broken", "failed"), ("direct", "started"), ("direct", "ok")]
    # the second rule set's entries all come after the first one gave up
    failed_at = next(i for i, d in enumerate(result.diagnostics) if d.outcome == "failed" and d.stage == "rule_set")
    assert all(d.hop_index in (None, 0) for d in result.diagnostics[failed_at:])


def test_next_hop_from_decoded_payload(settings):
    site = _site(hops=(HopRule(payload=PayloadRule(kind="variable", name="NEXT")),
                       HopRule(pattern=r'href="(/prorcp/[^"]+)"')))
    pages = _pages()
    pages[A] = f"<script>var NEXT = '{_encoded(B)}';</script>"
    web = FakeWeb(pages)

    result = _resolve(web, site, settings)

    assert result.success and result.url == STREAM
    assert web.headers_for(B)[0]["Referer"] == A
    located = [d.hop_index for d in result.diagnostics if d.stage == "locate"]
    assert located == [0, 2]


def test_placeholder_domain_is_substituted(settings):
    templated = "https://{v1}/hls/abc/master.m3u8"
    site = _site(placeholders={"{v1}": "cdn.test"})
    web = FakeWeb(_pages(final=f"var PAGE_DATA = '{_encoded(templated)}';"))
    result = _resolve(web, site, settings)
    assert result.url == STREAM


def test_deadline_caps_the_resolution(settings, sleeps):
    web = FakeWeb(_pages(), delays={A: 1.0})
    started = time.monotonic()
    result = _resolve(web, _site(), settings, sleeps, deadline=0.05)

    assert not result.success
    assert result.error == "DeadlineExceeded"
    assert time.monotonic() - started < 0.9
    assert web.count(A) == 1


def test_cancellation_propagates(settings):
    """Cancelling the caller task cancels the in-flight hop"""
    web = FakeWeb(_pages(), delays={B: 5.0})

    async def run():
        async with ResolutionEngine(web, settings=settings) as engine:
            task = asyncio.create_task(engine.resolve(A, _site()))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

    asyncio.run(run())
    assert web.count(C) == 0


def test_resolve_media_uses_templates(settings):
    site = _site(templates={"movie": "https://a.test/embed/{id}",
                            "tv": "https://a.test/embed/{id}/{season}/{episode}"})
    web = FakeWeb(_pages())

    async def run():
        async with ResolutionEngine(web, settings=settings) as engine:
            return await engine.resolve_media(MediaRef("test", 1), site)

    assert asyncio.run(run()).url == STREAM
    assert site.start_url(MediaRef("test", 7, "show", 1, 2)) == "https://a.test/embed/7/1/2"
    with pytest.raises(ValueError):
        site.start_url(MediaRef("test", 7, "tv"))


def test_resolve_many_keeps_order(settings):
    other = "https://a.test/embed/2"
    pages = _pages()
    pages[other] = "<html>dead end</html>"
    web = FakeWeb(pages)
    site = _site()

    async def run():
        async with ResolutionEngine(web, settings=settings) as engine:
            return await engine.resolve_many([(other, site), (A, site)], concurrency=2)

    first, second = asyncio.run(run())
    assert not first.success and first.error == "NextHopNotFound"
    assert second.success


def test_resolution_to_dict(settings, sleeps):
    ok = _resolve(FakeWeb(_pages()), _site(), settings, sleeps).to_dict()
    assert ok["success"] is True
    assert ok["url"] == STREAM
    assert ok["strategy_used"] == "repeating_xor"
    assert "error" not in ok
    assert {"stage": "codec", "subject": "repeating_xor", "outcome": "accepted"}.items() <= \
        next(d for d in ok["diagnostics"] if d["subject"] == "repeating_xor").items()

    pages = _pages()
    pages[B] = 404
    bad = _resolve(FakeWeb(pages), _site(), settings, sleeps).to_dict()
    assert bad["success"] is False
    assert bad["error"] == "HopHttpError"
    assert bad["stage"] == "hop"
    assert bad["detail"] == "HTTP 404"


def test_list_codecs(settings):
    engine = ResolutionEngine(FakeWeb(), settings=settings)
    ids = {c["id"] for c in engine.list_codecs()}
    assert {"feedback_xor", "rc4", "aes_ctr"} <= ids


def test_rate_limiter_spaces_requests():
    limiter = RateLimiter(0.05)

    async def run():
        started = time.monotonic()
        for _ in range(3):
            await limiter.wait()
        return time.monotonic() - started

    assert asyncio.run(run()) >= 0.09


def test_cancellation_during_retry_backoff():
    """Cancelling while the walker sleeps between retries stops the resolution at once"""
    web = FakeWeb({A: 503})
    slow_backoff = Settings(timeout=2.0, retries=2, backoff=5.0, deadline=None)

    async def run():
        async with ResolutionEngine(web, settings=slow_backoff) as engine:
            task = asyncio.create_task(engine.resolve(A, _site()))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

    started = time.monotonic()
    asyncio.run(run())
    assert time.monotonic() - started < 1.0
    assert web.count(A) == 1


def test_resolve_many_isolates_bad_job(settings):
    """A misconfigured job becomes a failed result; its siblings still resolve"""
    web = FakeWeb(_pages())
    bad = _site(codecs=("no_such_codec",))

    async def run():
        async with ResolutionEngine(web, settings=settings) as engine:
            return await engine.resolve_many([(A, bad), (A, _site())], concurrency=2)

    first, second = asyncio.run(run())
    assert not first.success
    assert first.error == "KeyError"
    assert first.stage == "config"
    assert second.success and second.url == STREAM
