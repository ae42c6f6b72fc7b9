import asyncio

import pytest

from streamhop.base import HopResult, ResolutionContext
from streamhop.settings import Settings
from streamhop.sites import PayloadRule, RuleSet, SiteConfig


class FakeWeb:
    """Injected fetch: url → canned reply (or a list of replies served in turn).

    A reply is a body string, a status int, a HopResult, an exception to raise,
    or an async callable returning one of those.
    """

    def __init__(self, pages=None, *, delays=None):
        self.pages = dict(pages or {})
        self.delays = dict(delays or {})
        self.calls = []
        self.inflight = 0
        self.max_inflight = 0

    def count(self, url):
        return sum(1 for u, _ in self.calls if u == url)

    def headers_for(self, url):
        return [h for u, h in self.calls if u == url]

    async def __call__(self, url, headers, timeout):
        self.calls.append((url, dict(headers)))
        self.inflight += 1
        self.max_inflight = max(self.max_inflight, self.inflight)
        try:
            if url in self.delays:
                await asyncio.sleep(self.delays[url])
            reply = self.pages.get(url, 404)
            if isinstance(reply, list):
                reply = reply.pop(0) if len(reply) > 1 else reply[0]
            if callable(reply) and not isinstance(reply, type):
                reply = await reply()
            if isinstance(reply, BaseException):
                raise reply
            if isinstance(reply, HopResult):
                return reply
            if isinstance(reply, int):
                return HopResult(url=url, status=reply, body="")
            return HopResult(url=url, status=200, body=reply)
        finally:
            self.inflight -= 1


class SleepLog:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_site(site_id="test", *, hops=(), payload=None, rule_sets=None, **kwargs):
    if rule_sets is None:
        payload = payload or PayloadRule(kind="variable", name="PAGE_DATA")
        rule_sets = (RuleSet(hops=tuple(hops), payload=payload),)
    return SiteConfig(id=site_id, rule_sets=tuple(rule_sets), **kwargs)


def make_ctx(site=None, **kwargs):
    site = site or make_site()
    return ResolutionContext(start_url="https://embed.test/e/1", site=site,
                             validator=site.validator(), **kwargs)


@pytest.fixture
def web():
    return FakeWeb()


@pytest.fixture
def sleeps():
    return SleepLog()


@pytest.fixture
def settings():
    return Settings(timeout=2.0, retries=2, backoff=0.01, deadline=None, min_interval=0.0)
