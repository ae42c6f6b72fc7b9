"""
PayloadLocator — pulls the obfuscated blob (plus ancillary key material) out of
one hop's response.

Three shapes:
  variable        literal assigned to a named script identifier
  hidden_element  text of a non-visible element whose id changes per response,
                  found structurally (hidden style + content longer than min_length)
  url_segment     a segment of the hop URL / redirect Location / a link in the body
"""
from __future__ import annotations
import logging
import re
from typing import Mapping, Optional

from . import unpacker
from .base import PayloadDescriptor
from .errors import PayloadNotFound

log = logging.getLogger("streamhop.locator")

HIDDEN_ELEMENT_RE = re.compile(
    r"<(?P<tag>div|span|p|pre|textarea|code)\b(?P<attrs>[^>]*)>(?P<text>[^<]*)</(?P=tag)>",
    re.IGNORECASE,
)
HIDDEN_STYLE_RE = re.compile(
    r"""style\s*=\s*["'][^"']*(?:display\s*:\s*none|visibility\s*:\s*hidden)""",
    re.IGNORECASE,
)
HIDDEN_ATTR_RE = re.compile(r"""(?:^|\s)hidden(?:\s|=|$)""", re.IGNORECASE)
ID_ATTR_RE = re.compile(r"""(?<![\w-])(?:id|name)\s*=\s*["']([^"']+)["']""", re.IGNORECASE)


def _variable_re(name: str) -> re.Pattern:
    return re.compile(
        r"""(?:\b(?:var|let|const)\s+|\bwindow\.|\bwindow\[["']|(?<![\w.$]))"""
        + re.escape(name)
        + r"""(?:["']\])?\s*=\s*(["'`])(?P<value>.*?)(?<!\\)\1""",
        re.DOTALL,
    )


def _is_hidden(attrs: str) -> bool:
    return bool(HIDDEN_STYLE_RE.search(attrs) or HIDDEN_ATTR_RE.search(attrs))


class PayloadLocator:
    def locate(
        self,
        body: str,
        rule,
        *,
        url: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        hop_index: int = 0,
    ) -> PayloadDescriptor:
        if rule.kind == "variable":
            raw, extra = self._variable(body, rule), {}
        elif rule.kind == "hidden_element":
            raw, extra = self._hidden_element(body, rule)
        elif rule.kind == "url_segment":
            raw, extra = self._url_segment(body, rule, url, headers or {}), {}
        else:
            raise ValueError(f"unknown payload shape: {rule.kind}")

        if not raw:
            raise PayloadNotFound(f"{rule.kind} payload not found")

        ancillary = dict(extra)
        for name, pattern in rule.ancillary.items():
            m = re.search(pattern, body)
            if m:
                ancillary[name] = m.group(1) if m.groups() else m.group(0)

        log.debug(f"{rule.kind} payload at hop {hop_index}: {len(raw)} chars, ancillary {sorted(ancillary)}")
        return PayloadDescriptor(raw=raw, ancillary=ancillary, source_hop_index=hop_index)

    # ── shapes ──────────────────

    def _variable(self, body: str, rule) -> Optional[str]:
        pattern = _variable_re(rule.name)
        m = pattern.search(body)
        if not m and unpacker.detect(body):
            m = pattern.search(unpacker.unpack(body))
        return m.group("value") if m else None

    def _hidden_element(self, body: str, rule) -> tuple[Optional[str], dict]:
        for m in HIDDEN_ELEMENT_RE.finditer(body):
            text = m.group("text").strip()
            if len(text) <= rule.min_length or not _is_hidden(m.group("attrs")):
                continue
            ident = ID_ATTR_RE.search(m.group("attrs"))
            return text, ({"element_id": ident.group(1)} if ident else {})
        return None, {}

    def _url_segment(self, body: str, rule, url: Optional[str], headers: Mapping[str, str]) -> Optional[str]:
        location = next((v for k, v in headers.items() if k.lower() == "location"), None)
        for haystack in (url, location, body):
            if not haystack:
                continue
            m = re.search(rule.pattern, haystack)
            if m:
                return m.group(1)
        return None
