"""
Validator — judges whether decoded text carries an acceptable final URL.
"""
from __future__ import annotations
import re
from typing import Iterable, Mapping, Optional
from urllib.parse import urlparse

from .base import Confidence

# printable ASCII minus whitespace, quotes and angle brackets
URL_RE = re.compile(r"""https?://[!#-&(-;=?-~]+""")
PLACEHOLDER_RE = re.compile(r"\{[A-Za-z0-9_]+\}")

MANIFEST_SUFFIXES = (".m3u8", ".mpd", ".mp4")


class Validator:
    def __init__(
        self,
        patterns: Iterable[str] = (),
        *,
        suffixes: Iterable[str] = MANIFEST_SUFFIXES,
        placeholders: Optional[Mapping[str, str]] = None,
    ):
        self.patterns = [re.compile(p) for p in patterns]
        self.suffixes = tuple(s.lower() for s in suffixes)
        self.placeholders = dict(placeholders or {})

    def substitute(self, text: str) -> str:
        """Replace domain templates such as {v1} with their configured value."""
        for name, value in self.placeholders.items():
            text = text.replace(name, value)
        return text

    def grade(self, url: str) -> Optional[Confidence]:
        if PLACEHOLDER_RE.search(url):
            return None
        parsed = urlparse(url)
        if not parsed.netloc:
            return None
        if any(p.search(url) for p in self.patterns):
            return Confidence.EXACT
        if parsed.path.lower().endswith(self.suffixes):
            return Confidence.EXTENSION
        return Confidence.SCHEME

    def best(self, text: str) -> Optional[tuple[str, Confidence]]:
        """Strongest URL in `text`; the earliest one wins a tie."""
        winner = None
        for m in URL_RE.finditer(self.substitute(text)):
            url = m.group(0)
            conf = self.grade(url)
            if conf is None:
                continue
            if winner is None or conf > winner[1]:
                winner = (url, conf)
        return winner

    def accept(self, text: str) -> Optional[Confidence]:
        found = self.best(text)
        return found[1] if found else None
