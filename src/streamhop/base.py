"""
Core types for the streamhop resolution engine.

Lifecycle:
  - HopResult / PayloadDescriptor / DecodedCandidate: created and consumed
    inside a single resolution, frozen after creation
  - KeystreamModel: built once offline by the keystream toolkit, read-only after
  - ResolutionContext: one per resolve() call, never shared
"""
from __future__ import annotations
import enum
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union


def _frozen_map(data: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(data or {}))


# ──────────────────────────────
#  Hops
# ──────────────────────────────
@dataclass(frozen=True)
class HopResult:
    url: str
    status: int
    body: str
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "headers", _frozen_map(self.headers))


# ──────────────────────────────
#  Payloads
# ──────────────────────────────
@dataclass(frozen=True)
class PayloadDescriptor:
    raw: str
    ancillary: Mapping[str, str] = field(default_factory=dict)   # e.g. element_id, content_id
    source_hop_index: int = 0

    def __post_init__(self):
        object.__setattr__(self, "ancillary", _frozen_map(self.ancillary))


# ──────────────────────────────
#  Codec outcomes
# ──────────────────────────────
class Confidence(enum.IntEnum):
    SCHEME = 1          # a URL scheme marker only
    EXTENSION = 2       # scheme + known manifest suffix
    EXACT = 3           # matches a caller-registered path pattern


@dataclass(frozen=True)
class DecodedCandidate:
    text: str
    confidence: Confidence
    strategy_id: str


@dataclass(frozen=True)
class Skipped:
    strategy_id: str
    reason: str
    partial: Optional[str] = None     # plaintext recovered before the strategy had to stop


@dataclass(frozen=True)
class Rejected:
    strategy_id: str
    reason: str = "output failed validation"


Outcome = Union[DecodedCandidate, Skipped, Rejected]


# ──────────────────────────────
#  Positional-feedback keystream model
# ──────────────────────────────
@dataclass(frozen=True)
class KeystreamModel:
    header_bytes: bytes
    known_prefix_by_site: Mapping[str, bytes] = field(default_factory=dict)

    def __post_init__(self):
        if not self.header_bytes:
            raise ValueError("KeystreamModel: header must not be empty")
        object.__setattr__(self, "header_bytes", bytes(self.header_bytes))
        object.__setattr__(self, "known_prefix_by_site", _frozen_map(self.known_prefix_by_site))

    @property
    def feedback_period(self) -> int:
        return len(self.header_bytes)

    def known_prefix(self, site_id: str) -> Optional[bytes]:
        return self.known_prefix_by_site.get(site_id)


# ──────────────────────────────
#  Diagnostics
# ──────────────────────────────
@dataclass(frozen=True)
class Diagnostic:
    stage: str                        # "hop" | "probe" | "locate" | "codec" | "rule_set"
    subject: str                      # url, strategy id, rule set name...
    outcome: str                      # "ok" | "retry" | "failed" | "skipped" | "rejected" | "accepted" ...
    detail: str = ""
    hop_index: Optional[int] = None
    attempt: Optional[int] = None

    def to_dict(self):
        d = {"stage": self.stage, "subject": self.subject, "outcome": self.outcome}
        if self.detail:
            d["detail"] = self.detail
        if self.hop_index is not None:
            d["hop_index"] = self.hop_index
        if self.attempt is not None:
            d["attempt"] = self.attempt
        return d


@dataclass
class ResolutionContext:
    start_url: str
    site: Any                                   # sites.SiteConfig
    validator: Any                              # validator.Validator
    rate_limiter: Any = None                    # ratelimit.RateLimiter
    deadline: Optional[float] = None            # time.monotonic() value
    referers: list[Optional[str]] = field(default_factory=list)
    attempts: dict[str, int] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def record(self, stage: str, subject: str, outcome: str, detail: str = "", *,
               hop_index: Optional[int] = None, attempt: Optional[int] = None) -> Diagnostic:
        entry = Diagnostic(stage, subject, outcome, detail, hop_index, attempt)
        self.diagnostics.append(entry)
        return entry

    def bump(self, counter: str) -> int:
        self.attempts[counter] = self.attempts.get(counter, 0) + 1
        return self.attempts[counter]

    def remaining(self) -> Optional[float]:
        """Seconds left before the resolution deadline (None = unbounded)."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()


# ──────────────────────────────
#  Media reference (input tuple → start URL via site templates)
# ──────────────────────────────
@dataclass
class MediaRef:
    site_id: str
    numeric_id: int
    content_type: str = "movie"       # "movie" | "tv"
    season: Optional[int] = None
    episode: Optional[int] = None

    def __post_init__(self):
        # Accept both "show" and "tv" → always "tv"
        if self.content_type == "show":
            self.content_type = "tv"


# ──────────────────────────────
#  Final output
# ──────────────────────────────
@dataclass
class Resolution:
    success: bool
    hops_traversed: int = 0
    url: Optional[str] = None
    strategy_used: Optional[str] = None
    error: Optional[str] = None       # error kind, e.g. "HopHttpError"
    stage: Optional[str] = None       # last failing stage
    detail: Optional[str] = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def to_dict(self):
        d = {
            "success": self.success,
            "hops_traversed": self.hops_traversed,
            "diagnostics": [e.to_dict() for e in self.diagnostics],
        }
        if self.success:
            d["url"] = self.url
            d["strategy_used"] = self.strategy_used
        else:
            d["error"] = self.error
            d["stage"] = self.stage
            if self.detail:
                d["detail"] = self.detail
        return d
