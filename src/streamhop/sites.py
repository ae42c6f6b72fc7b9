"""
Per-site configuration: hop rules, payload rule, codec order, key material,
URL templates. Loaded from a JSON document:

{
  "keystreams": {
    "<family>": {"header": "<hex>", "known_prefixes": {"<site>": "https://..."},
                 "sample": {"site": "<site>", "ciphertext": "...", "plaintext": "https://..."}}
  },
  "sites": {
    "<site>": {
      "templates": {"movie": "https://host/embed/movie/{id}",
                    "tv": "https://host/embed/tv/{id}/{season}/{episode}"},
      "start_referer": "https://host/",
      "rule_sets": [{"name": "main",
                     "hops": [{"pattern": "src=\\"(/rcp/[^\\"]+)\\""}, {"frame_marker": "PAGE_DATA"}],
                     "payload": {"kind": "variable", "name": "PAGE_DATA"}}],
      "codecs": ["feedback_xor", "rc4"],
      "material": {"keystream": "<family>", "rc4_keys": ["..."]},
      "url_patterns": ["/stream/"],
      "placeholders": {"{v1}": "cdn.example"},
      "short_circuit": "EXTENSION"
    }
  }
}
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .base import Confidence, KeystreamModel, MediaRef
from .errors import RecurrenceViolation
from .keystream import model_from_config
from .validator import Validator

log = logging.getLogger("streamhop.sites")


# ──────────────────────────────
#  Rules
# ──────────────────────────────
@dataclass(frozen=True)
class PayloadRule:
    kind: str                                   # "variable" | "hidden_element" | "url_segment"
    name: Optional[str] = None                  # variable name
    pattern: Optional[str] = None               # url_segment regex, group 1 = payload
    min_length: int = 1000                      # hidden_element threshold
    ancillary: Mapping[str, str] = field(default_factory=dict)   # name → regex

    def __post_init__(self):
        if self.kind == "variable" and not self.name:
            raise ValueError("variable payload rule needs a name")
        if self.kind == "url_segment" and not self.pattern:
            raise ValueError("url_segment payload rule needs a pattern")
        if self.kind not in ("variable", "hidden_element", "url_segment"):
            raise ValueError(f"unknown payload shape: {self.kind}")

    @classmethod
    def from_dict(cls, data: Mapping) -> "PayloadRule":
        return cls(
            kind=data["kind"],
            name=data.get("name"),
            pattern=data.get("pattern"),
            min_length=int(data.get("min_length", 1000)),
            ancillary=dict(data.get("ancillary") or {}),
        )


@dataclass(frozen=True)
class HopRule:
    """How to find hop n+1 in hop n's response."""
    pattern: Optional[str] = None               # regex, group 1 = next URL
    payload: Optional[PayloadRule] = None       # next URL is the decoded payload
    frame_marker: Optional[str] = None          # probe candidate frames for this substring
    frame_pattern: Optional[str] = None         # custom candidate extraction regex
    referer: Optional[str] = None               # None = previous hop | "none" | "origin" | literal
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        modes = [m for m in (self.pattern, self.payload, self.frame_marker) if m]
        if len(modes) != 1:
            raise ValueError("hop rule needs exactly one of pattern / payload / frame_marker")

    @classmethod
    def from_dict(cls, data: Mapping) -> "HopRule":
        payload = data.get("payload")
        return cls(
            pattern=data.get("pattern"),
            payload=PayloadRule.from_dict(payload) if payload else None,
            frame_marker=data.get("frame_marker"),
            frame_pattern=data.get("frame_pattern"),
            referer=data.get("referer"),
            headers=dict(data.get("headers") or {}),
        )


@dataclass(frozen=True)
class RuleSet:
    hops: tuple[HopRule, ...]
    payload: PayloadRule                        # applied to the last hop
    name: str = "default"

    @classmethod
    def from_dict(cls, data: Mapping, index: int = 0) -> "RuleSet":
        return cls(
            hops=tuple(HopRule.from_dict(h) for h in data.get("hops") or ()),
            payload=PayloadRule.from_dict(data["payload"]),
            name=data.get("name") or f"rules{index}",
        )


# ──────────────────────────────
#  Site
# ──────────────────────────────
@dataclass(frozen=True)
class SiteConfig:
    id: str
    rule_sets: tuple[RuleSet, ...]
    codecs: tuple[str, ...] = ()                # explicit order; empty = all by priority
    material: Mapping[str, Any] = field(default_factory=dict)
    templates: Mapping[str, str] = field(default_factory=dict)
    start_referer: Optional[str] = None
    url_patterns: tuple[str, ...] = ()
    placeholders: Mapping[str, str] = field(default_factory=dict)
    short_circuit: Confidence = Confidence.EXTENSION

    def validator(self) -> Validator:
        return Validator(self.url_patterns, placeholders=self.placeholders)

    def start_url(self, media: MediaRef) -> str:
        template = self.templates.get(media.content_type)
        if not template:
            raise KeyError(f"{self.id}: no URL template for {media.content_type}")
        if media.content_type == "tv" and (media.season is None or media.episode is None):
            raise ValueError(f"{self.id}: tv content needs season and episode")
        return template.format(id=media.numeric_id, season=media.season, episode=media.episode)

    @classmethod
    def from_dict(cls, site_id: str, data: Mapping,
                  keystreams: Optional[Mapping[str, KeystreamModel]] = None) -> "SiteConfig":
        material = dict(data.get("material") or {})
        family = material.get("keystream")
        if isinstance(family, str):
            model = (keystreams or {}).get(family)
            if model is None:
                log.warning(f"[{site_id}] keystream family {family!r} not registered, dropping it")
                material.pop("keystream")
            else:
                material["keystream"] = model
        return cls(
            id=site_id,
            rule_sets=tuple(RuleSet.from_dict(r, i) for i, r in enumerate(data.get("rule_sets") or ())),
            codecs=tuple(data.get("codecs") or ()),
            material=material,
            templates=dict(data.get("templates") or {}),
            start_referer=data.get("start_referer"),
            url_patterns=tuple(data.get("url_patterns") or ()),
            placeholders=dict(data.get("placeholders") or {}),
            short_circuit=Confidence[data.get("short_circuit", "EXTENSION")],
        )


def parse_sites(doc: Mapping) -> dict[str, SiteConfig]:
    keystreams: dict[str, KeystreamModel] = {}
    for family, data in (doc.get("keystreams") or {}).items():
        try:
            keystreams[family] = model_from_config(family, data)
        except RecurrenceViolation as e:
            # unmodeled scheme: keep it away from the feedback codec
            log.warning(f"[{family}] keystream sample rejected: {e}")

    sites = {}
    for site_id, data in (doc.get("sites") or {}).items():
        sites[site_id] = SiteConfig.from_dict(site_id, data, keystreams)
    log.info(f"loaded {len(sites)} site(s), {len(keystreams)} keystream family(ies)")
    return sites


def load_sites(path: str) -> dict[str, SiteConfig]:
    with open(path, encoding="utf-8") as fh:
        return parse_sites(json.load(fh))
