"""
Codec registry — ordered, stateless decode strategies tried against one payload.

Usage:
    registry = CodecRegistry.for_site(site)
    candidate = registry.decode(payload, ctx)     # raises DecodeExhausted
"""
from __future__ import annotations
import logging
from typing import Iterable, Optional

from .base import (
    Confidence, DecodedCandidate, Outcome, PayloadDescriptor, ResolutionContext,
    Rejected, Skipped,
)
from .errors import DecodeExhausted

log = logging.getLogger("streamhop.registry")


# ──────────────────────────────
#  Strategy protocol
# ──────────────────────────────
class CodecStrategy:
    id: str
    priority: int
    required_material: frozenset = frozenset()

    def missing_material(self, available: set[str]) -> set[str]:
        return set(self.required_material) - available

    def decode(self, payload: PayloadDescriptor, ctx: ResolutionContext) -> Outcome:
        raise NotImplementedError

    # helpers shared by strategies
    def candidate(self, text: str, ctx: ResolutionContext) -> Outcome:
        conf = ctx.validator.accept(text)
        if conf is None:
            return Rejected(self.id)
        return DecodedCandidate(text=text, confidence=conf, strategy_id=self.id)


# Global registry — populated when strategy modules are imported
_CODECS: dict[str, CodecStrategy] = {}


def register_codec(strategy):
    """Decorator to register a codec strategy class."""
    inst = strategy()
    _CODECS[inst.id] = inst
    return strategy


def available_codecs() -> list[dict]:
    return [{"id": c.id, "priority": c.priority, "requires": sorted(c.required_material)}
            for c in sorted(_CODECS.values(), key=lambda c: c.priority, reverse=True)]


def material_of(payload: PayloadDescriptor, ctx: ResolutionContext) -> set[str]:
    names = {k for k, v in ctx.site.material.items() if v not in (None, "", [], {})}
    names.update(k for k, v in payload.ancillary.items() if v)
    return names


# ──────────────────────────────
#  Registry
# ──────────────────────────────
class CodecRegistry:
    def __init__(self, strategies: Iterable[CodecStrategy], *,
                 short_circuit: Confidence = Confidence.EXTENSION):
        self.strategies = list(strategies)
        self.short_circuit = short_circuit

    @classmethod
    def for_site(cls, site) -> "CodecRegistry":
        """Site-pinned id order if given, otherwise every codec by priority."""
        if site.codecs:
            unknown = [cid for cid in site.codecs if cid not in _CODECS]
            if unknown:
                raise KeyError(f"unknown codec(s) for site {site.id}: {', '.join(unknown)}")
            chosen = [_CODECS[cid] for cid in site.codecs]
        else:
            chosen = sorted(_CODECS.values(), key=lambda c: c.priority, reverse=True)
        return cls(chosen, short_circuit=site.short_circuit)

    def decode(self, payload: PayloadDescriptor, ctx: ResolutionContext) -> DecodedCandidate:
        available = material_of(payload, ctx)
        best: Optional[DecodedCandidate] = None

        for strategy in self.strategies:
            missing = strategy.missing_material(available)
            if missing:
                ctx.record("codec", strategy.id, "skipped",
                           f"missing material: {', '.join(sorted(missing))}",
                           hop_index=payload.source_hop_index)
                continue

            ctx.bump(f"codec:{strategy.id}")
            outcome = strategy.decode(payload, ctx)

            if isinstance(outcome, Skipped):
                ctx.record("codec", strategy.id, "skipped", outcome.reason,
                           hop_index=payload.source_hop_index)
                continue
            if isinstance(outcome, Rejected):
                ctx.record("codec", strategy.id, "rejected", outcome.reason,
                           hop_index=payload.source_hop_index)
                continue

            ctx.record("codec", strategy.id, "accepted", outcome.confidence.name,
                       hop_index=payload.source_hop_index)
            log.debug(f"[{ctx.site.id}] {strategy.id} accepted ({outcome.confidence.name})")
            if best is None or outcome.confidence > best.confidence:
                best = outcome
            if best.confidence >= self.short_circuit:
                break

        if best is None:
            raise DecodeExhausted(attempted=len(self.strategies))
        return best


# ──────────────────────────────
#  Import all strategies to register them
# ──────────────────────────────
def _load_codecs():
    from .strategies import alphabet        # noqa: F401  priority 100
    from .strategies import rc4             # noqa: F401  priority 90
    from .strategies import feedback_xor    # noqa: F401  priority 80
    from .strategies import aes_ctr         # noqa: F401  priority 70
    from .strategies import repeating_xor   # noqa: F401  priority 60
    from .strategies import shifted         # noqa: F401  shifted_base64 50, reversed_hex 40, rot 30

_load_codecs()
