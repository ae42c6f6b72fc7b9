"""
Custom-alphabet decoding — base64 over a substituted character table.

Site material:
    "alphabet": "playerjs"                              # named or literal table
    "alphabet": {"table": "...", "reverse": true}       # reversed-input variant

PlayerJS payloads carry a "#0" / "#1" marker; "#1" also encodes '+' as '#'.
"""
from __future__ import annotations
from ..base import PayloadDescriptor, ResolutionContext, Rejected, Skipped
from ..encoding import as_text, decode_with_table
from ..registry import CodecStrategy, register_codec


def _options(material) -> tuple[str, bool]:
    if isinstance(material, str):
        return material, False
    return material.get("table", "urlsafe"), bool(material.get("reverse", False))


@register_codec
class AlphabetCodec(CodecStrategy):
    id = "alphabet"
    priority = 100
    required_material = frozenset({"alphabet"})

    def decode(self, payload: PayloadDescriptor, ctx: ResolutionContext):
        table, reverse = _options(ctx.site.material["alphabet"])
        raw = payload.raw.strip()
        if raw.startswith("#1"):
            raw = raw[2:].replace("#", "+")
        elif raw.startswith("#0"):
            raw = raw[2:]
        try:
            data = decode_with_table(raw, table, reverse=reverse)
        except ValueError as e:
            if "alphabet table" in str(e):
                return Skipped(self.id, f"bad site alphabet: {e}")
            return Rejected(self.id, f"not decodable with table: {e}")
        return self.candidate(as_text(data), ctx)
