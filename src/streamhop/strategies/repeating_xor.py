"""
XOR with a repeating site key (keys found offline with keystream.find_key_period).

Site material:
    "xor_keys": ["<hex:...>" | "<text>", ...]
"""
from __future__ import annotations
from itertools import cycle

from ..base import PayloadDescriptor, ResolutionContext, Rejected
from ..encoding import as_text, b64url_decode, key_bytes
from ..registry import CodecStrategy, register_codec


def xor_repeating(data: bytes, key: bytes) -> bytes:
    return bytes(b ^ k for b, k in zip(data, cycle(key)))


@register_codec
class RepeatingXorCodec(CodecStrategy):
    id = "repeating_xor"
    priority = 60
    required_material = frozenset({"xor_keys"})

    def decode(self, payload: PayloadDescriptor, ctx: ResolutionContext):
        keys = ctx.site.material["xor_keys"]
        if isinstance(keys, str):
            keys = [keys]
        try:
            data = b64url_decode(payload.raw)
        except ValueError as e:
            return Rejected(self.id, f"not base64url: {e}")

        for raw_key in keys:
            try:
                key = key_bytes(raw_key)
            except ValueError:
                continue
            if not key:
                continue
            outcome = self.candidate(as_text(xor_repeating(data, key)), ctx)
            if not isinstance(outcome, Rejected):
                return outcome
        return Rejected(self.id, "no key produced a URL")
