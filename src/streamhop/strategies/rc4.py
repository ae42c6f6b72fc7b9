"""
RC4 over table-decoded bytes.

Key candidates, in order: site constants ("rc4_keys"), the discovered element
id, the numeric content id. The first key whose output validates wins.
"""
from __future__ import annotations
from urllib.parse import unquote

from ..base import PayloadDescriptor, ResolutionContext, Rejected
from ..encoding import URLSAFE, as_text, decode_with_table
from ..registry import CodecStrategy, register_codec

KEY_SOURCES = ("rc4_keys", "element_id", "content_id")


def rc4(key: bytes, data: bytes) -> bytes:
    """RC4 stream cipher (symmetric)."""
    if not key:
        raise ValueError("empty RC4 key")
    state = list(range(256))
    j = 0
    for i in range(256):
        j = (j + state[i] + key[i % len(key)]) % 256
        state[i], state[j] = state[j], state[i]

    i = j = 0
    out = bytearray()
    for byte in data:
        i = (i + 1) % 256
        j = (j + state[i]) % 256
        state[i], state[j] = state[j], state[i]
        out.append(byte ^ state[(state[i] + state[j]) % 256])
    return bytes(out)


def key_candidates(payload: PayloadDescriptor, ctx: ResolutionContext) -> list[str]:
    keys = []
    site_keys = ctx.site.material.get("rc4_keys") or []
    if isinstance(site_keys, str):
        site_keys = [site_keys]
    keys.extend(site_keys)
    for name in KEY_SOURCES[1:]:
        if payload.ancillary.get(name):
            keys.append(payload.ancillary[name])
    # keep order, drop repeats
    return list(dict.fromkeys(k for k in keys if k))


@register_codec
class Rc4Codec(CodecStrategy):
    id = "rc4"
    priority = 90

    def missing_material(self, available: set[str]) -> set[str]:
        if available.intersection(KEY_SOURCES):
            return set()
        return {" | ".join(KEY_SOURCES)}

    def decode(self, payload: PayloadDescriptor, ctx: ResolutionContext):
        table = ctx.site.material.get("rc4_table", URLSAFE)
        try:
            data = decode_with_table(payload.raw.strip(), table)
        except ValueError as e:
            return Rejected(self.id, f"not table-decodable: {e}")

        for key in key_candidates(payload, ctx):
            text = as_text(rc4(key.encode(), data))
            # percent-escapes are part of the URL unless it only validates unquoted
            for variant in (text, unquote(unquote(text))):
                outcome = self.candidate(variant, ctx)
                if not isinstance(outcome, Rejected):
                    return outcome
        return Rejected(self.id, "no key candidate produced a URL")
