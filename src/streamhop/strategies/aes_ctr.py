"""
AES-CTR with the counter seeded from bytes present in the payload.

Site material:
    "aes_ctr": {"key": "hex:<digits>" | "<text>", "counter": "prefix", "prefix_size": 16}

"counter": "script" marks families whose counter is generated inside a player
script/WASM runtime; those are skipped immediately, never retried.
"""
from __future__ import annotations
from Crypto.Cipher import AES

from ..base import PayloadDescriptor, ResolutionContext, Rejected, Skipped
from ..encoding import as_text, b64url_decode, key_bytes
from ..registry import CodecStrategy, register_codec

LIVE_SCRIPT = "requires live script execution"


def ctr_decrypt(key: bytes, prefix: bytes, body: bytes) -> bytes:
    if len(prefix) == AES.block_size:
        # whole counter block given
        cipher = AES.new(key, AES.MODE_CTR, nonce=b"", initial_value=prefix)
    else:
        cipher = AES.new(key, AES.MODE_CTR, nonce=prefix)
    return cipher.decrypt(body)


@register_codec
class AesCtrCodec(CodecStrategy):
    id = "aes_ctr"
    priority = 70
    required_material = frozenset({"aes_ctr"})

    def decode(self, payload: PayloadDescriptor, ctx: ResolutionContext):
        conf = ctx.site.material["aes_ctr"]
        if conf.get("counter", "prefix") != "prefix":
            return Skipped(self.id, LIVE_SCRIPT)

        try:
            key = key_bytes(conf.get("key", ""))
        except ValueError as e:
            return Skipped(self.id, f"bad AES key: {e}")
        if len(key) not in AES.key_size:
            return Skipped(self.id, f"unusable AES key length {len(key)}")
        prefix_size = int(conf.get("prefix_size", AES.block_size))
        if prefix_size not in (8, 12, AES.block_size):
            return Skipped(self.id, f"unsupported counter prefix size {prefix_size}")

        try:
            data = b64url_decode(payload.raw)
        except ValueError as e:
            return Rejected(self.id, f"not base64url: {e}")
        if len(data) <= prefix_size:
            return Rejected(self.id, "payload shorter than counter prefix")

        plain = ctr_decrypt(key, data[:prefix_size], data[prefix_size:])
        return self.candidate(as_text(plain), ctx)
