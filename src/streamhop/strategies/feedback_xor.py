"""
Positional-feedback XOR keystream.

Needs a registered KeystreamModel ("keystream" material) holding a known
plaintext prefix for the current site. Decoding stops exactly where the known
prefix ends; when that leaves part of the ciphertext undecoded the outcome is a
Skip carrying the partial plaintext, so other strategies still get a turn.
"""
from __future__ import annotations
from ..base import KeystreamModel, PayloadDescriptor, ResolutionContext, Rejected, Skipped
from ..encoding import as_text, b64url_decode
from ..errors import RecurrenceViolation
from ..keystream import decode_prefix
from ..registry import CodecStrategy, register_codec

INSUFFICIENT = "insufficient known plaintext"


@register_codec
class FeedbackXorCodec(CodecStrategy):
    id = "feedback_xor"
    priority = 80
    required_material = frozenset({"keystream"})

    def decode(self, payload: PayloadDescriptor, ctx: ResolutionContext):
        model: KeystreamModel = ctx.site.material["keystream"]
        known = model.known_prefix(ctx.site.id)
        if not known:
            return Skipped(self.id, f"no known prefix registered for {ctx.site.id}")
        if len(known) < model.feedback_period:
            return Skipped(self.id, INSUFFICIENT)

        try:
            cipher = b64url_decode(payload.raw)
        except ValueError as e:
            return Rejected(self.id, f"not base64url: {e}")
        if len(cipher) < model.feedback_period:
            return Rejected(self.id, "payload shorter than the header block")

        try:
            plain = decode_prefix(cipher, model.header_bytes, known)
        except RecurrenceViolation as e:
            return Rejected(self.id, str(e))

        if len(plain) < len(cipher):
            return Skipped(self.id, INSUFFICIENT, partial=as_text(plain))
        return self.candidate(as_text(plain), ctx)
