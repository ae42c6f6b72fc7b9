"""
Material-free text transforms seen on hidden-element payloads:

  shifted_base64 — drop leading '=', reverse, base64url decode, subtract a shift
  reversed_hex   — reverse, subtract 1 from every char, hex decode
  rot            — rotate letters only (digits untouched)
"""
from __future__ import annotations
from ..base import PayloadDescriptor, ResolutionContext, Rejected
from ..encoding import b64url_decode
from ..registry import CodecStrategy, register_codec

DEFAULT_SHIFTS = (3, 5, 7, 1, 2, 4, 6)


def unshift_base64(encoded: str, shift: int) -> str:
    data = encoded[1:] if encoded.startswith("=") else encoded
    raw = b64url_decode(data[::-1])
    return "".join(chr((b - shift) % 256) for b in raw)


def reversed_hex(encoded: str) -> str:
    adjusted = "".join(chr(ord(ch) - 1) for ch in encoded[::-1])
    out = []
    for i in range(0, len(adjusted) - 1, 2):
        code = int(adjusted[i:i + 2], 16)
        if code:
            out.append(chr(code))
    return "".join(out)


def rotate_letters(text: str, shift: int) -> str:
    out = []
    for ch in text:
        if "a" <= ch <= "z":
            out.append(chr((ord(ch) - 97 + shift) % 26 + 97))
        elif "A" <= ch <= "Z":
            out.append(chr((ord(ch) - 65 + shift) % 26 + 65))
        else:
            out.append(ch)
    return "".join(out)


@register_codec
class ShiftedBase64Codec(CodecStrategy):
    id = "shifted_base64"
    priority = 50

    def decode(self, payload: PayloadDescriptor, ctx: ResolutionContext):
        shifts = ctx.site.material.get("shifts") or DEFAULT_SHIFTS
        best = None
        for shift in shifts:
            try:
                text = unshift_base64(payload.raw.strip(), int(shift))
            except ValueError:
                return Rejected(self.id, "not base64url")
            outcome = self.candidate(text, ctx)
            if isinstance(outcome, Rejected):
                continue
            if best is None or outcome.confidence > best.confidence:
                best = outcome
        return best or Rejected(self.id, f"no shift in {list(shifts)} produced a URL")


@register_codec
class ReversedHexCodec(CodecStrategy):
    id = "reversed_hex"
    priority = 40

    def decode(self, payload: PayloadDescriptor, ctx: ResolutionContext):
        try:
            text = reversed_hex(payload.raw.strip())
        except ValueError:
            return Rejected(self.id, "not hex after adjustment")
        return self.candidate(text, ctx)


@register_codec
class RotCodec(CodecStrategy):
    id = "rot"
    priority = 30

    def decode(self, payload: PayloadDescriptor, ctx: ResolutionContext):
        shift = int(ctx.site.material.get("rot_shift", 3))
        return self.candidate(rotate_letters(payload.raw.strip(), shift), ctx)
