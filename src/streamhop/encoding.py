"""
Table-driven text → bytes decoding shared by the strategies.
"""
from __future__ import annotations
import base64
import binascii
from typing import Optional

STANDARD = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/="
URLSAFE = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_="
# PlayerJS shuffles the two alphabet halves
PLAYERJS = "ABCDEFGHIJKLMabcdefghijklmNOPQRSTUVWXYZnopqrstuvwxyz0123456789+/="

TABLES = {
    "standard": STANDARD,
    "urlsafe": URLSAFE,
    "playerjs": PLAYERJS,
}


def resolve_table(table: str) -> str:
    """Named table or a literal 64/65-char alphabet (65th char = padding)."""
    table = TABLES.get(table, table)
    if len(table) not in (64, 65) or len(set(table)) != len(table):
        raise ValueError(f"invalid alphabet table ({len(table)} chars)")
    return table


def decode_with_table(text: str, table: str = URLSAFE, *, reverse: bool = False) -> bytes:
    """Decode `text` written in a substituted base64 alphabet.

    Characters outside the table are dropped, padding is optional.
    Raises ValueError on malformed input.
    """
    table = resolve_table(table)
    pad: Optional[str] = table[64] if len(table) == 65 else None
    if reverse:
        text = text[::-1]
    symbols = table[:64]
    if pad is not None and pad in text.rstrip(pad):
        # padding before the end means the orientation is wrong
        raise ValueError("padding inside payload")
    cleaned = "".join(ch for ch in text if ch in symbols)
    std = cleaned.translate(str.maketrans(symbols, STANDARD[:64]))
    if len(std) % 4 == 1:
        raise ValueError("truncated payload")
    std += "=" * (-len(std) % 4)
    try:
        return base64.b64decode(std, validate=True)
    except binascii.Error as e:
        raise ValueError(str(e)) from e


def b64url_decode(text: str) -> bytes:
    return decode_with_table(text.strip(), URLSAFE)


def b64url_encode(data: bytes, *, padded: bool = False) -> str:
    out = base64.urlsafe_b64encode(data).decode("ascii")
    return out if padded else out.rstrip("=")


def as_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def key_bytes(raw: str) -> bytes:
    """Site key material: "hex:<digits>" for raw bytes, anything else is literal text."""
    if raw.startswith("hex:"):
        return bytes.fromhex(raw[4:])
    return raw.encode()
