"""
Offline key-derivation toolkit for the positional-feedback XOR scheme.

Model (P = len(header)):
    C[0:P] == H
    key[i] = H[i] ^ U[i]                                         i <  P
    key[i] = key[i-P] ^ (C[i-P] ^ C[i]) ^ (U[i-P] ^ U[i])        i >= P
    U[i]   = C[i] ^ key[i]

key[i] depends on U[i] itself, so plaintext can only be recovered block by
block as far as a literal known prefix reaches. A site family is registered for
the codec only after one (ciphertext, plaintext) sample passes `verify`.
"""
from __future__ import annotations
import logging
from itertools import cycle
from typing import Iterable, Mapping, Optional, Sequence

from .base import KeystreamModel
from .errors import RecurrenceViolation

log = logging.getLogger("streamhop.keystream")


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def derive_keystream(ciphertext: bytes, plaintext: bytes) -> bytes:
    if len(ciphertext) != len(plaintext):
        raise ValueError(f"length mismatch: {len(ciphertext)} cipher vs {len(plaintext)} plain bytes")
    return _xor(ciphertext, plaintext)


def verify(ciphertext: bytes, plaintext: bytes, header: bytes) -> bytes:
    """Check one full sample against the model; returns the derived keystream."""
    period = len(header)
    if period == 0:
        raise ValueError("header must not be empty")
    if len(ciphertext) != len(plaintext):
        raise RecurrenceViolation(
            f"sample lengths differ ({len(ciphertext)} vs {len(plaintext)})")
    if len(ciphertext) < period:
        raise RecurrenceViolation(f"sample shorter than the {period}-byte header")
    if ciphertext[:period] != header:
        pos = next(i for i in range(period) if ciphertext[i] != header[i])
        raise RecurrenceViolation(f"ciphertext header differs at byte {pos}", position=pos)

    key = derive_keystream(ciphertext, plaintext)
    for i in range(period, len(key)):
        expected = (key[i - period] ^ ciphertext[i - period] ^ ciphertext[i]
                    ^ plaintext[i - period] ^ plaintext[i])
        if key[i] != expected:
            raise RecurrenceViolation(f"recurrence breaks at byte {i}", position=i)
    return key


def decode_prefix(ciphertext: bytes, header: bytes, known: bytes) -> bytes:
    """Recover plaintext one header-length block at a time, up to len(known).

    Never returns more bytes than the known prefix covers. Raises
    RecurrenceViolation if the ciphertext does not belong to this header family
    or a recovered byte contradicts the known prefix.
    """
    period = len(header)
    if ciphertext[:period] != header[:len(ciphertext)]:
        raise RecurrenceViolation("ciphertext header does not match model")

    limit = min(len(known), len(ciphertext))
    key = bytearray()
    plain = bytearray()
    for start in range(0, limit, period):
        for i in range(start, min(start + period, limit)):
            if i < period:
                k = header[i] ^ known[i]
            else:
                k = (key[i - period] ^ ciphertext[i - period] ^ ciphertext[i]
                     ^ plain[i - period] ^ known[i])
            u = ciphertext[i] ^ k
            if u != known[i]:
                raise RecurrenceViolation(f"known prefix contradicted at byte {i}", position=i)
            key.append(k)
            plain.append(u)
    return bytes(plain)


def encode(plaintext: bytes, header: bytes, filler: bytes) -> bytes:
    """Synthesise a ciphertext that honours the recurrence.

    Bytes past the header use `filler` (cycled) as their keystream.
    """
    period = len(header)
    if len(plaintext) < period:
        raise ValueError("plaintext shorter than header")
    if not filler:
        raise ValueError("filler keystream must not be empty")
    tail = bytes(u ^ f for u, f in zip(plaintext[period:], cycle(filler)))
    return bytes(header) + tail


def bootstrap(
    site_id: str,
    ciphertext: bytes,
    plaintext: bytes,
    header: bytes,
    known_prefix: Optional[bytes] = None,
    *,
    base: Optional[KeystreamModel] = None,
) -> KeystreamModel:
    """Verify a sample and register `site_id` with its known prefix.

    Without an explicit prefix, the sample plaintext up to its last '/' is used.
    """
    verify(ciphertext, plaintext, header)
    if known_prefix is None:
        known_prefix = trim_to_segment(plaintext)
    if len(known_prefix) < len(header):
        raise ValueError(f"known prefix must cover the {len(header)}-byte header block")
    if not plaintext.startswith(known_prefix):
        raise ValueError("known prefix is not a prefix of the sample plaintext")

    prefixes = dict(base.known_prefix_by_site) if base else {}
    if base is not None and base.header_bytes != bytes(header):
        raise RecurrenceViolation("sample header differs from the registered family header")
    prefixes[site_id] = bytes(known_prefix)
    log.info(f"[{site_id}] keystream registered: period {len(header)}, prefix {len(known_prefix)} bytes")
    return KeystreamModel(header_bytes=bytes(header), known_prefix_by_site=prefixes)


# ──────────────────────────────
#  Sample analysis
# ──────────────────────────────
def _common(items: Sequence[bytes]) -> bytes:
    if not items:
        return b""
    first = items[0]
    n = len(first)
    for other in items[1:]:
        n = min(n, len(other))
        for i in range(n):
            if other[i] != first[i]:
                n = i
                break
    return bytes(first[:n])


def common_header(ciphertexts: Iterable[bytes]) -> bytes:
    """Leading bytes shared by every ciphertext of a site family."""
    return _common(list(ciphertexts))


def trim_to_segment(url: bytes) -> bytes:
    cut = url.rfind(b"/")
    return url[:cut + 1] if cut > url.find(b"//") + 1 else url


def common_prefix(plaintexts: Iterable[bytes], *, whole_segments: bool = True) -> bytes:
    """Longest literal prefix shared by known URLs (scheme + host + fixed path)."""
    prefix = _common(list(plaintexts))
    return trim_to_segment(prefix) if whole_segments else prefix


def find_key_period(ciphertext: bytes, plaintext: bytes, max_period: int = 64) -> Optional[bytes]:
    """Shortest repeating XOR key explaining the sample, if any."""
    key = derive_keystream(ciphertext, plaintext)
    for period in range(1, min(max_period, len(key)) + 1):
        if all(key[i] == key[i % period] for i in range(len(key))):
            return key[:period]
    return None


def model_from_config(family: str, data: Mapping) -> KeystreamModel:
    """Build a family model from site config, verifying any bundled sample.

    {"header": "<hex>",
     "known_prefixes": {"<site>": "https://..."},
     "sample": {"site": "<site>", "ciphertext": "<base64url>", "plaintext": "https://..."}}
    """
    from .encoding import b64url_decode

    header = bytes.fromhex(data["header"])
    prefixes = {site: p.encode() for site, p in (data.get("known_prefixes") or {}).items()}
    model = KeystreamModel(header_bytes=header, known_prefix_by_site=prefixes)
    sample = data.get("sample")
    if sample:
        site = sample.get("site", family)
        model = bootstrap(
            site,
            b64url_decode(sample["ciphertext"]),
            sample["plaintext"].encode(),
            header,
            prefixes.get(site),
            base=model,
        )
    return model
