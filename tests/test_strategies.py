import base64

from Crypto.Cipher import AES

from streamhop.base import Confidence, DecodedCandidate, PayloadDescriptor, Rejected, Skipped
from streamhop.encoding import PLAYERJS, STANDARD, b64url_encode
from streamhop.strategies.aes_ctr import LIVE_SCRIPT, AesCtrCodec
from streamhop.strategies.alphabet import AlphabetCodec
from streamhop.strategies.rc4 import Rc4Codec, rc4
from streamhop.strategies.repeating_xor import RepeatingXorCodec, xor_repeating
from streamhop.strategies.shifted import ReversedHexCodec, RotCodec, ShiftedBase64Codec

from conftest import make_ctx, make_site

URL = "https://cdn.test/hls/abc/master.m3u8"


def _ctx(**material):
    return make_ctx(make_site(material=material))


# ──────────────────────────────
#  custom alphabet
# ──────────────────────────────
def test_playerjs_alphabet():
    std = base64.b64encode(URL.encode()).decode()
    custom = std.translate(str.maketrans(STANDARD, PLAYERJS))
    out = AlphabetCodec().decode(PayloadDescriptor(raw="#0" + custom), _ctx(alphabet="playerjs"))
    assert isinstance(out, DecodedCandidate)
    assert out.text == URL
    assert out.confidence == Confidence.EXTENSION


def test_reversed_unpadded_alphabet():
    raw = b64url_encode(URL.encode())[::-1]
    ctx = _ctx(alphabet={"table": "urlsafe", "reverse": True})
    out = AlphabetCodec().decode(PayloadDescriptor(raw=raw), ctx)
    assert out.text == URL


def test_alphabet_wrong_orientation_rejected():
    raw = base64.b64encode(b"https://a.test/x.m3u8!").decode()[::-1]   # padding lands in front
    out = AlphabetCodec().decode(PayloadDescriptor(raw=raw), _ctx(alphabet="standard"))
    assert isinstance(out, Rejected)


def test_bad_alphabet_config_skips():
    out = AlphabetCodec().decode(PayloadDescriptor(raw="abcd"), _ctx(alphabet="tooshort"))
    assert isinstance(out, Skipped)


# ──────────────────────────────
#  RC4
# ──────────────────────────────
def test_rc4_known_vector():
    assert rc4(b"Key", b"Plaintext").hex() == "bbf316e8d940af0ad3"


def test_rc4_with_site_key():
    plain = "https://x.test/a.m3u8"
    raw = b64url_encode(rc4(b"embedId123", plain.encode()))
    out = Rc4Codec().decode(PayloadDescriptor(raw=raw), _ctx(rc4_keys=["embedId123"]))
    assert isinstance(out, DecodedCandidate)
    assert out.text == plain
    assert out.strategy_id == "rc4"


def test_rc4_tries_candidates_in_order():
    raw = b64url_encode(rc4(b"4471", URL.encode()))
    payload = PayloadDescriptor(raw=raw, ancillary={"element_id": "xYz09", "content_id": "4471"})
    out = Rc4Codec().decode(payload, _ctx(rc4_keys=["nope"]))
    assert out.text == URL


def test_rc4_keeps_percent_escapes():
    """Escapes that belong to the URL survive; only fully quoted output is unquoted"""
    plain = "https://x.test/a%2520b/index.m3u8"
    raw = b64url_encode(rc4(b"k", plain.encode()))
    assert Rc4Codec().decode(PayloadDescriptor(raw=raw), _ctx(rc4_keys=["k"])).text == plain

    quoted = "https%253A%252F%252Fx.test%252Fv%252Findex.m3u8"
    raw = b64url_encode(rc4(b"k", quoted.encode()))
    out = Rc4Codec().decode(PayloadDescriptor(raw=raw), _ctx(rc4_keys=["k"]))
    assert out.text == "https://x.test/v/index.m3u8"


def test_rc4_no_key_rejected():
    raw = b64url_encode(rc4(b"secret", URL.encode()))
    assert isinstance(Rc4Codec().decode(PayloadDescriptor(raw=raw), _ctx(rc4_keys=["other"])), Rejected)


def test_rc4_material_requirement():
    codec = Rc4Codec()
    assert codec.missing_material(set())
    assert not codec.missing_material({"content_id"})


# ──────────────────────────────
#  AES-CTR
# ──────────────────────────────
def test_aes_ctr_prefix_counter():
    key = bytes(range(16))
    iv = bytes.fromhex("000102030405060708090a0b0c0d0e0f")
    ct = AES.new(key, AES.MODE_CTR, nonce=b"", initial_value=iv).encrypt(URL.encode())
    ctx = _ctx(aes_ctr={"key": "hex:" + key.hex(), "counter": "prefix", "prefix_size": 16})
    out = AesCtrCodec().decode(PayloadDescriptor(raw=b64url_encode(iv + ct)), ctx)
    assert out.text == URL


def test_aes_ctr_nonce_prefix():
    key = b"k" * 32
    nonce = b"\x01" * 8
    ct = AES.new(key, AES.MODE_CTR, nonce=nonce).encrypt(URL.encode())
    ctx = _ctx(aes_ctr={"key": "k" * 32, "prefix_size": 8})
    out = AesCtrCodec().decode(PayloadDescriptor(raw=b64url_encode(nonce + ct)), ctx)
    assert out.text == URL


def test_aes_ctr_hex_looking_text_key():
    """A 32-char key is text unless it carries the hex: prefix"""
    key = b"0123456789abcdef0123456789abcdef"
    nonce = b"\x02" * 8
    ct = AES.new(key, AES.MODE_CTR, nonce=nonce).encrypt(URL.encode())
    ctx = _ctx(aes_ctr={"key": key.decode(), "prefix_size": 8})
    out = AesCtrCodec().decode(PayloadDescriptor(raw=b64url_encode(nonce + ct)), ctx)
    assert out.text == URL


def test_aes_ctr_opaque_counter_skips():
    ctx = _ctx(aes_ctr={"key": "0" * 32, "counter": "script"})
    out = AesCtrCodec().decode(PayloadDescriptor(raw="AAAA"), ctx)
    assert out == Skipped("aes_ctr", LIVE_SCRIPT)


# ──────────────────────────────
#  repeating XOR
# ──────────────────────────────
def test_repeating_xor_hex_key():
    raw = b64url_encode(xor_repeating(URL.encode(), b"\x13\x37"))
    out = RepeatingXorCodec().decode(PayloadDescriptor(raw=raw), _ctx(xor_keys=["bad", "hex:1337"]))
    assert out.text == URL


# ──────────────────────────────
#  shifted / hex / rot
# ──────────────────────────────
def test_shifted_base64():
    shifted = bytes(b + 3 for b in URL.encode())
    raw = "=" + b64url_encode(shifted, padded=True)[::-1]
    out = ShiftedBase64Codec().decode(PayloadDescriptor(raw=raw), _ctx())
    assert out.text == URL


def test_reversed_hex():
    raw = "".join(chr(ord(c) + 1) for c in URL.encode().hex())[::-1]
    out = ReversedHexCodec().decode(PayloadDescriptor(raw=raw), _ctx())
    assert out.text == URL


def test_rot3():
    out = RotCodec().decode(PayloadDescriptor(raw="eqqmp://zak.qbpq/s1.j3r8"), _ctx())
    assert out.text == "https://cdn.test/v1.m3u8"
