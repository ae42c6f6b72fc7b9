"""
Dean Edwards p,a,c,k,e,d unpacker.

Embed hosts often wrap the script that assigns the payload variable in
    eval(function(p,a,c,k,e,d){...}('...',62,120,'a|b|c'.split('|'),0,{}))
so the locator expands every packed block before searching a body again.
"""
from __future__ import annotations
import re

_PACKED_RE = re.compile(
    r"eval\(function\(p,a,c,k,e,[dr]\)\{.*?\}\('(.*?)',(\d+),(\d+),'(.*?)'\.split\('\|'\)[^)]*\)\)",
    re.DOTALL,
)
_WORD_RE = re.compile(r"\b\w+\b")
_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_int(word: str, radix: int) -> int:
    if radix <= 36:
        return int(word, radix)
    val = 0
    for ch in word:
        digit = _DIGITS.index(ch)
        if digit >= radix:
            raise ValueError(word)
        val = val * radix + digit
    return val


def detect(text: str) -> bool:
    return bool(_PACKED_RE.search(text))


def _expand(match: re.Match) -> str:
    payload, radix_s, count_s, symtab_raw = match.groups()
    radix = int(radix_s)
    symtab = symtab_raw.split("|")
    symtab += [""] * (int(count_s) - len(symtab))

    def _replace(m: re.Match) -> str:
        word = m.group(0)
        try:
            idx = _to_int(word, radix)
        except ValueError:
            return word
        return symtab[idx] if idx < len(symtab) and symtab[idx] else word

    # packed payloads escape their own quotes
    return _WORD_RE.sub(_replace, payload.replace("\\'", "'"))


def unpack(text: str) -> str:
    """Replace every packed block in `text` with its unpacked source."""
    return _PACKED_RE.sub(_expand, text)
