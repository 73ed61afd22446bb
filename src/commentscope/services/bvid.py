"""Conversion between Bilibili short-IDs (bvid) and numeric IDs (avid)."""

from typing import List

from ..core.constants import CodecConstants
from ..core.exceptions import InputError

_INDEX = {ch: i for i, ch in enumerate(CodecConstants.ALPHABET)}


def _swap(chars: List[str]) -> List[str]:
    for a, b in CodecConstants.SWAPS:
        chars[a], chars[b] = chars[b], chars[a]
    return chars


def decode_short_id(bvid: str) -> int:
    """Convert a bvid such as ``BV1mH4y1u7UA`` to its avid.

    Malformed input (wrong length, missing ``BV`` prefix or a character
    outside the alphabet) yields 0 instead of raising.
    """
    if not isinstance(bvid, str) or len(bvid) < CodecConstants.LENGTH or not bvid.startswith("BV"):
        return 0

    chars = _swap(list(bvid))
    value = 0
    for ch in chars[len(CodecConstants.PREFIX):]:
        digit = _INDEX.get(ch)
        if digit is None:
            return 0
        value = value * CodecConstants.BASE + digit

    return (value & CodecConstants.MASK_CODE) ^ CodecConstants.XOR_CODE


def encode_numeric_id(avid: int) -> str:
    """Convert an avid to its bvid.

    Raises ``InputError`` for ids outside ``1 .. 2**51 - 1``, which have no
    well-formed bvid.
    """
    if isinstance(avid, bool) or not isinstance(avid, int) or not 0 < avid < CodecConstants.MAX_AID:
        raise InputError(f"avid out of range: {avid!r}")

    chars = [""] * CodecConstants.LENGTH
    chars[:len(CodecConstants.PREFIX)] = list(CodecConstants.PREFIX)

    value = (avid | CodecConstants.MAX_AID) ^ CodecConstants.XOR_CODE
    pos = CodecConstants.LENGTH - 1
    while value > 0 and pos >= len(CodecConstants.PREFIX):
        chars[pos] = CodecConstants.ALPHABET[value % CodecConstants.BASE]
        value //= CodecConstants.BASE
        pos -= 1

    return "".join(_swap(chars))
