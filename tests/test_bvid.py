"""Tests for the bvid/avid codec."""

import pytest

from commentscope.core.exceptions import InputError
from commentscope.services.bvid import decode_short_id, encode_numeric_id


class TestShortIdCodec:
    """Known pairs, round trips and malformed input."""

    @pytest.mark.parametrize("bvid,avid", [
        ("BV1mH4y1u7UA", 1054803170),
        ("BV1L9Uoa9EUx", 111298867365120),
    ])
    def test_known_pairs(self, bvid, avid):
        assert decode_short_id(bvid) == avid
        assert encode_numeric_id(avid) == bvid

    @pytest.mark.parametrize("avid", [1, 170001, 2 ** 30, 2 ** 40 + 12345, 2 ** 51 - 1])
    def test_round_trip(self, avid):
        bvid = encode_numeric_id(avid)
        assert bvid.startswith("BV1")
        assert len(bvid) == 12
        assert decode_short_id(bvid) == avid

    @pytest.mark.parametrize("bad", ["", "BV1mH4y1u7U", "AV1mH4y1u7UA", "BV1mH4y1u7U0", "BV1mH4y1u7UI"])
    def test_malformed_returns_zero(self, bad):
        assert decode_short_id(bad) == 0

    @pytest.mark.parametrize("avid", [0, -1, 2 ** 51, 2 ** 60])
    def test_out_of_range_avid_rejected(self, avid):
        with pytest.raises(InputError):
            encode_numeric_id(avid)
