"""
Unit tests for address helpers and the retry loop.
"""

import pytest
import requests
from hexbytes import HexBytes

from erc20 import helpers
from erc20.helpers import get_hash, hex_to_int, normalize_address, to_hex, with_retry


class TestNormalizeAddress:
    """Addresses exchanged with the node end up lowercase 0x hex."""

    def test_checksum_address_is_lowercased(self):
        assert normalize_address('0xC99a6A985eD2Cac1ef41640596C5A5f9F4E19Ef5') == \
            '0xc99a6a985ed2cac1ef41640596c5a5f9f4e19ef5'

    def test_quotes_are_stripped(self):
        assert normalize_address('"0xABCDEF0000000000000000000000000000000001"') == \
            '0xabcdef0000000000000000000000000000000001'

    def test_missing_prefix_is_added(self):
        assert normalize_address('ab' * 20) == '0x' + 'ab' * 20

    def test_raw_bytes(self):
        assert normalize_address(HexBytes(b'\x01' * 20)) == '0x' + '01' * 20

    def test_wrong_byte_length_is_rejected(self):
        with pytest.raises(ValueError):
            normalize_address(b'\x01' * 32)

    def test_none_stays_none(self):
        assert normalize_address(None) is None


class TestHexConversions:
    def test_hex_to_int(self):
        assert hex_to_int(12) == 12
        assert hex_to_int('0x10') == 16
        assert hex_to_int('ff') == 255
        assert hex_to_int(HexBytes('0x0100')) == 256

    def test_to_hex(self):
        assert to_hex(HexBytes('0xDEAD')) == '0xdead'
        assert to_hex('0xDEAD') == '0xdead'

    def test_get_hash(self):
        assert get_hash('0xabc') == '0xabc'
        assert get_hash(HexBytes('0x01')) == '0x01'
        assert get_hash({'hash': HexBytes('0x02')}) == '0x02'


class TestWithRetry:
    """Transient failures are retried, everything else propagates."""

    @pytest.fixture(autouse=True)
    def no_sleep(self, monkeypatch):
        self.sleeps = []
        monkeypatch.setattr(helpers.time, 'sleep', self.sleeps.append)

    def test_recovers_after_transient_failures(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise requests.exceptions.ConnectionError('reset')
            return 'ok'

        assert with_retry(flaky, retries=3, delay=1) == 'ok'
        assert len(calls) == 3
        assert self.sleeps == [1, 2]

    def test_gives_up_after_retries(self):
        def down():
            raise requests.exceptions.Timeout('slow')

        with pytest.raises(requests.exceptions.Timeout):
            with_retry(down, retries=2, delay=0)
        assert len(self.sleeps) == 2

    def test_permanent_error_is_not_retried(self):
        calls = []

        def broken():
            calls.append(1)
            raise ValueError('bad request')

        with pytest.raises(ValueError):
            with_retry(broken, retries=5, delay=0)
        assert len(calls) == 1
        assert self.sleeps == []

    def test_arguments_are_passed_through(self):
        assert with_retry(lambda a, b=0: a + b, 1, b=2) == 3
