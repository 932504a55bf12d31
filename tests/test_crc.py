"""Tests for the CRC16-CCITT checksum"""
from protocol.crc import crc16_ccitt


def test_crc16_empty_is_initial_value():
    assert crc16_ccitt(b"") == 0xFFFF


def test_crc16_check_value():
    """Standard CCITT-FALSE check value for ASCII "123456789" """
    assert crc16_ccitt(b"123456789") == 0x29B1


def test_crc16_custom_initial_value():
    """XMODEM variant is the same polynomial with a zero register"""
    assert crc16_ccitt(b"123456789", initial=0x0000) == 0x31C3


def test_crc16_detects_single_bit_flip():
    data = b'{"regular":"3.45"}'
    flipped = bytes([data[0] ^ 0x01]) + data[1:]
    assert crc16_ccitt(data) != crc16_ccitt(flipped)


def test_crc16_fits_16_bits():
    assert 0 <= crc16_ccitt(bytes(range(256)) * 4) <= 0xFFFF
