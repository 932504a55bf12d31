"""Tests for frame encoding and decoding"""
import pytest

from protocol.codec import (
    ETX,
    MAX_PAYLOAD_SIZE,
    STX,
    ChecksumMismatch,
    FrameError,
    FrameTooLarge,
    IncompleteFrame,
    MalformedFrame,
    decode_frame,
    describe_frame,
    encode_frame,
    frame_size,
)
from protocol.crc import crc16_ccitt


class TestEncodeFrame:

    def test_empty_payload_layout(self):
        """Status query: header, zero length, CRC of nothing, end marker"""
        assert encode_frame(0x32) == bytes([0x02, 0x32, 0x00, 0x00, 0xFF, 0xFF, 0x03])

    def test_payload_layout(self):
        payload = b"OK"
        frame = encode_frame(0x31, payload)
        crc = crc16_ccitt(payload)

        assert frame[0] == STX
        assert frame[1] == 0x31
        assert frame[2:4] == b"\x00\x02"
        assert frame[4:6] == payload
        assert frame[6:8] == bytes([crc >> 8, crc & 0xFF])
        assert frame[8] == ETX
        assert len(frame) == 4 + len(payload) + 3

    def test_length_is_big_endian(self):
        frame = encode_frame(0x31, b"x" * 0x0102)
        assert frame[2:4] == b"\x01\x02"

    def test_max_payload_accepted(self):
        frame = encode_frame(0x31, b"\x00" * MAX_PAYLOAD_SIZE)
        assert len(frame) == MAX_PAYLOAD_SIZE + 7

    def test_payload_too_large(self):
        with pytest.raises(FrameTooLarge):
            encode_frame(0x31, b"\x00" * (MAX_PAYLOAD_SIZE + 1))

    @pytest.mark.parametrize("command", [-1, 256])
    def test_command_out_of_range(self, command):
        with pytest.raises(ValueError):
            encode_frame(command, b"")


class TestDecodeFrame:

    def test_decode_encoded_frame(self):
        payload = b'{"prices":{"regular":"3.45"}}'
        frame = decode_frame(encode_frame(0x31, payload))

        assert frame.command == 0x31
        assert frame.payload == payload
        assert frame.length == len(payload)
        assert frame.checksum == crc16_ccitt(payload)

    def test_decode_empty_payload(self):
        frame = decode_frame(encode_frame(0x33))
        assert frame.payload == b""

    def test_trailing_bytes_ignored(self):
        frame = decode_frame(encode_frame(0x33, b"PONG") + b"\x02\x99junk")
        assert frame.payload == b"PONG"

    def test_too_short(self):
        with pytest.raises(IncompleteFrame):
            decode_frame(b"\x02\x31\x00")

    def test_bad_start_byte(self):
        data = bytearray(encode_frame(0x31, b"OK"))
        data[0] = 0xAA
        with pytest.raises(MalformedFrame):
            decode_frame(bytes(data))

    def test_length_beyond_buffer(self):
        data = encode_frame(0x31, b"HELLO")
        with pytest.raises(IncompleteFrame):
            decode_frame(data[:-2])

    def test_bad_end_byte(self):
        data = bytearray(encode_frame(0x31, b"OK"))
        data[-1] = 0x04
        with pytest.raises(MalformedFrame):
            decode_frame(bytes(data))

    def test_checksum_bit_flip(self):
        """A single flipped payload bit must be caught by the CRC"""
        data = bytearray(encode_frame(0x31, b"3.45"))
        data[5] ^= 0x01

        with pytest.raises(ChecksumMismatch) as exc_info:
            decode_frame(bytes(data))

        assert exc_info.value.received == crc16_ccitt(b"3.45")
        assert exc_info.value.computed == crc16_ccitt(bytes(data[4:8]))

    @pytest.mark.parametrize("bit", range(16))
    def test_checksum_field_bit_flip(self, bit):
        """Any single flipped bit in the transmitted CRC is caught"""
        payload = b'{"regular":"3.45"}'
        data = bytearray(encode_frame(0x31, payload))
        data[4 + len(payload) + bit // 8] ^= 0x80 >> (bit % 8)

        with pytest.raises(ChecksumMismatch) as exc_info:
            decode_frame(bytes(data))

        assert exc_info.value.computed == crc16_ccitt(payload)
        assert exc_info.value.received == crc16_ccitt(payload) ^ (0x8000 >> bit)

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            decode_frame(b"")
        assert issubclass(ChecksumMismatch, FrameError)


class TestFrameSize:

    def test_needs_header(self):
        assert frame_size(b"\x02\x31\x00") is None

    def test_announced_size(self):
        data = encode_frame(0x31, b"HELLO")
        assert frame_size(data[:4]) == len(data)


class TestDescribeFrame:

    def test_valid_frame(self):
        info = describe_frame(encode_frame(0x33, b"PONG"))

        assert info["valid"] is True
        assert info["command"] == "0x33"
        assert info["length"] == 4
        assert info["payload_text"] == "PONG"
        assert info["etx"] == "0x03"

    def test_short_input_does_not_raise(self):
        info = describe_frame(b"\x02")
        assert info["total_length"] == 1
        assert "error" in info

    def test_corrupt_frame_reports_error(self):
        data = bytearray(encode_frame(0x31, b"OK"))
        data[4] ^= 0xFF
        info = describe_frame(bytes(data))

        assert info["valid"] is False
        assert "checksum" in info["error"]
