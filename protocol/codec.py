"""Controller frame codec - binary framing with a CRC16 over the payload

Frame layout::

    +------+---------+-----------+-------------+-----------+------+
    | STX  | Command |  Length   |   Payload   |   CRC16   | ETX  |
    | 0x02 | 1 byte  | 2 bytes   |  L bytes    |  2 bytes  | 0x03 |
    +------+---------+-----------+-------------+-----------+------+

- Length and CRC16 are big-endian unsigned 16-bit
- CRC16-CCITT (0x1021, init 0xFFFF) is computed over the payload only
"""
import struct
from dataclasses import dataclass

from protocol.crc import crc16_ccitt

STX = 0x02
ETX = 0x03

HEADER_SIZE = 4  # STX + command + length
TRAILER_SIZE = 3  # CRC16 + ETX
MIN_FRAME_SIZE = HEADER_SIZE + TRAILER_SIZE
MAX_PAYLOAD_SIZE = 0xFFFF


class FrameError(ValueError):
    """Base class for every codec failure."""


class FrameTooLarge(FrameError):
    """Payload does not fit the 16-bit length field."""


class IncompleteFrame(FrameError):
    """Not enough bytes for the frame the header announces."""


class MalformedFrame(FrameError):
    """Start or end marker is not where it should be."""


class ChecksumMismatch(FrameError):
    """Transmitted CRC does not match the payload."""

    def __init__(self, received: int, computed: int):
        super().__init__(
            f"checksum mismatch: received 0x{received:04X}, computed 0x{computed:04X}"
        )
        self.received = received
        self.computed = computed


@dataclass(frozen=True)
class Frame:
    """A decoded protocol frame."""

    command: int
    payload: bytes
    checksum: int

    header = STX
    footer = ETX

    @property
    def length(self) -> int:
        return len(self.payload)

    def __repr__(self) -> str:
        return (
            f"Frame(command=0x{self.command:02X}, length={self.length}, "
            f"checksum=0x{self.checksum:04X})"
        )


def encode_frame(command: int, payload: bytes = b"") -> bytes:
    """
    Build a complete frame for one command.

    Args:
        command: Single-byte command code.
        payload: Command payload bytes.

    Returns:
        Encoded frame ready to be written to the socket.

    Raises:
        FrameTooLarge: If the payload exceeds 65535 bytes.
        ValueError: If the command does not fit in one byte.
    """
    if not 0 <= command <= 0xFF:
        raise ValueError(f"Command must be 0-255, got {command}")
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise FrameTooLarge(
            f"payload of {len(payload)} bytes exceeds {MAX_PAYLOAD_SIZE}"
        )

    checksum = crc16_ccitt(payload)
    return (
        struct.pack(">BBH", STX, command, len(payload))
        + payload
        + struct.pack(">HB", checksum, ETX)
    )


def frame_size(buffer: bytes) -> int | None:
    """
    Total size of the frame that starts at buffer[0], from its header.

    Returns None until the 4-byte header has arrived.
    """
    if len(buffer) < HEADER_SIZE:
        return None
    (length,) = struct.unpack_from(">H", buffer, 2)
    return HEADER_SIZE + length + TRAILER_SIZE


def decode_frame(data: bytes) -> Frame:
    """
    Parse and verify the frame at the start of data.

    Bytes after the end marker are ignored.

    Raises:
        IncompleteFrame: Fewer than 7 bytes, or fewer than the header announces.
        MalformedFrame: Wrong STX at offset 0 or wrong ETX after the checksum.
        ChecksumMismatch: CRC over the payload differs from the transmitted one.
    """
    if len(data) < MIN_FRAME_SIZE:
        raise IncompleteFrame(
            f"frame too short: {len(data)} bytes, minimum is {MIN_FRAME_SIZE}"
        )

    if data[0] != STX:
        raise MalformedFrame(f"bad start byte: expected 0x{STX:02X}, got 0x{data[0]:02X}")

    command, length = struct.unpack_from(">BH", data, 1)
    expected = HEADER_SIZE + length + TRAILER_SIZE
    if len(data) < expected:
        raise IncompleteFrame(
            f"length field announces {length} payload bytes, "
            f"frame needs {expected} bytes but only {len(data)} are available"
        )

    etx = data[HEADER_SIZE + length + 2]
    if etx != ETX:
        raise MalformedFrame(f"bad end byte: expected 0x{ETX:02X}, got 0x{etx:02X}")

    payload = bytes(data[HEADER_SIZE:HEADER_SIZE + length])
    (received,) = struct.unpack_from(">H", data, HEADER_SIZE + length)
    computed = crc16_ccitt(payload)
    if received != computed:
        raise ChecksumMismatch(received, computed)

    return Frame(command=command, payload=payload, checksum=received)


def describe_frame(data: bytes) -> dict:
    """
    Summarise a (possibly broken) frame for diagnostics.

    Never raises; fields that cannot be located are omitted.
    """
    info: dict = {"total_length": len(data)}
    if len(data) < MIN_FRAME_SIZE:
        info["error"] = "frame too short for analysis"
        return info

    command, length = struct.unpack_from(">BH", data, 1)
    info.update({
        "stx": f"0x{data[0]:02X}",
        "command": f"0x{command:02X}",
        "length": length,
    })
    end = HEADER_SIZE + length
    if len(data) >= end + TRAILER_SIZE:
        payload = data[HEADER_SIZE:end]
        info["payload"] = payload.hex()
        info["payload_text"] = payload.decode("utf-8", errors="replace")
        info["checksum"] = f"0x{struct.unpack_from('>H', data, end)[0]:04X}"
        info["etx"] = f"0x{data[end + 2]:02X}"

    try:
        decode_frame(data)
        info["valid"] = True
    except FrameError as e:
        info["valid"] = False
        info["error"] = str(e)
    return info
