"""CRC16-CCITT checksum used by the controller wire protocol"""

CRC16_POLY = 0x1021
CRC16_INIT = 0xFFFF


def crc16_ccitt(data: bytes, initial: int = CRC16_INIT) -> int:
    """
    Compute CRC16-CCITT (poly 0x1021, MSB-first, no final XOR).

    Bitwise implementation; price frames are a few hundred bytes at most.

    Args:
        data: Bytes to checksum (the frame payload only).
        initial: Starting register value (default: 0xFFFF).

    Returns:
        16-bit checksum as int.
    """
    crc = initial
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ CRC16_POLY) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc
