from __future__ import annotations

from dataclasses import dataclass

from .constants import BLOCK_SIZE, CRC16_POLY, PAD_BYTE, SOH


def checksum(data: bytes) -> int:
    return sum(data) & 0xFF


def crc16(data: bytes) -> int:
    """CRC-16/XMODEM: poly 0x1021, init 0, MSB-first, no reflection or final xor."""
    crc = 0
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ CRC16_POLY) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


def pad_block(chunk: bytes) -> bytes:
    if len(chunk) > BLOCK_SIZE:
        raise ValueError(f"chunk too large: {len(chunk)} > {BLOCK_SIZE}")
    return bytes(chunk) + bytes([PAD_BYTE]) * (BLOCK_SIZE - len(chunk))


def validate_header(block_number: int, inverse: int) -> bool:
    return (block_number + inverse) & 0xFF == 0xFF


def verify_length(use_crc: bool) -> int:
    return 2 if use_crc else 1


@dataclass(frozen=True, slots=True)
class Block:
    block_number: int
    data: bytes
    use_crc: bool

    @property
    def verify_value(self) -> int:
        return crc16(self.data) if self.use_crc else checksum(self.data)

    def matches(self, received: int) -> bool:
        return self.verify_value == received

    def to_bytes(self) -> bytes:
        n = self.block_number & 0xFF
        header = bytes([SOH, n, (~n) & 0xFF])
        value = self.verify_value
        if self.use_crc:
            trailer = bytes([(value >> 8) & 0xFF, value & 0xFF])
        else:
            trailer = bytes([value])
        return header + self.data + trailer

    @staticmethod
    def outbound(block_number: int, chunk: bytes, use_crc: bool) -> "Block":
        return Block(block_number=block_number & 0xFF, data=pad_block(chunk), use_crc=use_crc)


def build_packet(block_number: int, chunk: bytes, use_crc: bool) -> bytes:
    return Block.outbound(block_number, chunk, use_crc).to_bytes()
