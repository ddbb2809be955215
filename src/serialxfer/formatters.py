from __future__ import annotations

import re

from .constants import ACK, CAN, CRC_REQUEST, EOT, NAK, SOH

_NON_PRINTABLE = re.compile(r"[\x00-\x09\x0b\x0c\x0e-\x1f\x7f]")

_CONTROL_NAMES = {SOH: "SOH", EOT: "EOT", ACK: "ACK", NAK: "NAK", CAN: "CAN", CRC_REQUEST: "C"}


def to_hex(data: bytes) -> str:
    return " ".join(f"{b:02X}" for b in data)


def to_ascii(data: bytes) -> str:
    # \n and \r are kept so line-oriented device output stays readable
    return _NON_PRINTABLE.sub(".", data.decode("utf-8", errors="replace"))


def describe_byte(byte: int) -> str:
    return _CONTROL_NAMES.get(byte, f"0x{byte:02x}")


def parse_hex(text: str) -> bytes:
    """Parse ``"AA BB cc"`` style input; whitespace between digits is ignored."""
    clean = re.sub(r"\s+", "", text)
    if len(clean) % 2 != 0:
        raise ValueError(f"invalid hex string: odd number of digits ({len(clean)})")
    try:
        return bytes.fromhex(clean)
    except ValueError as exc:
        raise ValueError(f"invalid hex string: {text!r}") from exc
