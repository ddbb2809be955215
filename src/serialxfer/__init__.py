"""XMODEM file transfer over a serial link.

Layered the same way as the rest of this codebase:
- packet framing and verification (checksum / CRC16) with no I/O
- a rate-limited chunked writer for receivers without flow control
- a byte arrival buffer the transfer claims while it owns the link
- sender and receiver state machines driven by per-byte timeouts
"""

from .controller import FileStorage, TransferController, TransferResult
from .link import MemoryLink, SerialLink
from .ratelimit import RateLimitConfig
from .receiver import XmodemReceiver
from .sender import XmodemSender, send_cancel

__all__ = [
    "FileStorage",
    "MemoryLink",
    "RateLimitConfig",
    "SerialLink",
    "TransferController",
    "TransferResult",
    "XmodemReceiver",
    "XmodemSender",
    "send_cancel",
]
