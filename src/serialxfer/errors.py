from __future__ import annotations


class XmodemError(Exception):
    """Base class for transfer failures; str(exc) is the user-facing status."""


class HandshakeTimeout(XmodemError):
    pass


class HandshakeUnexpectedByte(XmodemError):
    def __init__(self, byte: int):
        super().__init__(f"unexpected handshake byte: 0x{byte:02x}")
        self.byte = byte


class BlockRetriesExhausted(XmodemError):
    def __init__(self, block_number: int, attempts: int):
        super().__init__(f"too many retries on block {block_number} ({attempts} attempts)")
        self.block_number = block_number
        self.attempts = attempts


class BlockSequenceError(XmodemError):
    def __init__(self, expected: int, received: int):
        super().__init__(f"block number mismatch: expected {expected}, got {received}")
        self.expected = expected
        self.received = received


class VerifyMismatch(XmodemError):
    def __init__(self, block_number: int, expected: int, received: int):
        super().__init__(
            f"verify mismatch on block {block_number}: expected 0x{expected:x}, got 0x{received:x}"
        )
        self.block_number = block_number
        self.expected = expected
        self.received = received


class LinkWriteFailure(XmodemError):
    pass


class UserCancelled(XmodemError):
    pass


class TransferInProgress(XmodemError):
    pass


class TransferTimeout(XmodemError):
    pass
