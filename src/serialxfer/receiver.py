from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from .buffer import ByteArrivalBuffer, ByteTimeout
from .constants import (
    ACK,
    BLOCK_SIZE,
    BYTE_TIMEOUT_MS,
    CAN,
    CRC_REQUEST,
    EOT,
    MAX_HANDSHAKE_RETRIES,
    NAK,
    RECEIVE_TIMEOUT_MS,
    SOH,
)
from .errors import (
    BlockSequenceError,
    HandshakeTimeout,
    TransferTimeout,
    UserCancelled,
    VerifyMismatch,
    XmodemError,
)
from .link import Link
from .packet import Block, validate_header, verify_length
from .session import Role, TransferSession, TransferState, TransferStats, claim_link


@dataclass(slots=True)
class XmodemReceiver:
    link: Link
    session: TransferSession = field(default_factory=lambda: TransferSession(Role.RECEIVER))
    buffer: ByteArrivalBuffer = field(default_factory=ByteArrivalBuffer)
    stats: TransferStats = field(default_factory=TransferStats)
    blocks: List[bytes] = field(default_factory=list)

    @property
    def received(self) -> bytes:
        return b"".join(self.blocks)

    def run(self) -> bytes:
        s = self.session
        s.use_crc = True
        s.block_number = 1
        self.blocks.clear()

        with claim_link(self.link, self.buffer):
            try:
                s.transition(TransferState.SEND_HANDSHAKE)
                s.report("Ready to receive. Waiting for sender...", 0)
                self._send(CRC_REQUEST)
                self._receive_loop()
            except UserCancelled:
                s.transition(TransferState.CANCELLING)
                try:
                    self.link.write(bytes([CAN, CAN]))
                finally:
                    s.transition(TransferState.FAILED)
                raise
            except XmodemError:
                s.transition(TransferState.FAILED)
                raise

        self.stats.finish()
        s.transition(TransferState.COMPLETE)
        s.report("Download Complete!", 100)
        return self.received

    def _send(self, byte: int) -> None:
        self.link.write(bytes([byte]))

    def _receive_loop(self) -> None:
        s = self.session
        retries = 0
        while True:
            s.check_cancelled()
            s.transition(TransferState.AWAIT_BLOCK)
            try:
                byte = self.buffer.wait_for_byte(RECEIVE_TIMEOUT_MS)
                if byte == SOH:
                    self._receive_block()
                elif byte == EOT:
                    self._send(ACK)
                    return
                else:
                    logging.debug("ignored unexpected byte 0x%02x", byte)
            except ByteTimeout as exc:
                if self.blocks:
                    raise TransferTimeout(
                        f"sender went silent after block {len(self.blocks)}"
                    ) from exc
                if retries >= MAX_HANDSHAKE_RETRIES:
                    raise HandshakeTimeout(
                        f"no response from sender after {retries} handshake retries"
                    ) from exc
                retries += 1
                self.stats.timeouts += 1
                logging.warning(
                    "receive timeout (%s); retrying handshake %d/%d", exc, retries, MAX_HANDSHAKE_RETRIES
                )
                self._send(CRC_REQUEST if s.use_crc else NAK)

    def _receive_block(self) -> None:
        s = self.session
        wait = self.buffer.wait_for_byte

        s.transition(TransferState.READ_HEADER)
        number = wait(BYTE_TIMEOUT_MS)
        inverse = wait(BYTE_TIMEOUT_MS)

        s.transition(TransferState.READ_DATA)
        data = bytes(wait(BYTE_TIMEOUT_MS) for _ in range(BLOCK_SIZE))

        s.transition(TransferState.READ_VERIFY)
        trailer = bytes(wait(BYTE_TIMEOUT_MS) for _ in range(verify_length(s.use_crc)))
        received = int.from_bytes(trailer, "big")

        s.transition(TransferState.VALIDATE)
        expected = s.block_number
        if number != expected or not validate_header(number, inverse):
            if number == (expected - 1) & 0xFF:
                logging.debug("duplicate block %d; re-acknowledging", number)
                self._send(ACK)
                return
            self._send(CAN)
            raise BlockSequenceError(expected, number)

        block = Block(block_number=number, data=data, use_crc=s.use_crc)
        if not block.matches(received):
            mismatch = VerifyMismatch(number, block.verify_value, received)
            logging.warning("%s; requesting resend", mismatch)
            self.stats.retransmits += 1
            self._send(NAK)
            return

        self.blocks.append(data)
        self.stats.blocks += 1
        self.stats.bytes_transferred += len(data)
        s.block_number = (expected + 1) & 0xFF
        self._send(ACK)
        s.report(f"Received block {number}...")
