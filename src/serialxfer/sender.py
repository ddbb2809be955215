from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .buffer import ByteArrivalBuffer, ByteTimeout
from .constants import (
    ACK,
    ACK_GRACE_MS,
    BLOCK_SIZE,
    CAN,
    CANCEL_ATTEMPTS,
    CANCEL_INTERVAL_MS,
    CRC_REQUEST,
    EOT,
    HANDSHAKE_TIMEOUT_MS,
    MAX_BLOCK_RETRIES,
    NAK,
    RESPONSE_TIMEOUT_MS,
)
from .errors import (
    BlockRetriesExhausted,
    HandshakeTimeout,
    HandshakeUnexpectedByte,
    UserCancelled,
    XmodemError,
)
from .formatters import describe_byte
from .link import Link
from .packet import Block
from .session import Role, TransferSession, TransferState, TransferStats, claim_link


def percent(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return min(100, int(done * 100 / total + 0.5))


@dataclass(slots=True)
class XmodemSender:
    link: Link
    data: bytes
    session: TransferSession = field(default_factory=lambda: TransferSession(Role.SENDER))
    buffer: ByteArrivalBuffer = field(default_factory=ByteArrivalBuffer)
    sleep: Callable[[float], None] = time.sleep
    stats: TransferStats = field(default_factory=TransferStats)

    def run(self) -> TransferStats:
        s = self.session
        with claim_link(self.link, self.buffer):
            try:
                self._handshake()
                self._send_blocks()
                self._finish()
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
        s.report("Transfer Complete!", 100)
        return self.stats

    def _handshake(self) -> None:
        s = self.session
        s.transition(TransferState.AWAIT_HANDSHAKE)
        s.report("Waiting for receiver (C)...", 0)
        try:
            first = self.buffer.wait_for_byte(HANDSHAKE_TIMEOUT_MS)
        except ByteTimeout as exc:
            raise HandshakeTimeout("handshake timed out; ensure receiver is ready") from exc

        if first == CRC_REQUEST:
            s.use_crc = True
            s.report("Receiver requested CRC. Sending...")
        elif first == NAK:
            s.use_crc = False
            s.report("Receiver requested Checksum. Sending...")
        else:
            raise HandshakeUnexpectedByte(first)

    def _send_blocks(self) -> None:
        s = self.session
        total = len(self.data)
        offset = 0
        s.block_number = 1
        while offset < total:
            chunk = self.data[offset : offset + BLOCK_SIZE]
            block = Block.outbound(s.block_number, chunk, s.use_crc)
            self._send_block(block.to_bytes())

            offset += BLOCK_SIZE
            self.stats.blocks += 1
            self.stats.bytes_transferred += len(chunk)
            s.block_number = (s.block_number + 1) & 0xFF
            s.report(f"Sending block {s.block_number}...", percent(offset, total))
            self.sleep(ACK_GRACE_MS / 1000.0)

    def _send_block(self, packet: bytes) -> None:
        s = self.session
        attempts = 0
        while attempts < MAX_BLOCK_RETRIES:
            s.check_cancelled()
            s.transition(TransferState.SENDING_BLOCK)
            s.rate_limit.send(self.link.write, packet, sleep=self.sleep)
            self.stats.packets_sent += 1

            s.transition(TransferState.AWAIT_ACK)
            response: Optional[int]
            try:
                response = self.buffer.wait_for_byte(RESPONSE_TIMEOUT_MS)
            except ByteTimeout:
                self.stats.timeouts += 1
                response = None

            if response == ACK:
                s.retry_count = 0
                return

            attempts += 1
            s.retry_count = attempts
            self.stats.retransmits += 1

            if response == CRC_REQUEST:
                s.report(f"Receiver sent C again. Retrying block {s.block_number}...")
                continue

            if response is None:
                reason = "Timeout"
            elif response == NAK:
                reason = "NAK received"
            else:
                reason = f"Unexpected {describe_byte(response)}"
            if s.escalate_rate_limit():
                s.report(f"{reason}. Retrying block {s.block_number} with rate limit...")
            else:
                s.report(f"{reason}. Retrying block {s.block_number}...")

        raise BlockRetriesExhausted(s.block_number, attempts)

    def _finish(self) -> None:
        s = self.session
        s.check_cancelled()
        s.transition(TransferState.SEND_EOT)
        self.link.write(bytes([EOT]))

        s.transition(TransferState.AWAIT_EOT_ACK)
        try:
            reply: Optional[int] = self.buffer.wait_for_byte(RESPONSE_TIMEOUT_MS)
        except ByteTimeout:
            reply = None
        if reply != ACK:
            # best-effort close: one more EOT, no second wait
            logging.debug(
                "EOT not acknowledged (%s); resending once",
                "timeout" if reply is None else describe_byte(reply),
            )
            self.link.write(bytes([EOT]))


def send_cancel(
    link: Link,
    session: TransferSession | None = None,
    buffer: ByteArrivalBuffer | None = None,
    sleep: Callable[[float], None] = time.sleep,
    attempts: int = CANCEL_ATTEMPTS,
    interval_ms: int = CANCEL_INTERVAL_MS,
) -> bool:
    """Send CAN until the far end answers with anything, or ``attempts`` run out.

    Returns True if a response was observed.
    """
    s = session or TransferSession(Role.CANCEL)
    buf = buffer or ByteArrivalBuffer()
    s.transition(TransferState.CANCELLING)
    s.report("Sending Cancel sequence...")

    responded = False
    with claim_link(link, buf):
        try:
            for _ in range(attempts):
                if buf.pending:
                    responded = True
                    break
                link.write(bytes([CAN]))
                sleep(interval_ms / 1000.0)
            else:
                responded = buf.pending > 0
        except XmodemError:
            s.transition(TransferState.FAILED)
            raise

    s.transition(TransferState.COMPLETE)
    if responded:
        s.report("Remote responded. Cancel sequence stopped.")
    else:
        s.report("No response to Cancel sequence.")
    return responded
