from __future__ import annotations

import enum
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from .buffer import ByteArrivalBuffer
from .errors import UserCancelled
from .link import Link
from .ratelimit import RateLimitConfig


class Role(enum.Enum):
    SENDER = "sender"
    RECEIVER = "receiver"
    CANCEL = "cancel"
    RAW = "raw"


class TransferState(enum.Enum):
    IDLE = "idle"
    # sender
    AWAIT_HANDSHAKE = "await-handshake"
    SENDING_BLOCK = "sending-block"
    AWAIT_ACK = "await-ack"
    SEND_EOT = "send-eot"
    AWAIT_EOT_ACK = "await-eot-ack"
    # receiver
    SEND_HANDSHAKE = "send-handshake"
    AWAIT_BLOCK = "await-block"
    READ_HEADER = "read-header"
    READ_DATA = "read-data"
    READ_VERIFY = "read-verify"
    VALIDATE = "validate"
    # terminal / any
    CANCELLING = "cancelling"
    COMPLETE = "complete"
    FAILED = "failed"


StatusCallback = Callable[["TransferSession"], None]


@dataclass(slots=True)
class TransferSession:
    role: Role
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    state: TransferState = TransferState.IDLE
    block_number: int = 1
    use_crc: bool = True
    retry_count: int = 0
    progress: int = 0
    status: str = ""
    on_update: Optional[StatusCallback] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def transition(self, state: TransferState) -> None:
        if state is not self.state:
            logging.debug("%s: %s -> %s", self.role.value, self.state.value, state.value)
            self.state = state

    def report(self, status: str | None = None, progress: int | None = None) -> None:
        if status is not None:
            self.status = status
            logging.info("%s: %s", self.role.value, status)
        if progress is not None:
            self.progress = progress
        if self.on_update is not None:
            self.on_update(self)

    def escalate_rate_limit(self) -> bool:
        """Switch to the degraded-link rate limit; True if it changed."""
        if self.rate_limit.is_degraded:
            return False
        self.rate_limit = RateLimitConfig.DEGRADED
        return True

    def request_cancel(self) -> None:
        self.cancel_event.set()

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise UserCancelled("transfer cancelled by user")


@contextmanager
def claim_link(link: Link, buffer: ByteArrivalBuffer) -> Iterator[ByteArrivalBuffer]:
    """Route the link's inbound bytes into ``buffer`` for the duration of the block."""
    buffer.clear()
    link.set_data_handler(buffer.feed)
    try:
        yield buffer
    finally:
        link.set_data_handler(None)
        buffer.clear()


@dataclass(slots=True)
class TransferStats:
    blocks: int = 0
    bytes_transferred: int = 0
    packets_sent: int = 0
    retransmits: int = 0
    timeouts: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    def finish(self) -> None:
        self.end_ts = time.monotonic()

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_kbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_transferred * 8 / 1000) / self.duration_s
