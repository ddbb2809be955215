"""Transfer lifecycle: one session per link, status/progress, and saving downloads."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from .buffer import ByteArrivalBuffer
from .constants import FALLBACK_FILENAME
from .errors import TransferInProgress, XmodemError
from .link import Link
from .ratelimit import RateLimitConfig
from .receiver import XmodemReceiver
from .sender import XmodemSender, percent, send_cancel
from .session import Role, StatusCallback, TransferSession, TransferState, TransferStats


@dataclass(frozen=True, slots=True)
class TransferResult:
    ok: bool
    status: str
    role: Role
    stats: TransferStats | None = None
    rate_limit: RateLimitConfig | None = None
    saved_to: Path | None = None
    responded: bool | None = None


@dataclass(slots=True)
class FileStorage:
    """Persists a received payload, falling back to ``received_file.bin``."""

    fallback_dir: Path = field(default_factory=Path.cwd)
    fallback_name: str = FALLBACK_FILENAME

    def save(self, data: bytes, path: Union[str, os.PathLike, None] = None) -> Path:
        if path is not None:
            target = Path(path)
            try:
                target.write_bytes(data)
                return target
            except OSError as exc:
                logging.warning(
                    "could not write %s (%s); falling back to %s", target, exc, self.fallback_name
                )
        target = Path(self.fallback_dir) / self.fallback_name
        target.write_bytes(data)
        return target


class TransferController:
    def __init__(
        self,
        link: Link,
        rate_limit: RateLimitConfig | None = None,
        storage: FileStorage | None = None,
        on_update: Optional[StatusCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.link = link
        self.rate_limit = rate_limit or RateLimitConfig()
        self.storage = storage or FileStorage()
        self.on_update = on_update
        self.sleep = sleep
        self.buffer = ByteArrivalBuffer()
        self._lock = threading.Lock()
        self._session: TransferSession | None = None
        self.last_session: TransferSession | None = None

    @property
    def busy(self) -> bool:
        return self._session is not None

    @property
    def status(self) -> str:
        session = self._session or self.last_session
        return session.status if session else ""

    @property
    def progress(self) -> int:
        session = self._session or self.last_session
        return session.progress if session else 0

    @property
    def last_rate_limit(self) -> RateLimitConfig | None:
        return self.last_session.rate_limit if self.last_session else None

    def _begin(self, role: Role) -> TransferSession:
        with self._lock:
            if self._session is not None:
                raise TransferInProgress(f"a {self._session.role.value} session is already active")
            self._session = TransferSession(role, rate_limit=self.rate_limit, on_update=self.on_update)
            return self._session

    def _end(self, session: TransferSession) -> None:
        with self._lock:
            self._session = None
            self.last_session = session

    def _fail(self, session: TransferSession, exc: XmodemError) -> str:
        session.transition(TransferState.FAILED)
        session.report(f"Error: {exc}")
        logging.error("%s failed: %s", session.role.value, exc)
        return session.status

    def request_cancel(self) -> bool:
        """Ask the active transfer to abort at its next suspend point."""
        session = self._session
        if session is None or session.role in (Role.CANCEL, Role.RAW):
            return False
        session.request_cancel()
        return True

    def upload(self, source: Union[bytes, str, os.PathLike]) -> TransferResult:
        data = source if isinstance(source, bytes) else Path(source).read_bytes()
        session = self._begin(Role.SENDER)
        try:
            sender = XmodemSender(self.link, data, session=session, buffer=self.buffer, sleep=self.sleep)
            logging.info("upload start; size=%d bytes", len(data))
            stats = sender.run()
            return TransferResult(True, session.status, Role.SENDER, stats, session.rate_limit)
        except XmodemError as exc:
            status = self._fail(session, exc)
            return TransferResult(False, status, Role.SENDER, None, session.rate_limit)
        finally:
            self._end(session)

    def download(self, out_path: Union[str, os.PathLike, None] = None) -> TransferResult:
        session = self._begin(Role.RECEIVER)
        try:
            receiver = XmodemReceiver(self.link, session=session, buffer=self.buffer)
            data = receiver.run()
            saved_to = self.storage.save(data, out_path)
            logging.info("download saved to %s (%d bytes)", saved_to, len(data))
            return TransferResult(True, session.status, Role.RECEIVER, receiver.stats, saved_to=saved_to)
        except XmodemError as exc:
            status = self._fail(session, exc)
            return TransferResult(False, status, Role.RECEIVER)
        finally:
            self._end(session)

    def cancel(self) -> TransferResult:
        """Run the CAN sequence; refused while a transfer is active."""
        session = self._begin(Role.CANCEL)
        try:
            responded = send_cancel(self.link, session=session, buffer=self.buffer, sleep=self.sleep)
            return TransferResult(True, session.status, Role.CANCEL, responded=responded)
        except XmodemError as exc:
            status = self._fail(session, exc)
            return TransferResult(False, status, Role.CANCEL)
        finally:
            self._end(session)

    def send_raw(self, data: bytes) -> TransferResult:
        """Write an arbitrary buffer through the rate limiter, outside any protocol.

        The link is not claimed, so replies keep flowing to the default RX log.
        """
        session = self._begin(Role.RAW)
        total = len(data)

        def on_progress(sent: int, _total: int) -> None:
            session.report(f"Sent {sent}/{total} bytes", percent(sent, total))

        try:
            session.transition(TransferState.SENDING_BLOCK)
            self.rate_limit.send(self.link.write, data, on_progress=on_progress, sleep=self.sleep)
            session.transition(TransferState.COMPLETE)
            return TransferResult(True, session.status, Role.RAW, rate_limit=self.rate_limit)
        except XmodemError as exc:
            status = self._fail(session, exc)
            return TransferResult(False, status, Role.RAW, rate_limit=self.rate_limit)
        finally:
            self._end(session)
