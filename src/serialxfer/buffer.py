from __future__ import annotations

import threading
import time
from collections import deque

from .constants import BYTE_TIMEOUT_MS


class ByteTimeout(TimeoutError):
    pass


class ByteArrivalBuffer:
    """Single-producer, single-consumer byte queue.

    The link's reader thread calls :meth:`feed`; the transfer logic pulls one
    byte at a time with :meth:`wait_for_byte`. Only one waiter may be pending at
    any moment.
    """

    def __init__(self) -> None:
        self._bytes: deque[int] = deque()
        self._cond = threading.Condition()
        self._waiting = False

    def feed(self, chunk: bytes) -> None:
        if not chunk:
            return
        with self._cond:
            self._bytes.extend(chunk)
            self._cond.notify()

    def wait_for_byte(self, timeout_ms: int = BYTE_TIMEOUT_MS) -> int:
        with self._cond:
            if self._bytes:
                return self._bytes.popleft()
            if self._waiting:
                raise RuntimeError("wait_for_byte called while another wait is pending")
            self._waiting = True
            try:
                deadline = time.monotonic() + timeout_ms / 1000.0
                while not self._bytes:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise ByteTimeout(f"no byte within {timeout_ms} ms")
                    self._cond.wait(remaining)
                return self._bytes.popleft()
            finally:
                self._waiting = False

    def clear(self) -> None:
        with self._cond:
            self._bytes.clear()

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._bytes)
