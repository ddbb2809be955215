from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, ClassVar, Optional, Tuple

from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DELAY_MS,
    DEGRADED_CHUNK_SIZE,
    DEGRADED_DELAY_MS,
)

Writer = Callable[[bytes], None]
ProgressCallback = Callable[[int, int], None]


def send_with_rate_limit(
    write: Writer,
    data: bytes,
    chunk_size: int,
    delay_ms: int,
    on_progress: Optional[ProgressCallback] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Write ``data`` in chunks of ``chunk_size`` with ``delay_ms`` between them.

    A non-positive chunk size disables rate limiting: the whole buffer goes out
    in one write. Errors raised by ``write`` abort the remaining chunks.
    """
    total = len(data)
    if chunk_size <= 0 or delay_ms < 0:
        write(data)
        if on_progress is not None:
            on_progress(total, total)
        return

    offset = 0
    while offset < total:
        end = min(offset + chunk_size, total)
        write(data[offset:end])
        offset = end
        if on_progress is not None:
            on_progress(offset, total)
        if offset < total:
            sleep(delay_ms / 1000.0)


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    enabled: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE
    delay_ms: int = DEFAULT_DELAY_MS

    DEGRADED: ClassVar["RateLimitConfig"]

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {self.delay_ms}")

    @property
    def is_degraded(self) -> bool:
        return self == RateLimitConfig.DEGRADED

    def effective(self) -> Tuple[int, int]:
        if not self.enabled:
            return 0, 0
        return self.chunk_size, self.delay_ms

    def send(
        self,
        write: Writer,
        data: bytes,
        on_progress: Optional[ProgressCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        chunk_size, delay_ms = self.effective()
        send_with_rate_limit(write, data, chunk_size, delay_ms, on_progress=on_progress, sleep=sleep)


RateLimitConfig.DEGRADED = RateLimitConfig(
    enabled=True, chunk_size=DEGRADED_CHUNK_SIZE, delay_ms=DEGRADED_DELAY_MS
)
