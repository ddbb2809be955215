from __future__ import annotations

import logging
import os
import random
import threading
import time
from dataclasses import dataclass
from typing import Dict

from .errors import XmodemError
from .link import Impairment, MemoryLink
from .ratelimit import RateLimitConfig
from .receiver import XmodemReceiver
from .sender import XmodemSender
from .session import Role, TransferSession


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    bytes_transferred: int
    blocks: int
    duration_s: float
    throughput_kbps: float
    retransmits: int
    timeouts: int
    payload_ok: bool
    final_rate_limit: str
    status: str = "ok"


def run_benchmark(
    *,
    size_bytes: int,
    loss_rate: float = 0.0,
    corrupt_rate: float = 0.0,
    delay_ms: int = 0,
    rate_limit: RateLimitConfig | None = None,
    seed: int | None = None,
) -> BenchmarkResult:
    payload = os.urandom(size_bytes)
    impair = Impairment(
        loss_rate=loss_rate,
        corrupt_rate=corrupt_rate,
        delay_ms=delay_ms,
        rng=random.Random(seed),
    )
    send_link, recv_link = MemoryLink.pair(impair, names=("sender", "receiver"))
    sender = XmodemSender(
        send_link,
        payload,
        session=TransferSession(Role.SENDER, rate_limit=rate_limit or RateLimitConfig()),
    )
    receiver = XmodemReceiver(recv_link)

    errors: Dict[str, XmodemError] = {}
    received = b""

    def send_runner() -> None:
        try:
            sender.run()
        except XmodemError as exc:
            errors["sender"] = exc

    t = threading.Thread(target=send_runner, daemon=True)
    t.start()
    while not send_link.claimed and t.is_alive():
        time.sleep(0.001)

    try:
        received = receiver.run()
    except XmodemError as exc:
        errors["receiver"] = exc
    finally:
        t.join(timeout=30.0)
        send_link.close()
        recv_link.close()

    status = "ok"
    for side, exc in errors.items():
        logging.warning("bench %s failed: %s", side, exc)
    if errors:
        # the side that gave up first explains the failure
        side, exc = next(iter(errors.items()))
        status = f"Error: {side}: {exc}"

    stats = sender.stats
    cfg = sender.session.rate_limit
    return BenchmarkResult(
        bytes_transferred=size_bytes,
        blocks=stats.blocks,
        duration_s=stats.duration_s,
        throughput_kbps=stats.throughput_kbps,
        retransmits=stats.retransmits,
        timeouts=stats.timeouts,
        payload_ok=not errors and received[:size_bytes] == payload,
        final_rate_limit=f"enabled={cfg.enabled} chunk={cfg.chunk_size} delay={cfg.delay_ms}ms",
        status=status,
    )
