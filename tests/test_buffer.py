from __future__ import annotations

import threading
import time

import pytest

from serialxfer.buffer import ByteArrivalBuffer, ByteTimeout


def test_buffered_bytes_return_in_order():
    buf = ByteArrivalBuffer()
    buf.feed(b"\x01\x02")
    buf.feed(b"\x03")
    assert [buf.wait_for_byte(10) for _ in range(3)] == [1, 2, 3]
    assert buf.pending == 0


def test_timeout_raises():
    buf = ByteArrivalBuffer()
    start = time.monotonic()
    with pytest.raises(ByteTimeout):
        buf.wait_for_byte(50)
    assert time.monotonic() - start >= 0.04


def test_byte_timeout_is_a_timeout_error():
    assert issubclass(ByteTimeout, TimeoutError)


def test_waiter_woken_by_producer_thread():
    buf = ByteArrivalBuffer()
    t = threading.Timer(0.05, buf.feed, args=(b"\x06",))
    t.start()
    try:
        assert buf.wait_for_byte(2000) == 0x06
    finally:
        t.join()


def test_second_waiter_is_rejected():
    buf = ByteArrivalBuffer()
    started = threading.Event()
    result = {}

    def first():
        started.set()
        result["byte"] = buf.wait_for_byte(2000)

    t = threading.Thread(target=first)
    t.start()
    started.wait()
    time.sleep(0.05)
    with pytest.raises(RuntimeError):
        buf.wait_for_byte(10)
    buf.feed(b"\x15")
    t.join()
    assert result["byte"] == 0x15


def test_clear_drops_unread_bytes():
    buf = ByteArrivalBuffer()
    buf.feed(b"abc")
    buf.clear()
    assert buf.pending == 0
    with pytest.raises(ByteTimeout):
        buf.wait_for_byte(10)
