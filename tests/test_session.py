from __future__ import annotations

import logging

import pytest

from serialxfer.errors import UserCancelled
from serialxfer.ratelimit import RateLimitConfig
from serialxfer.session import Role, TransferSession, TransferState, TransferStats


def test_escalation_happens_once():
    s = TransferSession(Role.SENDER)
    assert s.escalate_rate_limit() is True
    assert s.rate_limit == RateLimitConfig.DEGRADED
    assert s.escalate_rate_limit() is False


def test_escalation_does_not_touch_other_sessions():
    shared = RateLimitConfig(enabled=True, chunk_size=16, delay_ms=5)
    a = TransferSession(Role.SENDER, rate_limit=shared)
    b = TransferSession(Role.SENDER, rate_limit=shared)
    a.escalate_rate_limit()
    assert b.rate_limit == shared


def test_transition_logs_state_change(caplog):
    s = TransferSession(Role.RECEIVER)
    with caplog.at_level(logging.DEBUG):
        s.transition(TransferState.SEND_HANDSHAKE)
    assert "receiver: idle -> send-handshake" in caplog.text
    assert s.state is TransferState.SEND_HANDSHAKE


def test_report_notifies_listener():
    seen = []
    s = TransferSession(Role.SENDER, on_update=lambda sess: seen.append((sess.status, sess.progress)))
    s.report("Sending block 2...", 43)
    assert seen == [("Sending block 2...", 43)]


def test_cancel_request():
    s = TransferSession(Role.SENDER)
    s.check_cancelled()
    s.request_cancel()
    with pytest.raises(UserCancelled):
        s.check_cancelled()


def test_stats_throughput():
    stats = TransferStats(bytes_transferred=1000, start_ts=10.0, end_ts=12.0)
    assert stats.duration_s == 2.0
    assert stats.throughput_kbps == 4.0
    assert TransferStats().throughput_kbps == 0.0
