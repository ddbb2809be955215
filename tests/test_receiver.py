from __future__ import annotations

import pytest

from helpers import FailingLink, PeerSender, ScriptedLink
from serialxfer import receiver as receiver_mod
from serialxfer.constants import ACK, CAN, CRC_REQUEST, EOT, NAK, PAD_BYTE
from serialxfer.errors import (
    BlockSequenceError,
    HandshakeTimeout,
    LinkWriteFailure,
    TransferTimeout,
    UserCancelled,
)
from serialxfer.packet import build_packet
from serialxfer.receiver import XmodemReceiver
from serialxfer.session import TransferState

EOT_BYTE = bytes([EOT])


def byte(b: int) -> bytes:
    return bytes([b])


def test_receives_blocks_until_eot():
    pkt1 = build_packet(1, b"a" * 128, True)
    pkt2 = build_packet(2, b"tail", True)
    link = ScriptedLink(respond=PeerSender([pkt1, pkt2, EOT_BYTE]))
    receiver = XmodemReceiver(link)

    data = receiver.run()

    assert data == b"a" * 128 + b"tail" + bytes([PAD_BYTE]) * 124
    assert link.writes == [byte(CRC_REQUEST), byte(ACK), byte(ACK), byte(ACK)]
    assert receiver.session.state is TransferState.COMPLETE
    assert receiver.stats.blocks == 2
    assert link.handler is None


def test_duplicate_block_is_acked_not_stored():
    pkt1 = build_packet(1, b"one", True)
    link = ScriptedLink(respond=PeerSender([pkt1, pkt1, EOT_BYTE]))

    data = XmodemReceiver(link).run()

    assert len(data) == 128
    assert link.writes == [byte(CRC_REQUEST), byte(ACK), byte(ACK), byte(ACK)]


def test_crc_mismatch_naks_and_accepts_resend():
    good = build_packet(1, b"data", True)
    bad = bytearray(good)
    bad[10] ^= 0x01
    link = ScriptedLink(respond=PeerSender([bytes(bad), good, EOT_BYTE]))
    receiver = XmodemReceiver(link)

    data = receiver.run()

    assert data[:4] == b"data"
    assert link.writes == [byte(CRC_REQUEST), byte(NAK), byte(ACK), byte(ACK)]
    assert receiver.stats.retransmits == 1


def test_out_of_sequence_block_cancels():
    pkt3 = build_packet(3, b"x", True)
    link = ScriptedLink(respond=PeerSender([pkt3]))
    receiver = XmodemReceiver(link)

    with pytest.raises(BlockSequenceError) as excinfo:
        receiver.run()

    assert (excinfo.value.expected, excinfo.value.received) == (1, 3)
    assert link.writes == [byte(CRC_REQUEST), byte(CAN)]
    assert receiver.session.state is TransferState.FAILED
    assert link.handler is None


def test_bad_inverse_byte_cancels():
    pkt = bytearray(build_packet(1, b"x", True))
    pkt[2] = 0x00
    link = ScriptedLink(respond=PeerSender([bytes(pkt)]))
    with pytest.raises(BlockSequenceError):
        XmodemReceiver(link).run()
    assert link.writes[-1] == byte(CAN)


def test_noise_before_block_is_ignored():
    pkt1 = build_packet(1, b"z", True)
    link = ScriptedLink(respond=PeerSender([b"\xff\x00\x7f" + pkt1, EOT_BYTE]))
    data = XmodemReceiver(link).run()
    assert data[:1] == b"z"


def test_handshake_retried_ten_times_then_fails(monkeypatch):
    monkeypatch.setattr(receiver_mod, "RECEIVE_TIMEOUT_MS", 10)
    link = ScriptedLink()
    receiver = XmodemReceiver(link)

    with pytest.raises(HandshakeTimeout):
        receiver.run()

    assert link.writes == [byte(CRC_REQUEST)] * 11
    assert receiver.session.state is TransferState.FAILED


def test_late_sender_answers_handshake_retry(monkeypatch):
    monkeypatch.setattr(receiver_mod, "RECEIVE_TIMEOUT_MS", 10)
    pkt1 = build_packet(1, b"late", True)
    link = ScriptedLink(respond=PeerSender([b"", b"", pkt1, EOT_BYTE]))

    data = XmodemReceiver(link).run()

    assert data[:4] == b"late"
    assert link.writes[:3] == [byte(CRC_REQUEST)] * 3


def test_timeout_after_first_block_is_fatal(monkeypatch):
    monkeypatch.setattr(receiver_mod, "RECEIVE_TIMEOUT_MS", 10)
    pkt1 = build_packet(1, b"only", True)
    link = ScriptedLink(respond=PeerSender([pkt1]))

    with pytest.raises(TransferTimeout):
        XmodemReceiver(link).run()

    assert link.writes == [byte(CRC_REQUEST), byte(ACK)]


def test_block_numbers_wrap_after_255():
    script = [build_packet(n, bytes([n & 0xFF]), True) for n in range(1, 258)] + [EOT_BYTE]
    link = ScriptedLink(respond=PeerSender(script))

    data = XmodemReceiver(link).run()

    assert len(data) == 257 * 128
    assert data[255 * 128] == 0x00  # block 256 travels as number 0
    assert data[256 * 128] == 0x01


def test_cancel_request_sends_can():
    link = ScriptedLink()
    receiver = XmodemReceiver(link)
    receiver.session.request_cancel()

    with pytest.raises(UserCancelled):
        receiver.run()

    assert link.writes == [byte(CRC_REQUEST), bytes([CAN, CAN])]


def test_ack_write_failure_aborts():
    pkt1 = build_packet(1, b"x", True)
    link = FailingLink(fail_on=2, respond=PeerSender([pkt1]))
    receiver = XmodemReceiver(link)

    with pytest.raises(LinkWriteFailure, match="port gone"):
        receiver.run()

    assert link.writes == [byte(CRC_REQUEST)]
    assert receiver.session.state is TransferState.FAILED
    assert link.handler is None


def test_failed_can_write_still_ends_failed():
    link = FailingLink(fail_on=2)
    receiver = XmodemReceiver(link)
    receiver.session.request_cancel()

    with pytest.raises(LinkWriteFailure) as info:
        receiver.run()

    assert isinstance(info.value.__context__, UserCancelled)
    assert receiver.session.state is TransferState.FAILED
    assert link.writes == [byte(CRC_REQUEST)]
    assert link.handler is None
