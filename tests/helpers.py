from __future__ import annotations

from collections import Counter
from typing import Callable, Dict, List, Optional, Tuple

from serialxfer.constants import ACK, EOT
from serialxfer.errors import LinkWriteFailure


class ScriptedLink:
    """Link double: records writes and lets a responder answer synchronously."""

    def __init__(self, on_claim: bytes = b"", respond: Optional[Callable[[bytes], bytes]] = None):
        self.on_claim = on_claim
        self.respond = respond
        self.writes: List[bytes] = []
        self.handler = None
        self.handler_history: list = []

    def set_data_handler(self, handler) -> None:
        self.handler = handler
        self.handler_history.append(handler)
        if handler is not None and self.on_claim:
            handler(self.on_claim)

    def write(self, data: bytes) -> None:
        self.writes.append(bytes(data))
        if self.respond is not None:
            reply = self.respond(bytes(data))
            if reply and self.handler is not None:
                self.handler(reply)

    @property
    def written(self) -> bytes:
        return b"".join(self.writes)


class FailingLink(ScriptedLink):
    """ScriptedLink whose ``fail_on``-th write (1-based) raises LinkWriteFailure."""

    def __init__(self, fail_on: int, **kwargs):
        super().__init__(**kwargs)
        self.fail_on = fail_on
        self.attempted = 0

    def write(self, data: bytes) -> None:
        self.attempted += 1
        if self.attempted == self.fail_on:
            raise LinkWriteFailure("port gone")
        super().write(data)


class PeerReceiver:
    """Reassembles packets written by a sender and replies per block attempt."""

    def __init__(
        self,
        use_crc: bool = True,
        replies: Dict[Tuple[int, int], Optional[int]] | None = None,
        eot_reply: Optional[int] = ACK,
    ):
        self.size = 133 if use_crc else 132
        self.replies = replies or {}
        self.eot_reply = eot_reply
        self.pending = bytearray()
        self.packets: List[bytes] = []
        self.attempts: Counter = Counter()
        self.eots = 0

    def __call__(self, data: bytes) -> bytes:
        self.pending += data
        if self.pending[:1] == bytes([EOT]):
            del self.pending[:1]
            self.eots += 1
            return bytes([self.eot_reply]) if self.eot_reply is not None else b""
        if len(self.pending) < self.size:
            return b""
        packet = bytes(self.pending[: self.size])
        del self.pending[: self.size]
        self.packets.append(packet)
        number = packet[1]
        self.attempts[number] += 1
        reply = self.replies.get((number, self.attempts[number]), ACK)
        return bytes([reply]) if reply is not None else b""


class PeerSender:
    """Feeds scripted chunks to a receiver, one per write the receiver makes."""

    def __init__(self, script: List[bytes]):
        self.script = list(script)

    def __call__(self, data: bytes) -> bytes:
        return self.script.pop(0) if self.script else b""


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
