from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple

import serial
from serial.tools import list_ports as _list_ports

from .constants import DEFAULT_BAUDRATE
from .errors import LinkWriteFailure
from .formatters import to_ascii, to_hex

DataHandler = Callable[[bytes], None]


class Link(Protocol):
    def write(self, data: bytes) -> None: ...

    def set_data_handler(self, handler: Optional[DataHandler]) -> None: ...


class _Dispatcher:
    """Routes inbound chunks to the claimed handler, or logs them."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handler: Optional[DataHandler] = None
        self._lock = threading.Lock()

    def set_data_handler(self, handler: Optional[DataHandler]) -> None:
        with self._lock:
            self._handler = handler

    @property
    def claimed(self) -> bool:
        return self._handler is not None

    def dispatch(self, data: bytes) -> None:
        with self._lock:
            handler = self._handler
        if handler is not None:
            handler(data)
        else:
            logging.info("[%s] RX %s | %s", self.name, to_hex(data), to_ascii(data))


@dataclass(frozen=True, slots=True)
class Impairment:
    loss_rate: float = 0.0
    corrupt_rate: float = 0.0
    delay_ms: int = 0
    rng: random.Random = field(default_factory=random.Random, compare=False)

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and self.rng.random() < self.loss_rate

    def corrupt(self, data: bytes) -> bytes:
        if not data or self.corrupt_rate <= 0 or self.rng.random() >= self.corrupt_rate:
            return data
        out = bytearray(data)
        i = self.rng.randrange(len(out))
        out[i] ^= 1 << self.rng.randrange(8)
        return bytes(out)

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class MemoryLink:
    """One end of an in-process link; bytes written here arrive at the peer."""

    def __init__(self, name: str = "mem", impairment: Impairment | None = None):
        self._dispatcher = _Dispatcher(name)
        self.impairment = impairment or Impairment()
        self.peer: Optional["MemoryLink"] = None
        self.closed = False

    @classmethod
    def pair(
        cls,
        impairment: Impairment | None = None,
        names: Tuple[str, str] = ("a", "b"),
    ) -> Tuple["MemoryLink", "MemoryLink"]:
        a = cls(names[0], impairment)
        b = cls(names[1], impairment)
        a.peer, b.peer = b, a
        return a, b

    @property
    def claimed(self) -> bool:
        return self._dispatcher.claimed

    def set_data_handler(self, handler: Optional[DataHandler]) -> None:
        self._dispatcher.set_data_handler(handler)

    def write(self, data: bytes) -> None:
        if self.closed or self.peer is None:
            raise LinkWriteFailure(f"[{self._dispatcher.name}] link is not connected")
        logging.debug("[%s] TX %s", self._dispatcher.name, to_hex(data))
        if self.impairment.should_drop():
            logging.debug("[%s] DROPPED outbound %d bytes", self._dispatcher.name, len(data))
            return
        self.impairment.sleep_if_needed()
        self.peer._dispatcher.dispatch(self.impairment.corrupt(data))

    def close(self) -> None:
        self.closed = True


class SerialLink:
    """A pyserial port with a background reader thread feeding the dispatcher."""

    def __init__(self, ser: serial.Serial, name: str | None = None):
        self.ser = ser
        self._dispatcher = _Dispatcher(name or ser.port or "serial")
        self._stop = threading.Event()
        self._reader = threading.Thread(target=self._read_loop, name="serialxfer-reader", daemon=True)
        self._reader.start()

    @classmethod
    def open(
        cls,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        bytesize: int = serial.EIGHTBITS,
        parity: str = serial.PARITY_NONE,
        stopbits: float = serial.STOPBITS_ONE,
        rtscts: bool = False,
        read_timeout_s: float = 0.1,
    ) -> "SerialLink":
        ser = serial.Serial(
            port=port,
            baudrate=baudrate,
            bytesize=bytesize,
            parity=parity,
            stopbits=stopbits,
            rtscts=rtscts,
            timeout=read_timeout_s,
        )
        logging.info("opened %s at %d baud", port, baudrate)
        return cls(ser)

    @property
    def claimed(self) -> bool:
        return self._dispatcher.claimed

    def set_data_handler(self, handler: Optional[DataHandler]) -> None:
        self._dispatcher.set_data_handler(handler)

    def write(self, data: bytes) -> None:
        try:
            self.ser.write(data)
            self.ser.flush()
        except serial.SerialException as exc:
            raise LinkWriteFailure(f"write to {self.ser.port} failed: {exc}") from exc
        logging.debug("[%s] TX %s", self.ser.port, to_hex(data))

    def _read_loop(self) -> None:
        while not self._stop.is_set():
            try:
                data = self.ser.read(self.ser.in_waiting or 1)
            except (serial.SerialException, OSError) as exc:
                if not self._stop.is_set():
                    logging.error("read from %s failed: %s", self.ser.port, exc)
                return
            if data:
                self._dispatcher.dispatch(data)

    def close(self) -> None:
        self._stop.set()
        self._reader.join(timeout=1.0)
        self.ser.close()
        logging.info("closed %s", self.ser.port)

    def __enter__(self) -> "SerialLink":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def list_ports() -> List[Tuple[str, str]]:
    return [(p.device, p.description) for p in sorted(_list_ports.comports())]
