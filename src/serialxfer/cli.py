from __future__ import annotations

import argparse
import json
import logging
import time
from dataclasses import asdict
from typing import Any, Dict

import serial

from .bench import run_benchmark
from .constants import DEFAULT_BAUDRATE, DEFAULT_CHUNK_SIZE, DEFAULT_DELAY_MS
from .controller import TransferController, TransferResult
from .formatters import parse_hex
from .link import SerialLink, list_ports
from .ratelimit import RateLimitConfig


def _emit(payload: Dict[str, Any], as_json: bool) -> None:
    print(json.dumps(payload, indent=2, default=str) if as_json else payload)


def _rate_limit(args: argparse.Namespace) -> RateLimitConfig:
    return RateLimitConfig(enabled=args.rate_limit, chunk_size=args.chunk_size, delay_ms=args.chunk_delay_ms)


def _open_link(args: argparse.Namespace) -> SerialLink:
    return SerialLink.open(
        args.port,
        baudrate=args.baud,
        bytesize=args.data_bits,
        parity=args.parity,
        stopbits=args.stop_bits,
        rtscts=args.flow_control == "hardware",
    )


def _hex_arg(value: str) -> bytes:
    try:
        data = parse_hex(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
    if not data:
        raise argparse.ArgumentTypeError("nothing to send")
    return data


def _text_arg(value: str) -> str:
    if not value:
        raise argparse.ArgumentTypeError("nothing to send")
    return value


def _result_payload(result: TransferResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"role": result.role.value, "ok": result.ok, "status": result.status}
    if result.stats is not None:
        payload.update(
            blocks=result.stats.blocks,
            bytes=result.stats.bytes_transferred,
            seconds=result.stats.duration_s,
            kbps=result.stats.throughput_kbps,
            timeouts=result.stats.timeouts,
            retransmits=result.stats.retransmits,
        )
    if result.rate_limit is not None:
        payload["rate_limit"] = {
            "enabled": result.rate_limit.enabled,
            "chunk_size": result.rate_limit.chunk_size,
            "delay_ms": result.rate_limit.delay_ms,
        }
    if result.saved_to is not None:
        payload["saved_to"] = str(result.saved_to)
    if result.responded is not None:
        payload["responded"] = result.responded
    return payload


def cmd_ports(args: argparse.Namespace) -> int:
    ports = [{"device": device, "description": desc} for device, desc in list_ports()]
    if args.json:
        print(json.dumps(ports, indent=2))
    else:
        for p in ports:
            print(f"{p['device']}\t{p['description']}")
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    with _open_link(args) as link:
        result = TransferController(link, rate_limit=_rate_limit(args)).upload(args.file)
    _emit(_result_payload(result), args.json)
    return 0 if result.ok else 1


def cmd_recv(args: argparse.Namespace) -> int:
    with _open_link(args) as link:
        result = TransferController(link, rate_limit=_rate_limit(args)).download(args.out)
    _emit(_result_payload(result), args.json)
    return 0 if result.ok else 1


def cmd_cancel(args: argparse.Namespace) -> int:
    with _open_link(args) as link:
        result = TransferController(link).cancel()
    _emit(_result_payload(result), args.json)
    return 0 if result.ok else 1


def cmd_write(args: argparse.Namespace) -> int:
    data = args.hex if args.hex is not None else args.text.encode("utf-8")
    with _open_link(args) as link:
        result = TransferController(link, rate_limit=_rate_limit(args)).send_raw(data)
        if result.ok and args.listen_s > 0:
            logging.info("monitoring %s for %.1fs", args.port, args.listen_s)
            time.sleep(args.listen_s)
    payload = _result_payload(result)
    payload["bytes"] = len(data)
    _emit(payload, args.json)
    return 0 if result.ok else 1


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(
        size_bytes=args.size_bytes,
        loss_rate=args.loss_rate,
        corrupt_rate=args.corrupt_rate,
        delay_ms=args.delay_ms,
        rate_limit=_rate_limit(args),
        seed=args.seed,
    )
    payload = {"role": "bench", **asdict(r)}
    _emit(payload, args.json)
    return 0 if r.payload_ok else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="serialxfer", description="XMODEM file transfer over a serial link.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_output(x: argparse.ArgumentParser) -> None:
        x.add_argument("--json", action="store_true")

    def add_rate_limit(x: argparse.ArgumentParser) -> None:
        x.add_argument("--rate-limit", action="store_true", help="throttle writes into chunks")
        x.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
        x.add_argument("--chunk-delay-ms", type=int, default=DEFAULT_DELAY_MS)

    def add_serial(x: argparse.ArgumentParser) -> None:
        x.add_argument("--port", required=True)
        x.add_argument("--baud", type=int, default=DEFAULT_BAUDRATE)
        x.add_argument("--data-bits", type=int, choices=[7, 8], default=serial.EIGHTBITS)
        x.add_argument("--stop-bits", type=int, choices=[1, 2], default=serial.STOPBITS_ONE)
        x.add_argument(
            "--parity",
            choices=[serial.PARITY_NONE, serial.PARITY_EVEN, serial.PARITY_ODD],
            default=serial.PARITY_NONE,
        )
        x.add_argument("--flow-control", choices=["none", "hardware"], default="none")

    ports = sub.add_parser("ports", help="list serial ports")
    add_output(ports)
    ports.set_defaults(func=cmd_ports)

    send = sub.add_parser("send", help="send a file with XMODEM")
    add_serial(send)
    add_rate_limit(send)
    add_output(send)
    send.add_argument("--file", required=True)
    send.set_defaults(func=cmd_send)

    recv = sub.add_parser("recv", help="receive a file with XMODEM")
    add_serial(recv)
    add_rate_limit(recv)
    add_output(recv)
    recv.add_argument("--out", default=None, help="defaults to ./received_file.bin")
    recv.set_defaults(func=cmd_recv)

    cancel = sub.add_parser("cancel", help="send CAN until the remote end responds")
    add_serial(cancel)
    add_output(cancel)
    cancel.set_defaults(func=cmd_cancel)

    write = sub.add_parser("write", help="send raw text or hex through the rate limiter, then log replies")
    add_serial(write)
    add_rate_limit(write)
    add_output(write)
    data = write.add_mutually_exclusive_group(required=True)
    data.add_argument("--text", type=_text_arg)
    data.add_argument("--hex", type=_hex_arg, help="e.g. \"AA BB CC\"")
    write.add_argument("--listen-s", type=float, default=0.0, help="keep the port open and log RX for this long")
    write.set_defaults(func=cmd_write)

    bench = sub.add_parser("bench", help="in-memory loopback transfer with simulated impairment")
    add_rate_limit(bench)
    add_output(bench)
    bench.add_argument("--size-bytes", type=int, default=64 * 1024)
    bench.add_argument("--loss-rate", type=float, default=0.0)
    bench.add_argument("--corrupt-rate", type=float, default=0.0)
    bench.add_argument("--delay-ms", type=int, default=0)
    bench.add_argument("--seed", type=int, default=None)
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
