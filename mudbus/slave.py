"""A Modbus TCP slave holding a table of coils and 16-bit holding registers."""

from __future__ import annotations

import argparse
import logging
import socketserver
import threading
import time
from enum import IntEnum
from typing import Callable, Optional, Sequence

REGISTER_COUNT = 125
COIL_COUNT = 128
MB_PORT = 502
ACTIVITY_TIMEOUT = 60.0
MAX_FRAME = 260
_COUNTER_LIMIT = 999

log = logging.getLogger(__name__)


class FunctionCode(IntEnum):
    """Modbus function codes this slave answers."""

    NONE = 0
    READ_COILS = 1
    READ_REGISTERS = 3
    WRITE_COIL = 5
    WRITE_REGISTER = 6
    WRITE_MULTIPLE_COILS = 15
    WRITE_MULTIPLE_REGISTERS = 16


def _bump(counter: int) -> int:
    return 1 if counter >= _COUNTER_LIMIT else counter + 1


def _word(frame: bytes, offset: int) -> int:
    return int.from_bytes(frame[offset : offset + 2], "big")


def _check_range(start: int, quantity: int, size: int, what: str) -> None:
    if start + quantity > size:
        raise ValueError(
            f"{what} range {start}..{start + quantity - 1} is outside 0..{size - 1}"
        )


def _header(frame: bytes, following: int) -> bytearray:
    header = bytearray(frame[:8])
    header[5] = following & 0xFF
    return header


class Mudbus:
    """Modbus TCP slave state: registers, coils, activity and counters."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock if clock is not None else time.monotonic
        self.registers: list[int] = [0] * REGISTER_COUNT
        self.coils: list[bool] = [False] * COIL_COUNT
        self.active = False
        self.previous_activity_time = 0.0
        self.runs = 0
        self.reads = 0
        self.writes = 0

    def handle_request(self, request: bytes) -> Optional[bytes]:
        """Apply one request frame and return the response frame.

        Returns None for a function code this slave does not answer.
        Raises ValueError for a frame that is too short or too long, or
        that addresses coils or registers outside the tables.
        """
        frame = bytes(request)
        if len(frame) < 8:
            raise ValueError(f"frame of {len(frame)} bytes has no function code")
        if len(frame) > MAX_FRAME:
            raise ValueError(f"frame of {len(frame)} bytes exceeds {MAX_FRAME}")
        try:
            code = FunctionCode(frame[7])
        except ValueError:
            return None
        if code is FunctionCode.NONE:
            return None
        if len(frame) < 12:
            raise ValueError(f"frame of {len(frame)} bytes is too short for {code.name}")
        start = _word(frame, 8)
        quantity = _word(frame, 10)
        handlers = {
            FunctionCode.READ_COILS: self._read_coils,
            FunctionCode.READ_REGISTERS: self._read_registers,
            FunctionCode.WRITE_COIL: self._write_coil,
            FunctionCode.WRITE_REGISTER: self._write_register,
            FunctionCode.WRITE_MULTIPLE_COILS: self._write_multiple_coils,
            FunctionCode.WRITE_MULTIPLE_REGISTERS: self._write_multiple_registers,
        }
        return handlers[code](frame, start, quantity)

    def run(self, request: Optional[bytes] = None) -> Optional[bytes]:
        """Take one poll step, with the request received in it if any.

        Updates the counters and the activity flag and returns the
        response frame, or None when there is nothing to send.
        """
        self.runs = _bump(self.runs)
        now = self._clock()
        if request:
            self.reads = _bump(self.reads)
            if not self.active:
                self.active = True
                self.previous_activity_time = now
                log.debug("Mb active")
        if now > self.previous_activity_time + ACTIVITY_TIMEOUT and self.active:
            self.active = False
            log.debug("Mb not active")

        response = None
        if request:
            response = self.handle_request(request)
            if response is not None:
                self.writes = _bump(self.writes)
        log.debug("Mb runs: %d  reads: %d  writes: %d", self.runs, self.reads, self.writes)
        return response

    def serve(self, host: str = "", port: int = MB_PORT) -> None:
        """Answer Modbus TCP requests on *host*:*port* until interrupted."""
        slave = self
        lock = threading.Lock()

        class Handler(socketserver.StreamRequestHandler):
            def handle(self) -> None:
                while True:
                    header = self.rfile.read(6)
                    if len(header) < 6:
                        return
                    length = int.from_bytes(header[4:6], "big")
                    body = self.rfile.read(length)
                    if len(body) < length:
                        return
                    with lock:
                        try:
                            response = slave.run(header + body)
                        except ValueError as exc:
                            log.warning("dropped request: %s", exc)
                            continue
                    if response:
                        self.wfile.write(response)
                        self.wfile.flush()

        class Server(socketserver.ThreadingTCPServer):
            allow_reuse_address = True
            daemon_threads = True

        with Server((host, port), Handler) as server:
            log.info("Modbus slave listening on %s:%d", host or "*", port)
            server.serve_forever()

    def _coil(self, index: int) -> bool:
        return self.coils[index] if index < COIL_COUNT else False

    def _read_coils(self, frame: bytes, start: int, quantity: int) -> bytes:
        _check_range(start, quantity, COIL_COUNT, "coil")
        byte_count = -(-quantity // 8)
        data = bytes(
            sum(int(self._coil(start + i * 8 + bit)) << bit for bit in range(8))
            for i in range(byte_count)
        )
        log.debug(" MB_FC_READ_COILS S=%d L=%d", start, byte_count * 8)
        return bytes(_header(frame, byte_count + 3)) + bytes([byte_count & 0xFF]) + data

    def _read_registers(self, frame: bytes, start: int, quantity: int) -> bytes:
        _check_range(start, quantity, REGISTER_COUNT, "register")
        byte_count = quantity * 2
        data = b"".join(
            (value & 0xFFFF).to_bytes(2, "big")
            for value in self.registers[start : start + quantity]
        )
        log.debug(" MB_FC_READ_REGISTERS S=%d L=%d", start, quantity)
        return bytes(_header(frame, byte_count + 3)) + bytes([byte_count & 0xFF]) + data

    def _write_coil(self, frame: bytes, start: int, value: int) -> bytes:
        _check_range(start, 1, COIL_COUNT, "coil")
        self.coils[start] = value > 0
        log.debug(" MB_FC_WRITE_COIL C%d=%d", start, self.coils[start])
        return bytes(_header(frame, 2))

    def _write_register(self, frame: bytes, start: int, value: int) -> bytes:
        _check_range(start, 1, REGISTER_COUNT, "register")
        self.registers[start] = value
        log.debug(" MB_FC_WRITE_REGISTER R%d=%d", start, value)
        return bytes(_header(frame, 6)) + frame[8:12]

    def _write_multiple_coils(self, frame: bytes, start: int, quantity: int) -> bytes:
        _check_range(start, quantity, COIL_COUNT, "coil")
        byte_count = -(-quantity // 8)
        payload = frame[13 : 13 + byte_count]
        if len(payload) < byte_count:
            raise ValueError(f"frame holds {len(payload)} of {byte_count} coil bytes")
        for i, byte in enumerate(payload):
            for bit in range(8):
                index = start + i * 8 + bit
                if index < COIL_COUNT:
                    self.coils[index] = bool(byte >> bit & 1)
        log.debug(" MB_FC_WRITE_MULTIPLE_COILS S=%d L=%d", start, byte_count * 8)
        return bytes(_header(frame, byte_count + 5)) + frame[8:12]

    def _write_multiple_registers(
        self, frame: bytes, start: int, quantity: int
    ) -> bytes:
        _check_range(start, quantity, REGISTER_COUNT, "register")
        byte_count = quantity * 2
        payload = frame[13 : 13 + byte_count]
        if len(payload) < byte_count:
            raise ValueError(f"frame holds {len(payload)} of {byte_count} register bytes")
        self.registers[start : start + quantity] = [
            _word(payload, offset) for offset in range(0, byte_count, 2)
        ]
        log.debug(" MB_FC_WRITE_MULTIPLE_REGISTERS S=%d L=%d", start, quantity)
        return bytes(_header(frame, byte_count + 3)) + frame[8:12]


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run a Modbus TCP slave from the command line."""
    parser = argparse.ArgumentParser(description="Modbus TCP slave")
    parser.add_argument("--host", default="", help="address to listen on")
    parser.add_argument("--port", type=int, default=MB_PORT, help="TCP port")
    parser.add_argument("-v", "--verbose", action="store_true", help="log each request")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        Mudbus().serve(args.host, args.port)
    except KeyboardInterrupt:
        pass
    return 0