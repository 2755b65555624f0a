"""A minimal DNS resolver for IPv4 "A" records over UDP."""

from __future__ import annotations

import socket
import time
from ipaddress import IPv4Address
from typing import Union

DNS_PORT = 53
HEADER_SIZE = 12
TTL_SIZE = 4

RESPONSE_FLAG = 1 << 15
TRUNCATION_FLAG = 1 << 9
RECURSION_DESIRED_FLAG = 1 << 8
RESP_MASK = 0x0F
TYPE_A = 0x0001
CLASS_IN = 0x0001
LABEL_COMPRESSION_MASK = 0xC0

# Error codes carried by DnsError.code.
TIMED_OUT = -1
INVALID_SERVER = -2
TRUNCATED = -3
INVALID_RESPONSE = -4
ERROR_RESPONSE = -5
NO_ANSWER = -6
BAD_ADDRESS_LENGTH = -9
NO_ADDRESS = -10

ServerLike = Union[str, int, bytes, IPv4Address]


class DnsError(Exception):
    """A lookup failed; ``code`` tells why."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code


def inet_aton(text: str) -> IPv4Address:
    """Convert a dotted numeric address into an IPv4 address.

    Only digits and dots are accepted. Missing trailing segments are zero,
    so ``"10.1"`` gives ``10.1.0.0``. Raises ValueError when the text is
    not such an address.
    """
    if any(ch != "." and not ("0" <= ch <= "9") for ch in text):
        raise ValueError(f"not a numeric IPv4 address: {text!r}")
    octets = [0, 0, 0, 0]
    segment = 0
    value = 0
    for ch in text:
        if segment >= 4:
            break
        if ch == ".":
            if value > 255:
                raise ValueError(f"segment out of range in {text!r}")
            octets[segment] = value
            segment += 1
            value = 0
        else:
            value = value * 10 + int(ch)
    if value > 255 or segment > 3:
        raise ValueError(f"not a numeric IPv4 address: {text!r}")
    octets[segment] = value
    return IPv4Address(bytes(octets))


def build_request(name: str, request_id: int) -> bytes:
    """Return a standard recursive query for the A record of *name*."""
    header = (
        (request_id & 0xFFFF).to_bytes(2, "big")
        + RECURSION_DESIRED_FLAG.to_bytes(2, "big")
        + (1).to_bytes(2, "big")
        + bytes(6)
    )
    question = bytearray()
    for label in name.split("."):
        if not label:
            continue
        encoded = label.encode("ascii")
        if len(encoded) > 255:
            raise ValueError(f"label too long: {label[:20]!r}...")
        question.append(len(encoded))
        question += encoded
    question.append(0)
    question += TYPE_A.to_bytes(2, "big") + CLASS_IN.to_bytes(2, "big")
    return header + bytes(question)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise DnsError(TRUNCATED, "response ended early")
        chunk = self._data[self._pos : end]
        self._pos = end
        return chunk

    def byte(self) -> int:
        return self.take(1)[0]

    def word(self) -> int:
        return int.from_bytes(self.take(2), "big")

    def skip_name(self, allow_pointer: bool) -> None:
        while True:
            length = self.byte()
            if allow_pointer and length & LABEL_COMPRESSION_MASK:
                self.take(1)
                return
            if length == 0:
                return
            self.take(length)


def parse_response(packet: bytes, request_id: int) -> IPv4Address:
    """Return the first A/IN address in a response to *request_id*.

    Raises DnsError with the matching code for a short, foreign, failed,
    empty or address-less response.
    """
    if len(packet) < HEADER_SIZE:
        raise DnsError(TRUNCATED, "response shorter than a DNS header")
    reader = _Reader(packet)
    response_id = reader.word()
    flags = reader.word()
    question_count = reader.word()
    answer_count = reader.word()
    reader.take(4)
    if response_id != request_id & 0xFFFF or not flags & RESPONSE_FLAG:
        raise DnsError(INVALID_RESPONSE, "response does not answer this request")
    if flags & TRUNCATION_FLAG or flags & RESP_MASK:
        raise DnsError(ERROR_RESPONSE, f"server reported an error (flags {flags:#06x})")
    if answer_count == 0:
        raise DnsError(NO_ANSWER, "response holds no answers")

    for _ in range(question_count):
        reader.skip_name(allow_pointer=False)
        reader.take(4)

    for _ in range(answer_count):
        reader.skip_name(allow_pointer=True)
        answer_type = reader.word()
        answer_class = reader.word()
        reader.take(TTL_SIZE)
        data_length = reader.word()
        if answer_type == TYPE_A and answer_class == CLASS_IN:
            if data_length != 4:
                raise DnsError(
                    BAD_ADDRESS_LENGTH, f"A record of {data_length} bytes"
                )
            return IPv4Address(reader.take(4))
        reader.take(data_length)

    raise DnsError(NO_ADDRESS, "no A record among the answers")


def _request_id() -> int:
    return int(time.monotonic() * 1000) & 0xFFFF


class DNSClient:
    """Resolves host names through one DNS server."""

    port = DNS_PORT

    def __init__(
        self, server: ServerLike, timeout: float = 5.0, attempts: int = 3
    ) -> None:
        self.server = IPv4Address(server)
        self.timeout = timeout
        self.attempts = attempts

    def get_host_by_name(self, hostname: str) -> IPv4Address:
        """Return the address of *hostname*, numeric addresses included."""
        try:
            return inet_aton(hostname)
        except ValueError:
            pass
        if self.server == IPv4Address(0):
            raise DnsError(INVALID_SERVER, "no DNS server configured")

        request_id = _request_id()
        request = build_request(hostname, request_id)
        server = (str(self.server), self.port)
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.settimeout(self.timeout)
            sock.sendto(request, server)
            for _ in range(self.attempts):
                try:
                    packet, sender = sock.recvfrom(4096)
                except socket.timeout:
                    continue
                if sender[:2] != server:
                    raise DnsError(
                        INVALID_SERVER, f"response came from {sender[0]}:{sender[1]}"
                    )
                return parse_response(packet, request_id)
        raise DnsError(TIMED_OUT, f"no response from {server[0]}:{server[1]}")