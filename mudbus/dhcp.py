"""DHCP client: lease acquisition, renewal and rebinding over UDP."""

from __future__ import annotations

import random
import socket
import time
from dataclasses import dataclass, field, replace
from enum import IntEnum
from ipaddress import IPv4Address
from typing import Callable, Optional, Protocol, Tuple, Union

SERVER_PORT = 67
CLIENT_PORT = 68
BROADCAST = ("255.255.255.255", SERVER_PORT)

BOOTREQUEST = 1
BOOTREPLY = 2
HTYPE_10MB = 1
HLEN_ETHERNET = 6
HOPS = 0
FLAGS_BROADCAST = 0x8000

MAGIC_COOKIE = 0x63825363
HOST_NAME = "ENC28J"
DEFAULT_LEASE = 900
DHCP_TIMEOUT = 60.0
RESPONSE_TIMEOUT = 4.0
RESPONSE_TIMED_OUT = 255

OPTIONS_OFFSET = 240
FIXED_SIZE = 34

# Option codes.
PAD = 0
SUBNET_MASK = 1
ROUTERS = 3
DNS_SERVERS = 6
HOST_NAME_OPTION = 12
DOMAIN_NAME = 15
REQUESTED_IP = 50
LEASE_TIME = 51
MESSAGE_TYPE = 53
SERVER_IDENTIFIER = 54
PARAM_REQUEST = 55
T1_VALUE = 58
T2_VALUE = 59
CLIENT_IDENTIFIER = 61
END = 255

_ZERO = IPv4Address(0)

AddressLike = Union[str, int, bytes, IPv4Address]


class DhcpMessageType(IntEnum):
    DISCOVER = 1
    OFFER = 2
    REQUEST = 3
    DECLINE = 4
    ACK = 5
    NAK = 6
    RELEASE = 7
    INFORM = 8


class DhcpCheck(IntEnum):
    """Outcome of a periodic lease check."""

    NONE = 0
    RENEW_FAIL = 1
    RENEW_OK = 2
    REBIND_FAIL = 3
    REBIND_OK = 4


class _State(IntEnum):
    START = 0
    DISCOVER = 1
    REQUEST = 2
    LEASED = 3
    REREQUEST = 4
    RELEASE = 5


@dataclass(frozen=True)
class DhcpLease:
    """Addresses and timers handed out by a DHCP server."""

    local_ip: IPv4Address = _ZERO
    subnet_mask: IPv4Address = _ZERO
    gateway_ip: IPv4Address = _ZERO
    dhcp_server_ip: IPv4Address = _ZERO
    dns_server_ip: IPv4Address = _ZERO
    lease_time: int = 0
    t1: int = 0
    t2: int = 0

    def without_addresses(self) -> "DhcpLease":
        """Return this lease with every address zeroed and the timers kept."""
        return replace(
            self,
            local_ip=_ZERO,
            subnet_mask=_ZERO,
            gateway_ip=_ZERO,
            dhcp_server_ip=_ZERO,
            dns_server_ip=_ZERO,
        )


def _mac_bytes(mac) -> bytes:
    data = bytes(mac)
    if len(data) != 6:
        raise ValueError(f"a MAC address needs 6 bytes, got {len(data)}")
    return data


def host_name_for(mac) -> str:
    """Return the host name announced for *mac*: a prefix and its last 3 bytes in hex."""
    data = _mac_bytes(mac)
    return HOST_NAME + data[3:].hex().upper()


def build_message(
    message_type: int,
    transaction_id: int,
    seconds_elapsed: int,
    mac,
    lease: Optional[DhcpLease] = None,
) -> bytes:
    """Return a client message (DISCOVER, REQUEST, ...) ready to broadcast.

    A REQUEST also carries the requested address and the server identifier
    taken from *lease*.
    """
    mac = _mac_bytes(mac)
    lease = lease or DhcpLease()
    message = bytearray()
    message += bytes([BOOTREQUEST, HTYPE_10MB, HLEN_ETHERNET, HOPS])
    message += (transaction_id & 0xFFFFFFFF).to_bytes(4, "big")
    message += (seconds_elapsed & 0xFFFF).to_bytes(2, "big")
    message += FLAGS_BROADCAST.to_bytes(2, "big")
    message += bytes(16)  # ciaddr, yiaddr, siaddr, giaddr
    message += mac + bytes(10)  # chaddr
    message += bytes(192)  # sname and file

    message += MAGIC_COOKIE.to_bytes(4, "big")
    message += bytes([MESSAGE_TYPE, 1, message_type & 0xFF])
    message += bytes([CLIENT_IDENTIFIER, 7, 1]) + mac
    name = host_name_for(mac).encode("ascii")
    message += bytes([HOST_NAME_OPTION, len(name)]) + name

    if message_type == DhcpMessageType.REQUEST:
        message += bytes([REQUESTED_IP, 4]) + lease.local_ip.packed
        message += bytes([SERVER_IDENTIFIER, 4]) + lease.dhcp_server_ip.packed

    message += bytes(
        [PARAM_REQUEST, 6, SUBNET_MASK, ROUTERS, DNS_SERVERS, DOMAIN_NAME,
         T1_VALUE, T2_VALUE, END]
    )
    return bytes(message)


class _Short(Exception):
    pass


class _Cursor:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def more(self) -> bool:
        return self.pos < len(self.data)

    def byte(self) -> int:
        if self.pos >= len(self.data):
            raise _Short
        value = self.data[self.pos]
        self.pos += 1
        return value

    def take(self, count: int) -> bytes:
        chunk = self.data[self.pos : self.pos + count]
        if len(chunk) < count:
            raise _Short
        self.pos += count
        return chunk

    def skip(self, count: int) -> None:
        self.pos += max(count, 0)


def parse_response(
    packet: bytes,
    mac,
    first_id: int,
    last_id: int,
    lease: DhcpLease,
    remote_ip: Optional[AddressLike] = None,
) -> Tuple[int, Optional[int], DhcpLease]:
    """Read a server reply.

    Returns ``(message_type, transaction_id, lease)``. The message type is 0
    when the packet is not a reply to this client (wrong op code, hardware
    address or transaction id outside ``first_id..last_id``); the lease is
    then returned unchanged. The transaction id is None when the packet is
    not a reply at all.
    """
    mac = _mac_bytes(mac)
    packet = bytes(packet)
    if len(packet) < FIXED_SIZE or packet[0] != BOOTREPLY:
        return 0, None, lease
    transaction_id = int.from_bytes(packet[4:8], "big")
    if packet[28:34] != mac or not first_id <= transaction_id <= last_id:
        return 0, transaction_id, lease

    remote = _ZERO if remote_ip is None else IPv4Address(remote_ip)
    values = {
        "local_ip": IPv4Address(packet[16:20]),
        "subnet_mask": lease.subnet_mask,
        "gateway_ip": lease.gateway_ip,
        "dhcp_server_ip": lease.dhcp_server_ip,
        "dns_server_ip": lease.dns_server_ip,
        "lease_time": lease.lease_time,
        "t1": lease.t1,
        "t2": lease.t2,
    }
    message_type = 0
    cursor = _Cursor(packet[OPTIONS_OFFSET:])
    try:
        while cursor.more():
            code = cursor.byte()
            if code in (PAD, END):
                continue
            length = cursor.byte()
            if code == MESSAGE_TYPE:
                message_type = cursor.byte()
            elif code == SUBNET_MASK:
                values["subnet_mask"] = IPv4Address(cursor.take(4))
            elif code in (ROUTERS, DNS_SERVERS):
                key = "gateway_ip" if code == ROUTERS else "dns_server_ip"
                values[key] = IPv4Address(cursor.take(4))
                cursor.skip(length - 4)
            elif code == SERVER_IDENTIFIER:
                current = values["dhcp_server_ip"]
                if current == _ZERO or current == remote:
                    values["dhcp_server_ip"] = IPv4Address(cursor.take(4))
                else:
                    cursor.skip(length)
            elif code in (T1_VALUE, T2_VALUE, LEASE_TIME):
                key = {T1_VALUE: "t1", T2_VALUE: "t2", LEASE_TIME: "lease_time"}[code]
                values[key] = int.from_bytes(cursor.take(4), "big")
            else:
                cursor.skip(length)
    except _Short:
        pass
    return message_type, transaction_id, DhcpLease(**values)


class Transport(Protocol):
    def open(self, port: int) -> None: ...

    def close(self) -> None: ...

    def send(self, packet: bytes, address: Tuple[str, int]) -> None: ...

    def receive(self, timeout: float) -> Optional[Tuple[bytes, Tuple[str, int]]]: ...


class _UdpTransport:
    """Broadcast-capable UDP socket bound to the DHCP client port."""

    def __init__(self) -> None:
        self._sock: Optional[socket.socket] = None

    def open(self, port: int) -> None:
        self.close()
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("", port))
        except OSError:
            sock.close()
            raise
        self._sock = sock

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def send(self, packet: bytes, address: Tuple[str, int]) -> None:
        if self._sock is None:
            raise OSError("transport is not open")
        self._sock.sendto(packet, address)

    def receive(self, timeout: float):
        if self._sock is None:
            raise OSError("transport is not open")
        self._sock.settimeout(max(timeout, 0.0))
        try:
            data, sender = self._sock.recvfrom(2048)
        except socket.timeout:
            return None
        return data, (sender[0], sender[1])


class DhcpClient:
    """Obtains and maintains a DHCP lease for one interface."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.transport = transport if transport is not None else _UdpTransport()
        self._clock = clock if clock is not None else time.monotonic
        self._rng = random.Random()
        self.lease = DhcpLease()
        self.state = _State.START
        self._mac = bytes(6)
        self._xid = 0
        self._first_xid = 0
        self._renew_in = 0
        self._rebind_in = 0
        self._last_check: Optional[int] = None
        self._sec_timeout = 0

    def begin_with_dhcp(self, mac) -> bool:
        """Discover a server and take a lease; True when one was granted."""
        self._mac = _mac_bytes(mac)
        self.lease = DhcpLease()
        self._last_check = None
        self.state = _State.START
        return self._request_lease()

    def check_lease(self) -> DhcpCheck:
        """Count down the lease timers and renew or rebind when they run out."""
        now = int(self._clock() * 1000)
        result = DhcpCheck.NONE
        if self._last_check is not None:
            late = now - self._sec_timeout
            if late >= 0:
                self._sec_timeout = now + 1000 - late % 1000
                late = late // 1000 + 1
                self._renew_in = 0 if self._renew_in < late * 2 else self._renew_in - late
                self._rebind_in = 0 if self._rebind_in < late * 2 else self._rebind_in - late

            if self.state == _State.LEASED and self._renew_in <= 0:
                self.state = _State.REREQUEST
                result = DhcpCheck(1 + self._request_lease())

            if self.state in (_State.LEASED, _State.START) and self._rebind_in <= 0:
                self.state = _State.START
                self.lease = self.lease.without_addresses()
                result = DhcpCheck(3 + self._request_lease())
        else:
            self._sec_timeout = now + 1000
        self._last_check = now
        return result

    def _send(self, message_type: DhcpMessageType, start: float) -> None:
        elapsed = int(self._clock() - start)
        packet = build_message(message_type, self._xid, elapsed, self._mac, self.lease)
        self.transport.send(packet, BROADCAST)

    def _receive(self) -> Tuple[int, Optional[int]]:
        reply = self.transport.receive(RESPONSE_TIMEOUT)
        if reply is None:
            return RESPONSE_TIMED_OUT, None
        packet, (host, port) = reply
        if port != SERVER_PORT:
            return 0, None
        message_type, xid, lease = parse_response(
            packet, self._mac, self._first_xid, self._xid, self.lease, host
        )
        self.lease = lease
        return message_type, xid

    def _request_lease(self) -> bool:
        self._xid = self._rng.randint(1, 1999)
        self._first_xid = self._xid
        self.transport.close()
        try:
            self.transport.open(CLIENT_PORT)
        except OSError:
            return False

        leased = False
        start = self._clock()
        try:
            while self.state != _State.LEASED:
                message_type = 0
                if self.state == _State.START:
                    self._xid += 1
                    self._send(DhcpMessageType.DISCOVER, start)
                    self.state = _State.DISCOVER
                elif self.state == _State.REREQUEST:
                    self._xid += 1
                    self._send(DhcpMessageType.REQUEST, start)
                    self.state = _State.REQUEST
                elif self.state == _State.DISCOVER:
                    message_type, xid = self._receive()
                    if message_type == DhcpMessageType.OFFER:
                        self._xid = xid
                        self._send(DhcpMessageType.REQUEST, start)
                        self.state = _State.REQUEST
                elif self.state == _State.REQUEST:
                    message_type, _ = self._receive()
                    if message_type == DhcpMessageType.ACK:
                        self.state = _State.LEASED
                        leased = True
                        self._settle_timers()
                    elif message_type == DhcpMessageType.NAK:
                        self.state = _State.START

                if message_type == RESPONSE_TIMED_OUT:
                    self.state = _State.START

                if not leased and self._clock() - start > DHCP_TIMEOUT:
                    break
        finally:
            self.transport.close()
            self._xid += 1
        return leased

    def _settle_timers(self) -> None:
        lease = self.lease
        lease_time = lease.lease_time or DEFAULT_LEASE
        t1 = lease.t1 or lease_time >> 1
        t2 = lease.t2 or t1 << 1
        self.lease = replace(lease, lease_time=lease_time, t1=t1, t2=t2)
        self._renew_in = t1
        self._rebind_in = t2