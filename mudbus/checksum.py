"""Internet checksums (RFC 1071) for IPv4 headers and TCP/UDP segments."""

from __future__ import annotations

IP_HEADER_LEN = 20
PROTO_TCP = 6
PROTO_UDP = 17

_MASK = 0xFFFF


def ones_complement_sum(data: bytes, initial: int = 0) -> int:
    """Return the 16-bit one's complement sum of *data*, starting from *initial*.

    Bytes are taken as big-endian 16-bit words; an odd trailing byte is
    padded with a zero low byte. The result is not complemented.
    """
    total = initial & _MASK
    view = memoryview(bytes(data))
    even = len(view) - len(view) % 2
    for (word,) in _words(view[:even]):
        total += word
        total = (total & _MASK) + (total >> 16)
    if even != len(view):
        total += view[even] << 8
        total = (total & _MASK) + (total >> 16)
    return total & _MASK


def _words(view: memoryview):
    return view.cast("B").tobytes() and (
        (int.from_bytes(view[i : i + 2], "big"),) for i in range(0, len(view), 2)
    ) or iter(())


def ip_checksum(ip_header: bytes) -> int:
    """Return the one's complement sum over a 20-byte IPv4 header.

    A zero sum is reported as 0xFFFF. A header whose checksum field is
    correct sums to 0xFFFF; the value to store in the field is the
    complement of the sum taken with that field zeroed.
    """
    if len(ip_header) < IP_HEADER_LEN:
        raise ValueError(
            f"IPv4 header needs {IP_HEADER_LEN} bytes, got {len(ip_header)}"
        )
    total = ones_complement_sum(ip_header[:IP_HEADER_LEN])
    return total or _MASK


def upper_layer_checksum(ip_packet: bytes, proto: int) -> int:
    """Return the TCP/UDP checksum sum over *ip_packet*, pseudo-header included.

    *ip_packet* starts with a 20-byte IPv4 header (no options); its total
    length field decides how many payload bytes are summed. A zero sum is
    reported as 0xFFFF, and a segment with a correct checksum sums to 0xFFFF.
    """
    if len(ip_packet) < IP_HEADER_LEN:
        raise ValueError(
            f"IPv4 packet needs at least {IP_HEADER_LEN} bytes, got {len(ip_packet)}"
        )
    total_length = int.from_bytes(ip_packet[2:4], "big")
    if total_length < IP_HEADER_LEN:
        raise ValueError(f"IPv4 total length {total_length} is below the header size")
    if total_length > len(ip_packet):
        raise ValueError(
            f"IPv4 total length {total_length} exceeds the {len(ip_packet)} bytes given"
        )
    upper_len = total_length - IP_HEADER_LEN
    total = ones_complement_sum(ip_packet[12:20], (upper_len + proto) & _MASK)
    total = ones_complement_sum(ip_packet[IP_HEADER_LEN:total_length], total)
    return total or _MASK