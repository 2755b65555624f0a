import socket
import threading
from ipaddress import IPv4Address

import pytest

from mudbus.dns import (
    BAD_ADDRESS_LENGTH,
    ERROR_RESPONSE,
    INVALID_RESPONSE,
    INVALID_SERVER,
    NO_ADDRESS,
    NO_ANSWER,
    TIMED_OUT,
    TRUNCATED,
    DNSClient,
    DnsError,
    build_request,
    inet_aton,
    parse_response,
)


def _question(name="host.example.com"):
    return build_request(name, 0)[12:]


def _answer(rtype=1, rclass=1, rdata=bytes([10, 0, 0, 7]), name=b"\xc0\x0c"):
    return (
        name
        + rtype.to_bytes(2, "big")
        + rclass.to_bytes(2, "big")
        + (300).to_bytes(4, "big")
        + len(rdata).to_bytes(2, "big")
        + rdata
    )


def _response(request_id, answers, flags=0x8180, questions=1, answer_count=None):
    count = len(answers) if answer_count is None else answer_count
    header = (
        request_id.to_bytes(2, "big")
        + flags.to_bytes(2, "big")
        + questions.to_bytes(2, "big")
        + count.to_bytes(2, "big")
        + bytes(4)
    )
    body = _question() * questions
    return header + body + b"".join(answers)


def test_inet_aton_full_address():
    assert inet_aton("192.168.1.10") == IPv4Address("192.168.1.10")


def test_inet_aton_short_address_fills_zeros():
    assert inet_aton("10.1") == IPv4Address("10.1.0.0")


@pytest.mark.parametrize("text", ["256.1.1.1", "1.2.3.4.5", "host", "1.2.3.-4", "1.2.3.300"])
def test_inet_aton_rejects(text):
    with pytest.raises(ValueError):
        inet_aton(text)


def test_build_request_wire_bytes():
    packet = build_request("www.example.com", 0x1234)
    assert packet == (
        b"\x12\x34\x01\x00\x00\x01\x00\x00\x00\x00\x00\x00"
        b"\x03www\x07example\x03com\x00"
        b"\x00\x01\x00\x01"
    )


def test_build_request_skips_empty_labels():
    assert build_request("a..b.", 7)[12:] == build_request("a.b", 7)[12:]


def test_build_request_rejects_huge_label():
    with pytest.raises(ValueError):
        build_request("x" * 300, 1)


def test_parse_response_returns_address():
    packet = _response(0x4321, [_answer()])
    assert parse_response(packet, 0x4321) == IPv4Address("10.0.0.7")


def test_parse_response_skips_other_records():
    cname = _answer(rtype=5, rdata=b"\x03abc\x00")
    packet = _response(9, [cname, _answer(rdata=bytes([1, 2, 3, 4]))])
    assert parse_response(packet, 9) == IPv4Address("1.2.3.4")


def test_parse_response_plain_label_name():
    named = _answer(name=b"\x04host\x00", rdata=bytes([5, 6, 7, 8]))
    assert parse_response(_response(3, [named]), 3) == IPv4Address("5.6.7.8")


@pytest.mark.parametrize(
    "packet, code",
    [
        (b"\x00\x01\x81", TRUNCATED),
        (_response(2, [_answer()]), INVALID_RESPONSE),
        (_response(1, [_answer()], flags=0x0100), INVALID_RESPONSE),
        (_response(1, [_answer()], flags=0x8183), ERROR_RESPONSE),
        (_response(1, [_answer()], flags=0x8380), ERROR_RESPONSE),
        (_response(1, []), NO_ANSWER),
        (_response(1, [_answer(rtype=5, rdata=b"\x00")]), NO_ADDRESS),
        (_response(1, [_answer(rdata=bytes(16))]), BAD_ADDRESS_LENGTH),
        (_response(1, [_answer()])[:-2], TRUNCATED),
    ],
)
def test_parse_response_errors(packet, code):
    with pytest.raises(DnsError) as info:
        parse_response(packet, 1)
    assert info.value.code == code


def test_round_trip_request_to_response():
    request = build_request("host.example.com", 77)
    reply = (
        request[:2]
        + b"\x81\x80\x00\x01\x00\x01\x00\x00\x00\x00"
        + request[12:]
        + _answer(rdata=bytes([192, 0, 2, 1]))
    )
    assert parse_response(reply, 77) == IPv4Address("192.0.2.1")


def test_client_numeric_host_needs_no_server():
    client = DNSClient("0.0.0.0")
    assert client.get_host_by_name("172.16.0.9") == IPv4Address("172.16.0.9")


def test_client_without_server_raises():
    with pytest.raises(DnsError) as info:
        DNSClient("0.0.0.0").get_host_by_name("host.example.com")
    assert info.value.code == INVALID_SERVER


def _serve_once(reply_from_other_port=False):
    server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    server.bind(("127.0.0.1", 0))
    server.settimeout(5)
    port = server.getsockname()[1]

    def run():
        with server:
            request, sender = server.recvfrom(4096)
            reply = (
                request[:2]
                + b"\x81\x80\x00\x01\x00\x01\x00\x00\x00\x00"
                + request[12:]
                + _answer(rdata=bytes([198, 51, 100, 20]))
            )
            if reply_from_other_port:
                with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as other:
                    other.sendto(reply, sender)
            else:
                server.sendto(reply, sender)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return port, thread


def test_client_resolves_through_server():
    port, thread = _serve_once()
    client = DNSClient("127.0.0.1", timeout=2.0, attempts=1)
    client.port = port
    assert client.get_host_by_name("host.example.com") == IPv4Address("198.51.100.20")
    thread.join(5)


def test_client_rejects_reply_from_wrong_port():
    port, thread = _serve_once(reply_from_other_port=True)
    client = DNSClient("127.0.0.1", timeout=2.0, attempts=1)
    client.port = port
    with pytest.raises(DnsError) as info:
        client.get_host_by_name("host.example.com")
    assert info.value.code == INVALID_SERVER
    thread.join(5)


def test_client_times_out():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as silent:
        silent.bind(("127.0.0.1", 0))
        client = DNSClient("127.0.0.1", timeout=0.1, attempts=2)
        client.port = silent.getsockname()[1]
        with pytest.raises(DnsError) as info:
            client.get_host_by_name("host.example.com")
    assert info.value.code == TIMED_OUT