import pytest

from mudbus.slave import COIL_COUNT, REGISTER_COUNT, FunctionCode, Mudbus, main


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def frame(code, start, value, extra=b""):
    body = bytes([1, int(code)]) + start.to_bytes(2, "big") + value.to_bytes(2, "big")
    if extra:
        body += bytes([len(extra)]) + extra
    return b"\x00\x01\x00\x00" + len(body).to_bytes(2, "big") + body


def test_write_register_sets_value_and_echoes():
    slave = Mudbus(clock=FakeClock())
    request = frame(FunctionCode.WRITE_REGISTER, 7, 0xBEEF)
    response = slave.handle_request(request)
    assert slave.registers[7] == 0xBEEF
    assert response[:5] == request[:5]
    assert response[5] == 6
    assert response[6:] == request[6:12]


def test_write_coil_on_and_off():
    slave = Mudbus(clock=FakeClock())
    request = frame(FunctionCode.WRITE_COIL, 10, 0xFF00)
    response = slave.handle_request(request)
    assert slave.coils[10] is True
    assert response == request[:5] + bytes([2]) + request[6:8]
    slave.handle_request(frame(FunctionCode.WRITE_COIL, 10, 0))
    assert slave.coils[10] is False


def test_read_registers_returns_big_endian_words():
    slave = Mudbus(clock=FakeClock())
    slave.registers[0] = 0x1234
    slave.registers[1] = 0xABCD
    response = slave.handle_request(frame(FunctionCode.READ_REGISTERS, 0, 2))
    assert response[9:] == b"\x12\x34\xab\xcd"
    assert response[8] == len(response) - 9
    assert response[5] == len(response) - 6
    assert response[6:8] == b"\x01\x03"


def test_read_coils_packs_bits_lsb_first():
    slave = Mudbus(clock=FakeClock())
    slave.coils[0] = True
    slave.coils[2] = True
    response = slave.handle_request(frame(FunctionCode.READ_COILS, 0, 8))
    assert response[8] == 1
    bits = [bool(response[9] >> bit & 1) for bit in range(8)]
    assert bits == slave.coils[0:8]
    assert response[5] == len(response) - 6


def test_write_multiple_coils_round_trip():
    slave = Mudbus(clock=FakeClock())
    data = bytes([0b10101010, 0b00000011])
    request = frame(FunctionCode.WRITE_MULTIPLE_COILS, 3, 10, data)
    response = slave.handle_request(request)
    assert response[6:12] == request[6:12]
    assert len(response) == 12
    read = slave.handle_request(frame(FunctionCode.READ_COILS, 3, 10))
    assert read[9:] == data


def test_write_multiple_registers_round_trip():
    slave = Mudbus(clock=FakeClock())
    data = b"\x00\x01\xff\xfe\x80\x00"
    request = frame(FunctionCode.WRITE_MULTIPLE_REGISTERS, 20, 3, data)
    response = slave.handle_request(request)
    assert response[8:12] == request[8:12]
    assert slave.registers[20:23] == [0x0001, 0xFFFE, 0x8000]
    read = slave.handle_request(frame(FunctionCode.READ_REGISTERS, 20, 3))
    assert read[9:] == data


def test_unknown_function_code_gets_no_response():
    slave = Mudbus(clock=FakeClock())
    assert slave.run(frame(4, 0, 1)) is None
    assert slave.writes == 0
    assert slave.reads == 1


def test_counters_and_wrap():
    slave = Mudbus(clock=FakeClock())
    assert slave.run() is None
    assert (slave.runs, slave.reads, slave.writes) == (1, 0, 0)
    slave.run(frame(FunctionCode.WRITE_REGISTER, 0, 5))
    assert (slave.runs, slave.reads, slave.writes) == (2, 1, 1)
    for _ in range(997):
        slave.run()
    assert slave.runs == 999
    slave.run()
    assert slave.runs == 1


def test_activity_expires_after_sixty_seconds():
    clock = FakeClock(100.0)
    slave = Mudbus(clock=clock)
    slave.run(frame(FunctionCode.READ_REGISTERS, 0, 1))
    assert slave.active is True
    assert slave.previous_activity_time == 100.0
    clock.now = 160.0
    slave.run()
    assert slave.active is True
    clock.now = 160.5
    slave.run()
    assert slave.active is False


def test_out_of_range_addresses_raise():
    slave = Mudbus(clock=FakeClock())
    with pytest.raises(ValueError):
        slave.handle_request(frame(FunctionCode.WRITE_REGISTER, REGISTER_COUNT, 1))
    with pytest.raises(ValueError):
        slave.handle_request(frame(FunctionCode.READ_REGISTERS, 100, 30))
    with pytest.raises(ValueError):
        slave.handle_request(frame(FunctionCode.WRITE_COIL, COIL_COUNT, 1))


def test_short_frames_raise():
    slave = Mudbus(clock=FakeClock())
    with pytest.raises(ValueError):
        slave.handle_request(b"\x00\x01\x00")
    with pytest.raises(ValueError):
        slave.handle_request(frame(FunctionCode.READ_COILS, 0, 8)[:10])
    with pytest.raises(ValueError):
        slave.handle_request(frame(FunctionCode.WRITE_MULTIPLE_REGISTERS, 0, 2)[:12])


def test_main_rejects_bad_port():
    with pytest.raises(SystemExit) as info:
        main(["--port", "notanumber"])
    assert info.value.code == 2