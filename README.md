# mudbus

A small Modbus TCP slave, together with helpers for the network plumbing
around it: a DHCP client, a DNS resolver for A records, static/DHCP network
settings and the Internet checksum.

The package uses only the standard library.

## Installing

```
pip install .
```

## Running the slave

```
mudbus
```

starts a Modbus TCP slave listening on all addresses on port 502. Options:

| Option            | Meaning                                   |
|-------------------|-------------------------------------------|
| `--host ADDRESS`  | address to listen on (default: all)       |
| `--port PORT`     | TCP port (default: 502)                   |
| `-v`, `--verbose` | log every request at debug level          |

Port 502 is a privileged port on most systems; use `--port` to pick a
higher one when running without extra rights. Stop the server with Ctrl-C.

## The Modbus slave (`mudbus.slave`)

`Mudbus` keeps 125 16-bit holding registers (`registers`) and 128 coils
(`coils`) and answers these function codes (`FunctionCode`):

| Code | Meaning                  |
|------|--------------------------|
| 1    | Read coils               |
| 3    | Read holding registers   |
| 5    | Write single coil        |
| 6    | Write single register    |
| 15   | Write multiple coils     |
| 16   | Write multiple registers |

```python
from mudbus.slave import FunctionCode, Mudbus

slave = Mudbus()

# "Write single register": transaction 1, unit 1, register 4 set to 0x1234.
request = bytes([0, 1, 0, 0, 0, 6, 1, FunctionCode.WRITE_REGISTER, 0, 4, 0x12, 0x34])
response = slave.handle_request(request)
assert slave.registers[4] == 0x1234
```

- `handle_request(request)` applies one frame and returns the response
  frame. It returns `None` for a function code it does not answer and raises
  `ValueError` for a frame that is too short, longer than 260 bytes, or that
  addresses coils or registers outside the tables.
- `run(request=None)` takes one poll step: it counts runs, reads and writes
  (`runs`, `reads`, `writes`; each goes back to 1 after 999), handles the
  request if there is one, and keeps `active` up to date. A request sets
  `active` when it was not set and records the time in
  `previous_activity_time`; `active` is cleared once 60 seconds have passed
  since then.
- `serve(host="", port=502)` accepts TCP connections, reads each framed
  request and answers it through `run`. Requests that raise `ValueError`
  are logged and dropped.

A clock can be passed as `Mudbus(clock=...)` (a function returning seconds).

## DNS (`mudbus.dns`)

```python
from mudbus.dns import DNSClient, DnsError, build_request, inet_aton, parse_response

inet_aton("192.168.1.10")            # IPv4Address('192.168.1.10')
query = build_request("example.com", 0x1234)

client = DNSClient("192.168.1.1", timeout=5.0, attempts=3)
try:
    address = client.get_host_by_name("example.com")
except DnsError as exc:
    print("lookup failed:", exc.code, exc)
```

- `inet_aton` accepts only digits and dots; missing trailing segments are
  zero (`"10.1"` gives `10.1.0.0`). Anything else raises `ValueError`.
- `parse_response(packet, request_id)` returns the first A/IN address and
  raises `DnsError` for replies that are short, answer another request,
  carry an error or truncation flag, or hold no usable answer.
- `DNSClient.get_host_by_name` returns numeric addresses directly; otherwise
  it sends one query over UDP and waits up to `attempts` times `timeout`
  seconds for the reply.

## DHCP (`mudbus.dhcp`)

```python
from mudbus.dhcp import DhcpMessageType, build_message, host_name_for

mac = bytes.fromhex("020000000001")   # a made-up, locally administered address
host_name_for(mac)                    # "ENC28J000001"
packet = build_message(DhcpMessageType.DISCOVER, 1, 0, mac, None)
```

- `build_message` builds a client message; a `REQUEST` also carries the
  requested address and server identifier from the `DhcpLease` given.
- `parse_response(packet, mac, first_id, last_id, lease, remote_ip)` returns
  `(message_type, transaction_id, lease)`, with message type 0 for a packet
  that is not a reply to this client.
- `DhcpClient(transport=None, clock=None)` runs the discover / offer /
  request / acknowledge exchange. `begin_with_dhcp(mac)` returns `True` when
  a lease was granted and stores it in `lease`; `check_lease()` counts down
  the renew and rebind timers, renews or rebinds when they run out, and
  returns a `DhcpCheck` (`NONE`, `RENEW_FAIL`, `RENEW_OK`, `REBIND_FAIL`,
  `REBIND_OK`).

Without a transport the client binds a broadcast UDP socket on port 68,
which usually needs extra rights. Any object with `open(port)`, `close()`,
`send(packet, address)` and `receive(timeout)` (returning
`(data, (host, port))` or `None`) can stand in for it.

## Network settings and checksums

```python
from mudbus.checksum import ip_checksum, ones_complement_sum, upper_layer_checksum
from mudbus.netconfig import NetworkConfig, static_config

config = static_config("192.168.1.20")   # DNS and gateway .1, mask 255.255.255.0
```

- `static_config(ip, dns=None, gateway=None, subnet=None)` fills in host .1
  of the /24 for a missing DNS server or gateway and 255.255.255.0 for a
  missing mask. `NetworkConfig.apply_lease(lease)` returns a configuration
  with the addresses of a `DhcpLease`.
- `ones_complement_sum(data, initial=0)` is the RFC 1071 sum;
  `ip_checksum(header)` and `upper_layer_checksum(packet, proto)` sum an IPv4
  header and a TCP/UDP segment with its pseudo-header. A correct checksum
  sums to `0xFFFF`.

## What this package does not do

It has no TCP/IP stack of its own and does not drive network hardware: the
slave, the DNS resolver and the DHCP client use the operating system's
sockets. A `NetworkConfig` is only a value; nothing applies it to a system
interface. The slave does not send Modbus exception responses: unknown
function codes get no answer and bad requests are dropped.

## Running the tests

```
pip install ".[test]"
pytest
```