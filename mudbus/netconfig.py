"""IPv4 interface configuration: static set-up and DHCP lease updates."""

from __future__ import annotations

from dataclasses import dataclass, replace
from ipaddress import IPv4Address
from typing import Union

AddressLike = Union[str, int, bytes, IPv4Address]

DEFAULT_SUBNET = IPv4Address("255.255.255.0")


def _address(value: AddressLike) -> IPv4Address:
    if isinstance(value, (bytes, bytearray)) and len(value) != 4:
        raise ValueError(f"an IPv4 address needs 4 bytes, got {len(value)}")
    return IPv4Address(bytes(value) if isinstance(value, bytearray) else value)


def _host_one(ip: IPv4Address) -> IPv4Address:
    return IPv4Address(ip.packed[:3] + b"\x01")


@dataclass(frozen=True)
class NetworkConfig:
    """Addresses an interface runs with."""

    ip: IPv4Address
    dns: IPv4Address
    gateway: IPv4Address
    subnet: IPv4Address

    def __post_init__(self) -> None:
        for name in ("ip", "dns", "gateway", "subnet"):
            object.__setattr__(self, name, _address(getattr(self, name)))

    def apply_lease(self, lease) -> "NetworkConfig":
        """Return the configuration a DHCP lease hands out.

        *lease* must offer ``local_ip``, ``dns_server_ip``, ``gateway_ip``
        and ``subnet_mask``.
        """
        return replace(
            self,
            ip=_address(lease.local_ip),
            dns=_address(lease.dns_server_ip),
            gateway=_address(lease.gateway_ip),
            subnet=_address(lease.subnet_mask),
        )


def static_config(
    ip: AddressLike,
    dns: AddressLike | None = None,
    gateway: AddressLike | None = None,
    subnet: AddressLike | None = None,
) -> NetworkConfig:
    """Build a static configuration.

    A missing DNS server or gateway defaults to host .1 of the address's
    /24; a missing subnet mask defaults to 255.255.255.0.
    """
    address = _address(ip)
    return NetworkConfig(
        ip=address,
        dns=_host_one(address) if dns is None else dns,
        gateway=_host_one(address) if gateway is None else gateway,
        subnet=DEFAULT_SUBNET if subnet is None else subnet,
    )