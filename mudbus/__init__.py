"""Modbus TCP slave with DHCP and DNS clients, network settings and Internet checksums."""

__version__ = "0.1.0"
__all__ = ["checksum", "netconfig", "dns", "dhcp", "slave"]