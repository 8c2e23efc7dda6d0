"""Parsing and construction of ``host:port`` transport addresses."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass

_TCP_NETWORKS = frozenset({"tcp", "tcp4", "tcp6"})
_UDP_NETWORKS = frozenset({"udp", "udp4", "udp6"})

# Used when the system services database does not know a name.
_SERVICES = {
    "udp": {"domain": 53},
    "tcp": {
        "ftp": 21,
        "ftps": 990,
        "gopher": 70,
        "http": 80,
        "https": 443,
        "imap2": 143,
        "imap3": 220,
        "imaps": 993,
        "pop3": 110,
        "pop3s": 995,
        "smtp": 25,
        "submissions": 465,
        "ssh": 22,
        "telnet": 23,
    },
}


@dataclass(frozen=True)
class IPAddr:
    """A transport address whose host is an IP address."""

    network: str
    ip: ipaddress.IPv4Address | ipaddress.IPv6Address
    port: int

    def __str__(self) -> str:
        return join_host_port(str(self.ip), self.port)


@dataclass(frozen=True)
class DomainAddr:
    """A transport address whose host is a domain name."""

    network: str
    address: str

    def __str__(self) -> str:
        return self.address


def split_host_port(address: str) -> tuple[str, str]:
    """Split ``host:port`` or ``[host]:port`` into host and port.

    Raises ValueError if the address has no port or is malformed.
    """
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {address!r}")
        rest = address[end + 1:]
        if not rest:
            raise ValueError(f"missing port in address {address!r}")
        if rest[0] != ":":
            raise ValueError(f"unexpected character after ']' in address {address!r}")
        host, port = address[1:end], rest[1:]
        if "[" in host:
            raise ValueError(f"unexpected '[' in address {address!r}")
    else:
        colon = address.rfind(":")
        if colon < 0:
            raise ValueError(f"missing port in address {address!r}")
        host, port = address[:colon], address[colon + 1:]
        if ":" in host:
            raise ValueError(f"too many colons in address {address!r}")
        if "[" in host or "]" in host:
            raise ValueError(f"unexpected bracket in address {address!r}")
    if "[" in port or "]" in port:
        raise ValueError(f"unexpected bracket in address {address!r}")
    return host, port


def join_host_port(host: str, port: int | str) -> str:
    """Combine host and port, bracketing hosts that contain a colon."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _parse_number(port: str) -> int | None:
    digits = port
    negative = False
    if digits and digits[0] in "+-":
        negative = digits[0] == "-"
        digits = digits[1:]
    if digits and digits.isascii() and digits.isdigit():
        value = int(digits)
        return -value if negative else value
    return None


def _lookup_service(name: str, protocols: tuple[str, ...]) -> int | None:
    for protocol in protocols:
        try:
            return socket.getservbyname(name, protocol)
        except OSError:
            pass
        known = _SERVICES[protocol].get(name)
        if known is not None:
            return known
    return None


def lookup_port(network: str, port: str) -> int:
    """Return the port number for a numeric port or a service name.

    Raises ValueError for an unknown network, an unknown service or a number
    outside 0-65535.
    """
    if port == "":
        return 0
    number = _parse_number(port)
    if number is None:
        if network in _TCP_NETWORKS:
            protocols: tuple[str, ...] = ("tcp",)
        elif network in _UDP_NETWORKS:
            protocols = ("udp",)
        elif network == "":
            protocols = ("tcp", "udp")
        else:
            raise ValueError(f"unknown network {network!r}")
        number = _lookup_service(port.lower(), protocols)
        if number is None:
            raise ValueError(f"unknown port {network}/{port}")
    if not 0 <= number <= 0xFFFF:
        raise ValueError(f"invalid port {port!r}")
    return number


def _parse_ip(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    if "%" in host:
        return None
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def make_net_addr(network: str, address: str) -> IPAddr | DomainAddr:
    """Build an address object from a network and a ``host:port`` address.

    IP hosts give an IPAddr, which requires the network to be "tcp" or "udp";
    domain hosts give a DomainAddr with the port resolved to a number.
    """
    host, port = split_host_port(address)
    port_number = lookup_port(network, port)
    ip = _parse_ip(host)
    if ip is not None:
        if network not in ("tcp", "udp"):
            raise ValueError(f"unknown network {network!r}")
        return IPAddr(network, ip, port_number)
    return DomainAddr(network, join_host_port(host, port_number))