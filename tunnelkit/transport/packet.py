"""Datagram connections, endpoints, dialers and listeners.

A packet connection is either bound to one remote address (UDPConnection,
BoundPacketConn) or unbound and able to talk to any address (UDPSocket).
Dialers create bound connections from a ``host:port`` address; listeners
create unbound sockets. Dialers and listeners can be nested to build
connections over other transports.
"""

from __future__ import annotations

import errno
import ipaddress
import socket
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Callable

from tunnelkit.transport.address import (
    DomainAddr,
    IPAddr,
    lookup_port,
    make_net_addr,
    split_host_port,
)

MAX_DATAGRAM_SIZE = 65535


def _to_ipaddr(sockaddr: tuple) -> IPAddr:
    ip = ipaddress.ip_address(sockaddr[0])
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return IPAddr("udp", ip, sockaddr[1])


class _SocketWrapper:
    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    @property
    def local_addr(self) -> IPAddr:
        return _to_ipaddr(self._sock.getsockname())

    @property
    def timeout(self) -> float | None:
        return self._sock.gettimeout()

    @timeout.setter
    def timeout(self, seconds: float | None) -> None:
        self._sock.settimeout(seconds)

    def close(self) -> None:
        """Close the socket."""
        self._sock.close()

    def __enter__(self):
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class UDPSocket(_SocketWrapper):
    """An unbound datagram socket that sends to and receives from any address."""

    def read_from(self, size: int = MAX_DATAGRAM_SIZE) -> tuple[bytes, IPAddr]:
        """Receive one datagram, truncated to ``size`` bytes, and its sender."""
        data, sockaddr = self._sock.recvfrom(size)
        return data, _to_ipaddr(sockaddr)

    def write_to(self, data: bytes, address: IPAddr) -> int:
        """Send one datagram to an IP address; other address kinds raise EINVAL."""
        if not isinstance(address, IPAddr):
            raise OSError(errno.EINVAL, f"invalid address for datagram write: {address}")
        host = str(address.ip)
        if self._sock.family == socket.AF_INET6 and address.ip.version == 4:
            host = f"::ffff:{host}"
        return self._sock.sendto(data, (host, address.port))

    def close(self) -> None:
        """Close the socket."""
        super().close()


class UDPConnection(_SocketWrapper):
    """A datagram socket connected to a single remote address."""

    @property
    def remote_addr(self) -> IPAddr:
        return _to_ipaddr(self._sock.getpeername())

    def read(self, size: int = MAX_DATAGRAM_SIZE) -> bytes:
        """Receive one datagram from the remote address."""
        return self._sock.recv(size)

    def write(self, data: bytes) -> int:
        """Send one datagram to the remote address."""
        return self._sock.send(data)

    def close(self) -> None:
        """Close the connection."""
        super().close()


def _dial_udp(address: str, timeout: float | None) -> UDPConnection:
    host, port = split_host_port(address)
    port_number = lookup_port("udp", port)
    last_error: OSError | None = None
    for family, kind, proto, _, sockaddr in socket.getaddrinfo(
        host or None, port_number, type=socket.SOCK_DGRAM
    ):
        sock = socket.socket(family, kind, proto)
        try:
            sock.settimeout(timeout)
            sock.connect(sockaddr)
        except OSError as err:
            sock.close()
            last_error = err
            continue
        return UDPConnection(sock)
    raise last_error or OSError(errno.EADDRNOTAVAIL, f"no address to dial for {address}")


def _bind_any(port: int) -> socket.socket:
    if socket.has_ipv6:
        sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            sock.bind(("::", port))
            return sock
        except OSError:
            sock.close()
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind(("0.0.0.0", port))
    except OSError:
        sock.close()
        raise
    return sock


def _listen_udp(address: str) -> UDPSocket:
    if address:
        host, port = split_host_port(address)
        port_number = lookup_port("udp", port)
    else:
        host, port_number = "", 0
    if not host:
        return UDPSocket(_bind_any(port_number))
    infos = socket.getaddrinfo(
        host, port_number, type=socket.SOCK_DGRAM, flags=socket.AI_PASSIVE
    )
    # Prefer IPv4, so that "localhost" binds to 127.0.0.1.
    infos.sort(key=lambda info: info[0] != socket.AF_INET)
    last_error: OSError | None = None
    for family, kind, proto, _, sockaddr in infos:
        sock = socket.socket(family, kind, proto)
        try:
            sock.bind(sockaddr)
        except OSError as err:
            sock.close()
            last_error = err
            continue
        return UDPSocket(sock)
    raise last_error or OSError(errno.EADDRNOTAVAIL, f"no address to listen on for {address}")


@dataclass
class UDPEndpoint:
    """Connects to a fixed ``host:port`` address over UDP."""

    address: str
    timeout: float | None = None

    def connect_packet(self) -> UDPConnection:
        """Create a UDP connection to the endpoint address."""
        return _dial_udp(self.address, self.timeout)


@dataclass
class FuncPacketEndpoint:
    """A packet endpoint that connects by calling the given function."""

    func: Callable[[], Any]

    def connect_packet(self) -> Any:
        """Return the connection made by the function."""
        return self.func()


@dataclass
class PacketDialerEndpoint:
    """Connects to a fixed address through the given packet dialer."""

    dialer: Any
    address: str

    def connect_packet(self) -> Any:
        """Dial the endpoint address with the dialer."""
        return self.dialer.dial_packet(self.address)


@dataclass
class UDPDialer:
    """Dials UDP connections to ``host:port`` addresses."""

    timeout: float | None = None

    def dial_packet(self, address: str) -> UDPConnection:
        """Create a UDP connection to ``address``."""
        return _dial_udp(address, self.timeout)


class BoundPacketConn:
    """An unbound packet socket restricted to one remote address.

    Datagrams from any other sender are dropped on read.
    """

    def __init__(self, packet_conn: Any, remote_addr: IPAddr | DomainAddr) -> None:
        self.packet_conn = packet_conn
        self.remote_addr = remote_addr

    @property
    def local_addr(self) -> Any:
        return self.packet_conn.local_addr

    def read(self, size: int = MAX_DATAGRAM_SIZE) -> bytes:
        """Return the next datagram that came from the remote address."""
        expected = str(self.remote_addr)
        while True:
            data, source = self.packet_conn.read_from(size)
            if str(source) == expected:
                return data

    def write(self, data: bytes) -> int:
        """Send one datagram to the remote address."""
        return self.packet_conn.write_to(data, self.remote_addr)

    def close(self) -> None:
        """Close the underlying packet socket."""
        self.packet_conn.close()

    def __enter__(self) -> BoundPacketConn:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


@dataclass
class PacketListenerDialer:
    """Dials by binding a socket from the listener to the destination address.

    The host must be an IP address or a domain name the listener's sockets can
    send to; plain UDP sockets only accept IP addresses.
    """

    listener: Any

    def dial_packet(self, address: str) -> BoundPacketConn:
        """Return a connection to ``address`` over a new listener socket."""
        remote = make_net_addr("udp", address)
        packet_conn = self.listener.listen_packet()
        return BoundPacketConn(packet_conn, remote)


@dataclass
class UDPListener:
    """Creates unbound UDP sockets on a local address.

    An empty address or host binds to all interfaces.
    """

    address: str = ""

    def listen_packet(self) -> UDPSocket:
        """Bind a new UDP socket to the local address."""
        return _listen_udp(self.address)


@dataclass
class FuncPacketDialer:
    """A packet dialer that dials by calling the given function."""

    func: Callable[[str], Any]

    def dial_packet(self, address: str) -> Any:
        """Return the connection made by the function for ``address``."""
        return self.func(address)