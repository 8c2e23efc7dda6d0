"""A packet proxy that answers DNS requests locally with the truncated bit set.

Use it when the remote proxy does not carry UDP traffic at all. Every DNS
request sent to port 53 is answered at once with a response that has the TC
(truncated) bit set. This tells the client to resend the query over TCP. No
UDP request reaches any remote server. Packets to other ports are dropped
with PortUnreachableError.

Typical use::

    proxy = DnsTruncateProxy()
    sender = proxy.new_session(receiver)
"""

from __future__ import annotations

import ipaddress
import threading
from typing import Any

from tunnelkit.network.errors import NetworkClosedError, PortUnreachableError
from tunnelkit.network.packet_proxy import (
    PacketProxy,
    PacketRequestSender,
    PacketResponseReceiver,
)
from tunnelkit.transport.address import IPAddr, make_net_addr

STANDARD_DNS_PORT = 53
DNS_UDP_MIN_MSG_LEN = 12  # a DNS message holds at least its header
DNS_UDP_MAX_MSG_LEN = 512

_ANSWER_BYTE = 2  # holds the QR and TC bits
_RESPONSE_BIT = 0x80
_TRUNCATED_BIT = 0x02
_RCODE_BYTE = 3
_RCODE_MASK = 0x0F
_QDCOUNT = slice(4, 6)
_ANCOUNT = slice(6, 8)


def _udp_addr(destination: Any) -> IPAddr:
    if isinstance(destination, IPAddr):
        if destination.network == "udp":
            return destination
        return IPAddr("udp", destination.ip, destination.port)
    if isinstance(destination, str):
        addr = make_net_addr("udp", destination)
        if not isinstance(addr, IPAddr):
            raise ValueError(f"destination must be an IP address: {destination!r}")
        return addr
    host, port = destination
    return IPAddr("udp", ipaddress.ip_address(host), int(port))


class DnsTruncateRequestHandler(PacketRequestSender):
    """Answers the DNS requests of one session without contacting a resolver.

    Safe to use from several threads at once.
    """

    def __init__(self, receiver: PacketResponseReceiver) -> None:
        self._receiver = receiver
        self._lock = threading.Lock()
        self._closed = False

    def write_to(self, data: bytes, destination: Any) -> int:
        """Write a truncated response for the DNS request ``data`` to the receiver.

        ``destination`` is an IPAddr, an ``ip:port`` string or an
        ``(ip, port)`` tuple. Raises NetworkClosedError once closed,
        PortUnreachableError if the port is not 53, and ValueError if the
        packet is shorter than a DNS header. Requests longer than 512 bytes
        are cut to 512 bytes. Returns what the receiver's write_from returns.
        """
        if self._closed:
            raise NetworkClosedError()
        address = _udp_addr(destination)
        if address.port != STANDARD_DNS_PORT:
            raise PortUnreachableError(
                f"UDP traffic to non-DNS port {address.port} is not supported"
            )
        if len(data) < DNS_UDP_MIN_MSG_LEN:
            raise ValueError(
                f"invalid DNS message of length {len(data)}, "
                f"it must be at least {DNS_UDP_MIN_MSG_LEN} bytes"
            )

        response = bytearray(data[:DNS_UDP_MAX_MSG_LEN])
        # Set "Response", "Truncated" and "NoError".
        response[_ANSWER_BYTE] |= _RESPONSE_BIT | _TRUNCATED_BIT
        response[_RCODE_BYTE] &= ~_RCODE_MASK & 0xFF
        # Copying QDCOUNT to ANCOUNT is not correct DNS, but some clients
        # (such as Windows 7) do not retry over TCP without it.
        response[_ANCOUNT] = response[_QDCOUNT]

        return self._receiver.write_from(bytes(response), address)

    def close(self) -> None:
        """Close the session and its response receiver."""
        with self._lock:
            if self._closed:
                raise NetworkClosedError()
            self._closed = True
        self._receiver.close()


class DnsTruncateProxy(PacketProxy):
    """A packet proxy whose sessions answer DNS requests with the TC bit set."""

    def new_session(
        self, receiver: PacketResponseReceiver
    ) -> DnsTruncateRequestHandler:
        """Create a session that writes its truncated responses to ``receiver``."""
        if receiver is None:
            raise ValueError("receiver is required")
        return DnsTruncateRequestHandler(receiver)