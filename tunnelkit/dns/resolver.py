"""Querying the Domain Name System over different transports.

The Domain Name System maps domain names to IP addresses. Name lookups
decide which connections can be made, and they are mostly sent in
plaintext. This makes them a common target of network-level filtering.

A resolver answers a Question with a DNS message. This module provides
resolvers for DNS-over-UDP and DNS-over-TCP. Both send plaintext to port 53.
Over TCP, replies can be larger and delivery is more reliable, at the cost
of setting up a connection. Resolvers take the dialer they connect
through, so queries can be carried over any transport.
"""

from __future__ import annotations

import secrets
import socket
import struct
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Callable

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype

from tunnelkit.transport.address import join_host_port, lookup_port, split_host_port
from tunnelkit.transport.packet import UDPDialer

# An EDNS buffer size of 1232 bytes avoids fragmentation on nearly all
# networks: the IPv6 minimum MTU of 1280 minus 48 bytes of IPv6 and UDP headers.
MAX_UDP_MESSAGE_SIZE = 1232


class DNSError(Exception):
    """Base class of the errors raised by resolvers."""

    base_message = "DNS query failed"

    def __init__(self, detail: str | None = None) -> None:
        message = self.base_message if detail is None else f"{self.base_message}: {detail}"
        super().__init__(message)


class BadRequestError(DNSError):
    """The query could not be turned into a request message."""

    base_message = "request input is invalid"


class DialError(DNSError):
    """The connection to the resolver could not be made."""

    base_message = "dial DNS resolver failed"


class SendError(DNSError):
    """The request could not be sent."""

    base_message = "send DNS message failed"


class ReceiveError(DNSError):
    """The response could not be received."""

    base_message = "receive DNS message failed"


class BadResponseError(DNSError):
    """The response is malformed or does not match the request."""

    base_message = "response message is invalid"


def _as_name(name: dns.name.Name | str) -> dns.name.Name:
    if isinstance(name, dns.name.Name):
        return name
    return dns.name.from_text(name)


@dataclass(frozen=True)
class Question:
    """A DNS question: a name, a record type and a class."""

    name: dns.name.Name
    qtype: dns.rdatatype.RdataType
    qclass: dns.rdataclass.RdataClass = dns.rdataclass.IN

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _as_name(self.name))
        object.__setattr__(self, "qtype", dns.rdatatype.RdataType.make(self.qtype))
        object.__setattr__(self, "qclass", dns.rdataclass.RdataClass.make(self.qclass))


def new_question(domain: str, qtype: Any) -> Question:
    """Create an Internet-class question for ``domain``.

    The domain is taken as fully qualified; a missing final "." is added.
    Raises ValueError if the domain is not a valid name.
    """
    full_domain = domain if domain.endswith(".") else domain + "."
    try:
        name = dns.name.from_text(full_domain)
    except dns.exception.DNSException as err:
        raise ValueError(f"cannot parse domain name: {err}") from err
    return Question(name, qtype, dns.rdataclass.IN)


def build_request(message_id: int, question: Question) -> bytes:
    """Return the wire form of a recursive query with an EDNS(0) OPT record."""
    message = dns.message.Message(id=message_id)
    message.flags = dns.flags.RD
    message.find_rrset(
        message.question,
        question.name,
        question.qclass,
        question.qtype,
        create=True,
        force_unique=True,
    )
    # Advertise the largest payload accepted, as per RFC 6891 section 4.3.
    message.use_edns(0, 0, MAX_UDP_MESSAGE_SIZE)
    return message.to_wire()


def fold_case(char: int) -> int:
    """Fold an ASCII lower-case byte to upper case; other bytes are unchanged."""
    if ord("a") <= char <= ord("z"):
        return char - ord("a") + ord("A")
    return char


def _folded_labels(name: dns.name.Name | str) -> tuple[bytes, ...]:
    return tuple(bytes(fold_case(c) for c in label) for label in _as_name(name).labels)


def equal_ascii_name(x: dns.name.Name | str, y: dns.name.Name | str) -> bool:
    """Compare two DNS names, ignoring the case of ASCII letters only."""
    return _folded_labels(x) == _folded_labels(y)


def check_response(
    request_id: int, question: Question, response: dns.message.Message
) -> None:
    """Raise BadResponseError unless ``response`` answers the request."""
    if not response.flags & dns.flags.QR:
        raise BadResponseError("response bit not set")
    if response.id != request_id:
        raise BadResponseError(
            f"message id does not match. Expected {request_id}, got {response.id}"
        )
    if not response.question:
        raise BadResponseError("response had no questions")
    answered = response.question[0]
    if (
        answered.rdtype != question.qtype
        or answered.rdclass != question.qclass
        or not equal_ascii_name(question.name, answered.name)
    ):
        raise BadResponseError("response question doesn't match request")


def _new_id() -> int:
    return secrets.randbits(16)


def _request_bytes(message_id: int, question: Question) -> bytes:
    try:
        return build_request(message_id, question)
    except (dns.exception.DNSException, ValueError) as err:
        raise BadRequestError(f"append request failed: {err}") from err


def _parse(data: bytes) -> dns.message.Message:
    return dns.message.from_wire(data)


def query_datagram(conn: Any, question: Question) -> dns.message.Message:
    """Send ``question`` over a datagram connection and return the response.

    ``conn`` has ``write(data)`` and ``read(size)``; an empty read means the
    connection has ended. Datagrams that fail to parse or do not match the
    request are skipped, since they may be injected.
    """
    message_id = _new_id()
    request = _request_bytes(message_id, question)
    try:
        conn.write(request)
    except OSError as err:
        raise SendError(str(err)) from err

    skipped: list[Exception] = []
    while True:
        try:
            data = conn.read(MAX_UDP_MESSAGE_SIZE)
            if not data:
                raise EOFError("EOF")
        except (OSError, EOFError) as err:
            cause: BaseException = (
                ExceptionGroup("read message failed", [*skipped, err]) if skipped else err
            )
            raise ReceiveError(f"read message failed: {err}") from cause
        try:
            message = _parse(data)
        except (dns.exception.DNSException, ValueError) as err:
            skipped.append(err)
            continue
        try:
            check_response(message_id, question, message)
        except BadResponseError as err:
            skipped.append(err)
            continue
        return message


def _write_all(conn: Any, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = conn.write(view)
        if written is None:
            return
        if written <= 0:
            raise OSError("short write")
        view = view[written:]


def _read_exact(conn: Any, size: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < size:
        chunk = conn.read(size - len(chunks))
        if not chunk:
            raise EOFError("unexpected EOF" if chunks else "EOF")
        chunks += chunk
    return bytes(chunks)


def query_stream(conn: Any, question: Question) -> dns.message.Message:
    """Send ``question`` over a stream connection and return the response.

    Messages are framed with a 2-byte big-endian length prefix. ``conn`` has
    ``write(data)`` and ``read(size)``; an empty read means end of stream.
    """
    message_id = _new_id()
    request = _request_bytes(message_id, question)
    if len(request) > 0xFFFF:
        raise BadRequestError(f"message too large: {len(request)} bytes")
    try:
        _write_all(conn, struct.pack("!H", len(request)) + request)
    except OSError as err:
        raise SendError(str(err)) from err

    try:
        (length,) = struct.unpack("!H", _read_exact(conn, 2))
    except (OSError, EOFError) as err:
        raise ReceiveError(f"read message length failed: {err}") from err
    try:
        data = _read_exact(conn, length)
    except EOFError as err:
        if str(err) == "EOF" and length > 0:
            err = EOFError("unexpected EOF")
        raise ReceiveError(f"read message failed: {err}") from err
    except OSError as err:
        raise ReceiveError(f"read message failed: {err}") from err

    try:
        message = _parse(data)
    except (dns.exception.DNSException, ValueError) as err:
        raise BadResponseError(f"response failed to unpack: {err}") from err
    check_response(message_id, question, message)
    return message


def ensure_port(address: str, default_port: str) -> str:
    """Return ``address`` with ``default_port`` added if it has no port."""
    try:
        host, port = split_host_port(address)
    except ValueError:
        return join_host_port(address, default_port)
    if port == "":
        return join_host_port(host, default_port)
    return address


class _SocketStream:
    """A TCP connection with the read/write/close interface of stream conns."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    @property
    def timeout(self) -> float | None:
        return self._sock.gettimeout()

    @timeout.setter
    def timeout(self, seconds: float | None) -> None:
        self._sock.settimeout(seconds)

    def read(self, size: int) -> bytes:
        return self._sock.recv(size)

    def write(self, data: bytes) -> int:
        self._sock.sendall(data)
        return len(data)

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> _SocketStream:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class _TCPStreamDialer:
    def __init__(self, timeout: float | None) -> None:
        self._timeout = timeout

    def dial_stream(self, address: str) -> _SocketStream:
        host, port = split_host_port(address)
        sock = socket.create_connection((host, lookup_port("tcp", port)), self._timeout)
        return _SocketStream(sock)


def _apply_timeout(conn: Any, timeout: float | None) -> None:
    if timeout is not None and hasattr(conn, "timeout"):
        conn.timeout = timeout


def _close(conn: Any) -> None:
    close = getattr(conn, "close", None)
    if close is not None:
        close()


@dataclass
class FuncResolver:
    """A resolver that answers questions by calling the given function."""

    func: Callable[[Question], dns.message.Message]

    def query(self, question: Question) -> dns.message.Message:
        """Return the function's answer to ``question``."""
        return self.func(question)


@dataclass
class UDPResolver:
    """A DNS-over-UDP resolver; every query uses a new packet connection.

    ``dialer`` has ``dial_packet(address)``; by default queries go straight
    over UDP. The resolver address defaults to port 53.
    """

    resolver_address: str
    dialer: Any = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        self.resolver_address = ensure_port(self.resolver_address, "53")
        if self.dialer is None:
            self.dialer = UDPDialer(timeout=self.timeout)

    def query(self, question: Question) -> dns.message.Message:
        """Send ``question`` to the resolver and return its response."""
        try:
            conn = self.dialer.dial_packet(self.resolver_address)
        except Exception as err:
            raise DialError(str(err)) from err
        try:
            _apply_timeout(conn, self.timeout)
            return query_datagram(conn, question)
        finally:
            _close(conn)


@dataclass
class TCPResolver:
    """A DNS-over-TCP resolver; every query uses a new stream connection.

    ``dialer`` has ``dial_stream(address)`` returning a connection with
    ``read``, ``write`` and ``close``; by default a direct TCP connection is
    made. The resolver address defaults to port 53.
    """

    resolver_address: str
    dialer: Any = None
    timeout: float | None = None
    _default_dialer: Any = field(init=False, repr=False, default=None)

    def __post_init__(self) -> None:
        self.resolver_address = ensure_port(self.resolver_address, "53")
        if self.dialer is None:
            self.dialer = _TCPStreamDialer(self.timeout)

    def query(self, question: Question) -> dns.message.Message:
        """Send ``question`` to the resolver and return its response."""
        try:
            conn = self.dialer.dial_stream(self.resolver_address)
        except Exception as err:
            raise DialError(str(err)) from err
        try:
            _apply_timeout(conn, self.timeout)
            return query_stream(conn, question)
        finally:
            _close(conn)