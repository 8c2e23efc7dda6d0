"""A packet proxy that relays UDP sessions through a packet listener."""

from __future__ import annotations

import contextlib
import errno
import ipaddress
import threading
from dataclasses import dataclass
from typing import Any

from tunnelkit.network.errors import NetworkClosedError
from tunnelkit.network.packet_proxy import (
    PacketProxy,
    PacketRequestSender,
    PacketResponseReceiver,
)
from tunnelkit.transport.address import IPAddr, make_net_addr

PACKET_MAX_SIZE = 2048
DEFAULT_WRITE_IDLE_TIMEOUT = 30.0

# How often the relay thread checks whether its session was closed.
_POLL_INTERVAL = 0.2


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


class PacketListenerRequestSender(PacketRequestSender):
    """Sends the requests of one session through a listener's packet socket.

    The session closes itself if no request is written for the write idle
    timeout; every write restarts that timeout.
    """

    def __init__(self, conn: Any, write_idle_timeout: float) -> None:
        self._conn = conn
        self._write_idle_timeout = write_idle_timeout
        self._lock = threading.Lock()
        self._closed = False
        self._timer: threading.Timer | None = None
        self._start_timer()

    @property
    def closed(self) -> bool:
        return self._closed

    def _start_timer(self) -> None:
        timer = threading.Timer(self._write_idle_timeout, self._expire)
        timer.daemon = True
        timer.start()
        self._timer = timer

    def _expire(self) -> None:
        with contextlib.suppress(NetworkClosedError, OSError):
            self.close()

    def write_to(self, data: bytes, destination: Any) -> int:
        """Restart the idle timeout and send ``data`` to ``destination``."""
        with self._lock:
            if self._closed:
                raise NetworkClosedError()
            if self._timer is not None:
                self._timer.cancel()
            self._start_timer()
        return self._conn.write_to(data, _udp_addr(destination))

    def close(self) -> None:
        """Close the packet socket, which also ends the response relay."""
        with self._lock:
            if self._closed:
                raise NetworkClosedError()
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
        self._conn.close()


def _relay_responses(
    conn: Any, receiver: PacketResponseReceiver, sender: PacketListenerRequestSender
) -> None:
    try:
        with contextlib.suppress(AttributeError, OSError):
            conn.timeout = _POLL_INTERVAL
        while True:
            try:
                data, source = conn.read_from(PACKET_MAX_SIZE)
            except TimeoutError:
                if sender.closed:
                    return
                continue
            except OSError as err:
                if err.errno == errno.EMSGSIZE:
                    continue
                return
            except Exception:
                return
            try:
                receiver.write_from(data, source)
            except Exception:
                return
    finally:
        with contextlib.suppress(Exception):
            receiver.close()


@dataclass
class PacketListenerProxy(PacketProxy):
    """A packet proxy whose sessions use sockets made by a packet listener.

    ``listener`` has a ``listen_packet()`` method, such as UDPListener.
    A session ends when no request is written for ``write_idle_timeout``
    seconds.
    """

    listener: Any
    write_idle_timeout: float = DEFAULT_WRITE_IDLE_TIMEOUT

    def __post_init__(self) -> None:
        if self.listener is None:
            raise ValueError("listener must not be None")
        if self.write_idle_timeout <= 0:
            raise ValueError("timeout must be greater than 0")

    def new_session(
        self, receiver: PacketResponseReceiver
    ) -> PacketListenerRequestSender:
        """Open a packet socket and relay its responses to ``receiver``.

        Responses are relayed on a background thread until the socket is
        closed or fails, after which ``receiver`` is closed.
        """
        if receiver is None:
            raise ValueError("receiver must not be None")
        conn = self.listener.listen_packet()
        sender = PacketListenerRequestSender(conn, self.write_idle_timeout)
        threading.Thread(
            target=_relay_responses,
            args=(conn, receiver, sender),
            name="udp-session-relay",
            daemon=True,
        ).start()
        return sender