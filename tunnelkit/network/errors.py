"""Errors shared by the network layer, and the interface of an IP packet device."""

from __future__ import annotations

import abc
import errno
from types import TracebackType


class NetworkError(Exception):
    """Base class of the errors raised by the network layer."""

    default_message = "network error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class NetworkClosedError(NetworkError):
    """An I/O call was made on a device or proxy that is already closed."""

    default_message = "network device already closed"


class PortUnreachableError(NetworkError):
    """A remote server's port cannot be reached."""

    default_message = "port is not reachable"


class MessageSizeError(NetworkError, OSError):
    """A packet is bigger than the largest message a device can process."""

    default_message = "packet size is too big"

    def __init__(self, message: str | None = None) -> None:
        OSError.__init__(self, errno.EMSGSIZE, message or self.default_message)


class IPDevice(abc.ABC):
    """A network device that reads and writes whole IP packets.

    Examples are a virtual network adapter or a local IP proxy. A device can be
    used as a context manager, which closes it on exit.
    """

    @abc.abstractmethod
    def read(self, size: int) -> bytes:
        """Return one IP packet, truncated to ``size`` bytes.

        Blocks until a packet arrives. Fragmented packets are returned as they
        are, without reassembly.
        """

    @abc.abstractmethod
    def write(self, packet: bytes) -> int:
        """Write one IP packet and return the number of bytes written.

        Raises MessageSizeError if the packet is larger than ``mtu()`` and
        NetworkClosedError if the device is closed.
        """

    @abc.abstractmethod
    def close(self) -> None:
        """Close the device; later writes raise NetworkClosedError."""

    @abc.abstractmethod
    def mtu(self) -> int:
        """Return the largest IP packet size the device can send or receive."""

    def __enter__(self) -> IPDevice:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()