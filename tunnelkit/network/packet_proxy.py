"""Interfaces for handling UDP traffic that comes from a network stack.

The network layer reads and writes IP packets from physical or virtual
devices (see IPDevice). A user-space network stack turns those packets into
TCP and UDP flows. UDP flows go to a PacketProxy. The proxy creates one
session for each local socket. The stack sends requests through the
PacketRequestSender that the proxy returns. The proxy sends responses back
through the PacketResponseReceiver that the stack handed to it.

Every method may be called from several threads at once.
"""

from __future__ import annotations

import abc
from types import TracebackType
from typing import Any


class PacketRequestSender(abc.ABC):
    """Sends UDP request packets of one session to a PacketProxy.

    Implemented by the proxy. Once closed, no more requests are sent and the
    session's resources can be freed.
    """

    @abc.abstractmethod
    def write_to(self, data: bytes, destination: Any) -> int:
        """Send ``data`` to the remote server at ``destination``.

        Returns the number of bytes written. Empty packets are ignored. Raises
        NetworkClosedError once the sender is closed.
        """

    @abc.abstractmethod
    def close(self) -> None:
        """Stop accepting requests; later writes raise NetworkClosedError."""

    def __enter__(self) -> PacketRequestSender:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class PacketResponseReceiver(abc.ABC):
    """Receives UDP response packets of one session from a PacketProxy.

    Implemented by the upstream component, usually a network stack. The
    proxy closes it when no more responses will be sent.
    """

    @abc.abstractmethod
    def write_from(self, data: bytes, source: Any) -> int:
        """Deliver a response ``data`` sent by the remote server ``source``.

        Returns the number of bytes written. Raises NetworkClosedError once
        the receiver is closed.
        """

    @abc.abstractmethod
    def close(self) -> None:
        """Stop accepting responses; later writes raise NetworkClosedError."""

    def __enter__(self) -> PacketResponseReceiver:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class PacketProxy(abc.ABC):
    """Handles UDP traffic from an upstream network stack."""

    @abc.abstractmethod
    def new_session(self, receiver: PacketResponseReceiver) -> PacketRequestSender:
        """Start a UDP session and return the sender for its requests.

        Responses of the session are written to ``receiver``. A session may
        receive packets without sending any request.
        """