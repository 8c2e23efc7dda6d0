"""A packet proxy that forwards to another proxy which can be replaced."""

from __future__ import annotations

from tunnelkit.network.packet_proxy import (
    PacketProxy,
    PacketRequestSender,
    PacketResponseReceiver,
)


class DelegatePacketProxy(PacketProxy):
    """Forwards new_session calls to an underlying proxy that can be swapped.

    Swapping the proxy with set_proxy only affects sessions created after
    the call; existing sessions are left alone. Safe to use from several
    threads at once.
    """

    def __init__(self, proxy: PacketProxy) -> None:
        if proxy is None:
            raise ValueError("the underlying proxy must not be None")
        self._proxy = proxy

    @property
    def proxy(self) -> PacketProxy:
        """The proxy that new sessions are currently forwarded to."""
        return self._proxy

    def new_session(self, receiver: PacketResponseReceiver) -> PacketRequestSender:
        """Create the session on the current underlying proxy."""
        return self._proxy.new_session(receiver)

    def set_proxy(self, proxy: PacketProxy) -> None:
        """Forward all later new_session calls to ``proxy``, which must not be None."""
        if proxy is None:
            raise ValueError("the underlying proxy must not be None")
        self._proxy = proxy