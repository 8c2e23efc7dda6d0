"""Stream dialing with host names looked up through a DNS resolver.

The dialer maps host names to IP addresses with the given resolver. It then
connects through the given stream dialer. Lookups and connection attempts run
in parallel, following Happy Eyeballs v2.
"""

from __future__ import annotations

import asyncio
import ipaddress
from typing import Any

import dns.rcode
import dns.rdatatype

from tunnelkit.dns.resolver import DNSError, new_question
from tunnelkit.transport.happyeyeballs import (
    HappyEyeballsStreamDialer,
    new_parallel_resolve_func,
)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def resolve_ip(resolver: Any, rr_type: Any, hostname: str) -> list[IPAddress]:
    """Look up the A or AAAA records of ``hostname`` with ``resolver``.

    Only answers of the requested type are kept. Raises ValueError for an
    invalid host name, and DNSError if the response code is not NOERROR.
    Errors raised by the resolver are passed on.
    """
    wanted = dns.rdatatype.RdataType.make(rr_type)
    question = new_question(hostname, wanted)
    response = resolver.query(question)
    rcode = response.rcode()
    if rcode != dns.rcode.NOERROR:
        raise DNSError(f"got {dns.rcode.to_text(rcode)} ({int(rcode)})")
    ips: list[IPAddress] = []
    for rrset in response.answer:
        if rrset.rdtype != wanted:
            continue
        for rdata in rrset:
            if rrset.rdtype == dns.rdatatype.A:
                ips.append(ipaddress.IPv4Address(rdata.address))
            elif rrset.rdtype == dns.rdatatype.AAAA:
                ips.append(ipaddress.IPv6Address(rdata.address))
    return ips


def new_stream_dialer(resolver: Any, dialer: Any) -> HappyEyeballsStreamDialer:
    """Create a Happy Eyeballs stream dialer that looks names up with ``resolver``.

    IPv6 and IPv4 lookups run concurrently in worker threads; connection
    attempts go through ``dialer``. Raises ValueError if either is None.
    """
    if resolver is None:
        raise ValueError("resolver must not be None")
    if dialer is None:
        raise ValueError("dialer must not be None")

    async def resolve_ipv6(hostname: str) -> list[IPAddress]:
        return await asyncio.to_thread(resolve_ip, resolver, dns.rdatatype.AAAA, hostname)

    async def resolve_ipv4(hostname: str) -> list[IPAddress]:
        return await asyncio.to_thread(resolve_ip, resolver, dns.rdatatype.A, hostname)

    return HappyEyeballsStreamDialer(
        dialer=dialer,
        resolve=new_parallel_resolve_func(resolve_ipv6, resolve_ipv4),
    )