# tunnelkit

Building blocks for code that connects through custom transports. It has
address helpers, UDP dialers and listeners, and a Happy Eyeballs v2 stream
dialer. It also has UDP packet proxies and DNS resolvers over UDP and TCP.

## Installation

```
pip install tunnelkit
```

To run the test suite from a checkout:

```
pip install ".[test]"
pytest
```

## Transport: `tunnelkit.transport`

### `tunnelkit.transport.address`

- `split_host_port(address)` splits `"host:port"` or `"[host]:port"`. It
  raises `ValueError` when the address has no port or is malformed.
- `join_host_port(host, port)` puts brackets around hosts that contain a colon.
- `lookup_port(network, port)` accepts a number or a service name such as
  `"domain"` or `"https"`, and returns the port number.
- `make_net_addr(network, address)` returns one of two objects:
  - an `IPAddr(network, ip, port)` for IP hosts, where the network must be
    `"tcp"` or `"udp"`;
  - a `DomainAddr(network, address)` for domain names, with the port
    resolved to a number.

### `tunnelkit.transport.packet`

This module holds the synchronous, socket-based datagram pieces:

- `UDPDialer(timeout=None).dial_packet(address)` returns a connected
  `UDPConnection`, which has `read`, `write` and `close`.
- `UDPListener(address="").listen_packet()` returns an unbound `UDPSocket`,
  which has `read_from`, `write_to` and `close`. An empty address binds to
  all interfaces.
- `UDPEndpoint(address)` connects to one fixed address.
  `PacketDialerEndpoint(dialer, address)` does the same through any packet
  dialer.
- `PacketListenerDialer(listener).dial_packet(address)` returns a
  `BoundPacketConn` over a socket from the listener. Its reads drop
  datagrams from any sender except the remote address.
- `FuncPacketDialer` and `FuncPacketEndpoint` wrap plain functions.

Connections and sockets can be used as context managers.

### `tunnelkit.transport.happyeyeballs`

`HappyEyeballsStreamDialer(dialer=None, resolve=None)` is asynchronous.
`await dial_stream("host:port")` follows Happy Eyeballs v2:

- It starts connection attempts as soon as lookup results arrive.
- If IPv4 addresses arrive first, it waits 50 ms so that IPv6 is still
  preferred.
- It alternates between address families.
- Each attempt starts when the previous one fails or 250 ms have passed.

IP hosts are dialed directly. Without a `dialer`, a plain TCP connection is
opened. When every attempt fails, `dial_stream` raises an `ExceptionGroup`
of the dial errors. If no attempt was made, it raises an `ExceptionGroup`
of the lookup errors. If the lookups found no addresses, it raises
`LookupError`.

`new_parallel_resolve_func(*lookups)` builds a `resolve` function from lookup
functions, which may be plain or async. The lookups run concurrently. Each
result is yielded as a `HappyEyeballsResolution(ips, error)` as soon as it
completes.

## Network: `tunnelkit.network`

- `packet_proxy` defines the abstract interfaces for UDP sessions:
  - `PacketProxy.new_session(receiver)`;
  - `PacketRequestSender.write_to` / `close`;
  - `PacketResponseReceiver.write_from` / `close`.
- `delegate.DelegatePacketProxy(proxy)` forwards `new_session` to an
  underlying proxy. `set_proxy` replaces that proxy for later sessions only.
  Passing `None` raises `ValueError`.
- `packet_listener_proxy.PacketListenerProxy(listener, write_idle_timeout=30.0)`
  opens one listener socket per session and relays responses to the receiver
  on a background thread. A session closes itself when nothing has been
  written for the idle timeout.
- `dnstruncate.DnsTruncateProxy` answers every DNS request sent to port 53 on
  the spot. The answer is the request with these changes:
  - the response and truncated bits are set;
  - the RCODE is cleared;
  - QDCOUNT is copied to ANCOUNT;
  - it is cut to 512 bytes.

  Clients then retry over TCP. Other ports raise `PortUnreachableError`.
  Packets shorter than a DNS header raise `ValueError`.
- `errors` holds the following:
  - `NetworkError` and its subclasses `NetworkClosedError`,
    `PortUnreachableError` and `MessageSizeError`;
  - the abstract `IPDevice` interface.

## DNS: `tunnelkit.dns`

- `resolver.new_question(domain, qtype)` builds a `Question` for the Internet
  class and adds the final `"."` if it is missing. `build_request`,
  `check_response`, `query_datagram` and `query_stream` are the lower-level
  steps. Over streams, messages carry a 2-byte length prefix.
- `UDPResolver(resolver_address, dialer=None, timeout=None)` and
  `TCPResolver(...)` open a new connection for every `query(question)`. They
  use port 53 when the address has none. `FuncResolver(func)` wraps a
  function.
- Failures raise subclasses of `DNSError`: `BadRequestError`, `DialError`,
  `SendError`, `ReceiveError` and `BadResponseError`.
- `stream_dialer.new_stream_dialer(resolver, dialer)` returns a
  `HappyEyeballsStreamDialer`. It looks up AAAA and A records with the
  resolver, in worker threads, and connects through `dialer`.
  `resolve_ip(resolver, rr_type, hostname)` performs one such lookup.

## Example

```python
from tunnelkit.dns.resolver import UDPResolver, new_question
from tunnelkit.transport.address import make_net_addr

print(make_net_addr("udp", "example.com:domain"))  # example.com:53

resolver = UDPResolver("192.0.2.53", timeout=5.0)
response = resolver.query(new_question("example.com", "AAAA"))
print(response.answer)
```

## What it does not do

- There are no DNS-over-TLS or DNS-over-HTTPS resolvers.
- There is no user-space network stack. `IPDevice` is only an interface, and
  nothing in the package turns IP packets into TCP or UDP flows.
- There is no command-line program and no server.