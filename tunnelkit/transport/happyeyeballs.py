"""Connection establishment with Happy Eyeballs v2 (RFC 8305).

Happy Eyeballs v2 starts connection attempts as soon as the first address
lookup returns, instead of waiting for both the IPv6 and the IPv4 lookups.
When IPv4 addresses arrive before IPv6 ones, it waits briefly (the
resolution delay) so IPv6 is still preferred. Attempts alternate between
address families and start one after the other, each waiting for the
previous one to fail or for the connection attempt delay to pass.

All dialing is asynchronous. A dial is cancelled by cancelling the task that
runs it, or bounded with ``asyncio.timeout``.
"""

from __future__ import annotations

import asyncio
import inspect
import ipaddress
from collections import deque
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

from tunnelkit.transport.address import join_host_port, lookup_port, split_host_port

RESOLUTION_DELAY = 0.05
CONNECTION_ATTEMPT_DELAY = 0.25

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
ResolveFunc = Callable[[str], AsyncIterator["HappyEyeballsResolution"]]


@dataclass(frozen=True)
class HappyEyeballsResolution:
    """One result of a host name lookup: a group of IPs, or an error.

    Return all IPs of a lookup as one group rather than one at a time, since
    a later IP may be preferred.
    """

    ips: tuple[IPAddress, ...] = ()
    error: Exception | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "ips", tuple(ipaddress.ip_address(ip) for ip in self.ips)
        )


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _close_conn(conn: Any) -> None:
    close = getattr(conn, "close", None)
    if close is None:
        return
    try:
        await _maybe_await(close())
    except Exception:
        pass


def new_parallel_resolve_func(*resolve_funcs: Callable[[str], Any]) -> ResolveFunc:
    """Build a resolve function that runs the given lookups concurrently.

    Each lookup takes a host name and returns (or, if async, resolves to) a
    list of IP addresses. Results are yielded in the order they complete; a
    lookup that raises yields a resolution carrying the error. Pass one
    lookup for IPv6 and one for IPv4 to get Happy Eyeballs v2 behaviour.
    """

    async def resolve(hostname: str) -> AsyncIterator[HappyEyeballsResolution]:
        if not resolve_funcs:
            return
        results: asyncio.Queue[HappyEyeballsResolution] = asyncio.Queue()

        async def run(func: Callable[[str], Any]) -> None:
            try:
                ips = await _maybe_await(func(hostname))
            except Exception as err:
                result = HappyEyeballsResolution(error=err)
            else:
                result = HappyEyeballsResolution(tuple(ips or ()))
            results.put_nowait(result)

        tasks = [asyncio.create_task(run(func)) for func in resolve_funcs]
        try:
            for _ in tasks:
                yield await results.get()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    return resolve


def _parse_ip(host: str) -> IPAddress | None:
    if "%" in host:
        return None
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


@dataclass
class _TCPStreamConn:
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter

    def close(self) -> None:
        self.writer.close()


class _DialRace:
    """The state of one Happy Eyeballs connection race to a host name."""

    def __init__(
        self,
        dial: Callable[[str], Any],
        resolve: ResolveFunc,
        hostname: str,
        port: str,
    ) -> None:
        self._dial = dial
        self._resolve = resolve
        self._hostname = hostname
        self._port = port
        self._events: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._finished = False
        self._dial_tasks: set[asyncio.Task] = set()
        self._timers: list[asyncio.TimerHandle] = []

    async def _collect(self) -> None:
        results = self._resolve(self._hostname)
        try:
            async for result in results:
                self._events.put_nowait(("resolved", result))
        except Exception as err:
            self._events.put_nowait(("resolved", HappyEyeballsResolution(error=err)))
        finally:
            aclose = getattr(results, "aclose", None)
            if aclose is not None:
                await aclose()
            self._events.put_nowait(("resolve_done", None))

    async def _attempt(self, address: str, delay_done: asyncio.Event) -> None:
        try:
            try:
                conn = await self._dial(address)
            except Exception as err:
                self._events.put_nowait(("dialed", (None, err)))
                return
            if self._finished:
                await _close_conn(conn)
            else:
                self._events.put_nowait(("dialed", (conn, None)))
        finally:
            # A finished attempt ends the connection attempt delay early.
            delay_done.set()

    def _start_attempt(self, address: str, delay_done: asyncio.Event) -> None:
        task = asyncio.create_task(self._attempt(address, delay_done))
        self._dial_tasks.add(task)
        task.add_done_callback(self._dial_tasks.discard)

    async def _next_event(self, ready: asyncio.Event | None) -> tuple[str, Any]:
        if not self._events.empty():
            return self._events.get_nowait()
        if ready is None:
            return await self._events.get()
        if ready.is_set():
            return ("ready", None)
        get_task = asyncio.create_task(self._events.get())
        ready_task = asyncio.create_task(ready.wait())
        try:
            await asyncio.wait(
                {get_task, ready_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            ready_task.cancel()
            if get_task.done() and not get_task.cancelled():
                self._events.put_nowait(get_task.result())
            else:
                get_task.cancel()
            raise
        ready_task.cancel()
        if get_task.done():
            return get_task.result()
        get_task.cancel()
        return ("ready", None)

    async def _shutdown(self, collector: asyncio.Task) -> None:
        self._finished = True
        for timer in self._timers:
            timer.cancel()
        collector.cancel()
        dial_tasks = list(self._dial_tasks)
        for task in dial_tasks:
            task.cancel()
        await asyncio.gather(collector, *dial_tasks, return_exceptions=True)
        while not self._events.empty():
            kind, value = self._events.get_nowait()
            if kind == "dialed" and value[0] is not None:
                await _close_conn(value[0])

    async def run(self) -> Any:
        loop = asyncio.get_running_loop()
        ip4s: deque[IPAddress] = deque()
        ip6s: deque[IPAddress] = deque()
        last_dialed: IPAddress | None = None
        lookup_errors: list[Exception] = []
        dial_errors: list[Exception] = []
        resolving = True
        resolution_delay: asyncio.Event | None = None
        attempt_ready = asyncio.Event()
        attempt_ready.set()
        collector = asyncio.create_task(self._collect())
        try:
            pending = 1
            while pending > 0:
                ready: asyncio.Event | None
                if not ip4s and not ip6s:
                    ready = None
                elif last_dialed is None and not ip6s and resolving:
                    # IPv4 arrived first: give IPv6 a short head start.
                    if resolution_delay is None:
                        resolution_delay = asyncio.Event()
                        self._timers.append(
                            loop.call_later(RESOLUTION_DELAY, resolution_delay.set)
                        )
                    ready = resolution_delay
                else:
                    ready = attempt_ready

                kind, value = await self._next_event(ready)
                if kind == "resolve_done":
                    pending -= 1
                    resolving = False
                elif kind == "resolved":
                    if value.error is not None:
                        lookup_errors.append(value.error)
                        continue
                    pending += len(value.ips)
                    for ip in value.ips:
                        (ip6s if ip.version == 6 else ip4s).append(ip)
                elif kind == "ready":
                    if not ip6s or (
                        last_dialed is not None and last_dialed.version == 6 and ip4s
                    ):
                        target = ip4s.popleft()
                    else:
                        target = ip6s.popleft()
                    attempt_ready = asyncio.Event()
                    self._timers.append(
                        loop.call_later(CONNECTION_ATTEMPT_DELAY, attempt_ready.set)
                    )
                    self._start_attempt(
                        join_host_port(str(target), self._port), attempt_ready
                    )
                    last_dialed = target
                else:
                    pending -= 1
                    conn, err = value
                    if err is not None:
                        dial_errors.append(err)
                        continue
                    return conn
        finally:
            await self._shutdown(collector)

        if dial_errors:
            raise ExceptionGroup("all connection attempts failed", dial_errors)
        if lookup_errors:
            raise ExceptionGroup("address lookup failed", lookup_errors)
        raise LookupError("address lookup returned no IPs")


@dataclass
class HappyEyeballsStreamDialer:
    """A stream dialer that connects using Happy Eyeballs v2.

    ``dialer`` makes the individual connection attempts through its
    ``dial_stream(address)`` method; without one, a direct TCP connection is
    made. ``resolve`` maps a host name to an async iterator of
    HappyEyeballsResolution, for example one made by
    new_parallel_resolve_func.
    """

    dialer: Any = None
    resolve: ResolveFunc | None = None

    async def _dial(self, address: str) -> Any:
        if self.dialer is not None:
            return await _maybe_await(self.dialer.dial_stream(address))
        host, port = split_host_port(address)
        reader, writer = await asyncio.open_connection(host, lookup_port("tcp", port))
        return _TCPStreamConn(reader, writer)

    async def dial_stream(self, address: str) -> Any:
        """Connect to a ``host:port`` address and return the connection.

        IP hosts are dialed directly. For host names, raises an ExceptionGroup
        of the dial errors if every attempt failed, else an ExceptionGroup of
        the lookup errors, or LookupError if the lookups found no IPs.
        """
        try:
            hostname, port = split_host_port(address)
        except ValueError as err:
            raise ValueError(f"failed to parse address: {err}") from err
        if _parse_ip(hostname) is not None:
            return await self._dial(address)
        if self.resolve is None:
            raise ValueError(f"no resolve function to look up host {hostname!r}")
        return await _DialRace(self._dial, self.resolve, hostname, port).run()