"""Transport, network and DNS building blocks: datagram dialers, UDP packet proxies, Happy Eyeballs dialing and DNS resolvers."""

__version__ = "0.1.0"