import ipaddress

import pytest

from tunnelkit.transport.address import (
    DomainAddr,
    IPAddr,
    join_host_port,
    lookup_port,
    make_net_addr,
    split_host_port,
)


@pytest.mark.parametrize("address", ["example.com:53", "127.0.0.1:443", "[::1]:443"])
@pytest.mark.parametrize("network", ["tcp", "udp"])
def test_make_net_addr_type(address, network):
    net_addr = make_net_addr(network, address)
    assert net_addr.network == network
    assert str(net_addr) == address
    if address == "example.com:53":
        assert isinstance(net_addr, DomainAddr)
    else:
        assert isinstance(net_addr, IPAddr)


def test_make_net_addr_domain_case():
    assert str(make_net_addr("tcp", "Example.Com:83")) == "Example.Com:83"


def test_make_net_addr_ip4():
    net_addr = make_net_addr("tcp", "127.0.0.1:83")
    assert str(net_addr) == "127.0.0.1:83"
    assert net_addr.ip == ipaddress.ip_address("127.0.0.1")
    assert net_addr.port == 83


def test_make_net_addr_ip6():
    assert str(make_net_addr("tcp", "[0000:0000:0000::0001]:83")) == "[::1]:83"


def test_make_net_addr_resolve_port():
    assert str(make_net_addr("udp", "example.com:domain")) == "example.com:53"


def test_make_net_addr_ip_with_unknown_network():
    with pytest.raises(ValueError):
        make_net_addr("ip", "127.0.0.1:80")


def test_make_net_addr_missing_port():
    with pytest.raises(ValueError):
        make_net_addr("udp", "invalid-address?987654321")


@pytest.mark.parametrize(
    "address, expected",
    [
        ("example.com:8080", ("example.com", "8080")),
        ("example.com:", ("example.com", "")),
        ("8.8.8.8:53", ("8.8.8.8", "53")),
        ("[2001:4860:4860::8888]:8080", ("2001:4860:4860::8888", "8080")),
        ("[2001:4860:4860::8888]:", ("2001:4860:4860::8888", "")),
    ],
)
def test_split_host_port(address, expected):
    assert split_host_port(address) == expected


@pytest.mark.parametrize(
    "address",
    ["example.com", "2001:4860:4860::8888", "[::1]", "[::1", "[::1]x53", "invalid address"],
)
def test_split_host_port_errors(address):
    with pytest.raises(ValueError):
        split_host_port(address)


@pytest.mark.parametrize(
    "address", ["example.com:8080", "8.8.8.8:443", "[2001:4860:4860::8888]:443"]
)
def test_join_split_round_trip(address):
    host, port = split_host_port(address)
    assert join_host_port(host, port) == address


def test_lookup_port_numeric_and_service():
    assert lookup_port("udp", "53") == 53
    assert lookup_port("udp", "domain") == 53
    assert lookup_port("tcp", "https") == 443
    assert lookup_port("tcp", "") == 0


@pytest.mark.parametrize(
    "network, port",
    [("udp", "70000"), ("udp", "-1"), ("bogus", "domain"), ("udp", "no-such-service-here")],
)
def test_lookup_port_errors(network, port):
    with pytest.raises(ValueError):
        lookup_port(network, port)