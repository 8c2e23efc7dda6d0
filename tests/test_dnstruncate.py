import struct
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from tunnelkit.network.dnstruncate import (
    DNS_UDP_MAX_MSG_LEN,
    DnsTruncateProxy,
    DnsTruncateRequestHandler,
)
from tunnelkit.network.errors import NetworkClosedError, PortUnreachableError
from tunnelkit.network.packet_proxy import PacketResponseReceiver


def _encode_name(name: str) -> bytes:
    out = b"".join(bytes([len(label)]) + label.encode() for label in name.split("."))
    return out + b"\x00"


def build_dns(response: bool, msg_id: int, questions: list[str]) -> bytes:
    """Build a DNS request, or the response the truncating proxy should give."""
    assert questions
    flags_hi = 0x01  # RD
    ancount = 0
    if response:
        flags_hi |= 0x80 | 0x02  # QR, TC
        ancount = len(questions)
    header = struct.pack(
        "!HBBHHHH", msg_id, flags_hi, 0x00, len(questions), ancount, 0, 1
    )
    body = b"".join(_encode_name(q) + struct.pack("!HH", 1, 1) for q in questions)
    opt = b"\x00" + struct.pack("!HHIH", 41, 4096, 0, 0)
    packet = header + body + opt
    assert len(packet) > 12
    return packet


class RecordingReceiver(PacketResponseReceiver):
    def __init__(self) -> None:
        self.responses: dict[str, bytes] = {}
        self.close_count = 0
        self._lock = threading.Lock()

    def write_from(self, data: bytes, source) -> int:
        assert len(data) <= DNS_UDP_MAX_MSG_LEN
        with self._lock:
            self.responses[str(source)] = bytes(data)
        return len(data)

    def close(self) -> None:
        self.close_count += 1


def query(sender, receiver: RecordingReceiver, request: bytes, dest: str) -> bytes:
    n = sender.write_to(request, dest)
    assert n == min(len(request), DNS_UDP_MAX_MSG_LEN)
    return receiver.responses[dest]


def test_truncated_bit_is_set_in_response():
    receiver = RecordingReceiver()
    sender = DnsTruncateProxy().new_session(receiver)
    request = build_dns(False, 0x2468, ["www.google.com", "www.youtube.com"])
    expected = build_dns(True, 0x2468, ["www.google.com", "www.youtube.com"])
    assert query(sender, receiver, request, "1.2.3.4:53") == expected
    sender.close()
    assert receiver.close_count == 1


def test_response_header_bits():
    receiver = RecordingReceiver()
    sender = DnsTruncateProxy().new_session(receiver)
    request = bytearray(build_dns(False, 0x1234, ["example.com"]))
    request[3] = 0x05  # nonzero RCODE in the request
    response = query(sender, receiver, bytes(request), "1.2.3.4:53")
    assert response[2] & 0x80 == 0x80
    assert response[2] & 0x02 == 0x02
    assert response[3] & 0x0F == 0
    assert response[6:8] == b"\x00\x01"
    assert response[0:2] == b"\x12\x34"


def test_request_is_not_modified():
    receiver = RecordingReceiver()
    sender = DnsTruncateProxy().new_session(receiver)
    request = bytearray(build_dns(False, 0x1111, ["example.com"]))
    original = bytes(request)
    sender.write_to(request, "1.2.3.4:53")
    assert bytes(request) == original
    assert receiver.responses["1.2.3.4:53"] != original


def test_invalid_dns_request_returns_error():
    receiver = RecordingReceiver()
    sender = DnsTruncateProxy().new_session(receiver)
    request = build_dns(False, 0x2345, ["www.google.com"])
    with pytest.raises(ValueError):
        sender.write_to(request[:11], "[::1]:53")
    assert "[::1]:53" not in receiver.responses

    response = query(sender, receiver, request[:12], "[::1]:53")
    assert len(response) == 12
    sender.close()


@pytest.mark.parametrize(
    "resolver", ["3.4.5.6:54", "127.0.0.1:52", "6.5.4.3:853", "8.8.8.8:443"]
)
def test_packet_not_sent_to_port_53_returns_error(resolver):
    receiver = RecordingReceiver()
    sender = DnsTruncateProxy().new_session(receiver)
    request = build_dns(False, 0x3456, ["www.google.com"])
    with pytest.raises(PortUnreachableError):
        sender.write_to(request, resolver)
    assert resolver not in receiver.responses


def test_write_to_closed_proxy_returns_error():
    receiver = RecordingReceiver()
    sender = DnsTruncateProxy().new_session(receiver)
    sender.close()
    request = build_dns(False, 0x4567, ["www.google.com"])
    with pytest.raises(NetworkClosedError):
        sender.write_to(request, "1.2.3.4:53")
    assert "1.2.3.4:53" not in receiver.responses


def test_close_twice_raises():
    receiver = RecordingReceiver()
    sender = DnsTruncateProxy().new_session(receiver)
    sender.close()
    with pytest.raises(NetworkClosedError):
        sender.close()
    assert receiver.close_count == 1


def test_new_session_with_none_receiver_returns_error():
    with pytest.raises(ValueError):
        DnsTruncateProxy().new_session(None)


def test_new_session_returns_working_handler():
    receiver = RecordingReceiver()
    handler = DnsTruncateProxy().new_session(receiver)
    assert isinstance(handler, DnsTruncateRequestHandler)
    request = build_dns(False, 0x0506, ["example.com"])
    assert handler.write_to(request, "1.2.3.4:53") == len(request)
    assert receiver.responses["1.2.3.4:53"] == build_dns(True, 0x0506, ["example.com"])


def test_long_request_is_cut_to_max_length():
    receiver = RecordingReceiver()
    sender = DnsTruncateProxy().new_session(receiver)
    request = build_dns(False, 0x0102, ["example.com"]) + b"\x00" * 600
    response = query(sender, receiver, request, "1.2.3.4:53")
    assert len(response) == DNS_UDP_MAX_MSG_LEN


def test_tuple_destination():
    receiver = RecordingReceiver()
    sender = DnsTruncateProxy().new_session(receiver)
    request = build_dns(False, 0x0A0B, ["example.com"])
    expected = build_dns(True, 0x0A0B, ["example.com"])
    n = sender.write_to(request, ("10.0.0.1", 53))
    assert n == len(request)
    assert receiver.responses["10.0.0.1:53"] == expected


def test_context_manager_closes():
    receiver = RecordingReceiver()
    with DnsTruncateProxy().new_session(receiver) as sender:
        sender.write_to(build_dns(False, 1, ["example.com"]), "1.2.3.4:53")
    assert receiver.close_count == 1


def test_multiple_write_to_race_condition():
    client_count = 20
    iterations = 20
    receiver = RecordingReceiver()
    sender = DnsTruncateProxy().new_session(receiver)

    def client(idx: int) -> list[bool]:
        dest = f"127.0.0.{idx + 1}:53"
        results = []
        for j in range(iterations):
            txid = idx * 1000 + j
            request = build_dns(False, txid, ["www.google.com"])
            expected = build_dns(True, txid, ["www.google.com"])
            n = sender.write_to(request, dest)
            results.append(n == len(request))
            results.append(receiver.responses[dest] == expected)
        return results

    with ThreadPoolExecutor(max_workers=client_count) as pool:
        outcomes = list(pool.map(client, range(client_count)))

    assert all(all(r) for r in outcomes)
    assert len(receiver.responses) == client_count
    sender.close()