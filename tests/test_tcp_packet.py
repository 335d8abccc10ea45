import struct

import pytest

from trafficreplay.tcp_packet import (
    CaptureInfo,
    Direction,
    EmptyPacketError,
    HeaderExpectedError,
    HeaderInvalidError,
    HeaderLengthError,
    HeaderMissingError,
    Packet,
    PacketError,
    ip_to_int,
    parse_packet,
)

SRC_V4 = bytes([10, 0, 0, 1])
DST_V4 = bytes([10, 0, 0, 2])
LOOP_LINK = struct.pack(">I", 2)


def _tcp_header(src_port, dst_port, seq, ack, flags):
    tcp = bytearray(24)
    struct.pack_into(">HHII", tcp, 0, src_port, dst_port, seq, ack)
    tcp[12] = 6 << 4
    tcp[13] = flags
    return bytes(tcp)


def _ipv4_frame(payload, *, src_port=5535, dst_port=8000, seq=1, ack=0, flags=0,
                proto=6, first_byte=4 << 4 | 6):
    ip = bytearray(24)
    ip[0] = first_byte
    struct.pack_into(">H", ip, 2, len(payload) + 48)
    ip[9] = proto
    ip[12:16] = SRC_V4
    ip[16:20] = DST_V4
    return LOOP_LINK + bytes(ip) + _tcp_header(src_port, dst_port, seq, ack, flags) + payload


def _ipv6_frame(payload, *, extension=False):
    src = bytes(15) + b"\x01"
    dst = bytes(15) + b"\x02"
    ip = bytearray(40)
    ip[0] = 6 << 4
    ip[6] = 0 if extension else 6
    ip[8:24] = src
    ip[24:40] = dst
    ext = b""
    if extension:
        ext = bytes([6, 0]) + bytes(6)
    return LOOP_LINK + bytes(ip) + ext + _tcp_header(80, 60000, 9, 3, 0x10) + payload


def _info(frame, lost=0):
    return CaptureInfo(timestamp=12.5, capture_length=len(frame), length=len(frame) + lost)


def test_parse_ipv4_fields():
    frame = _ipv4_frame(b"GET / HTTP/1.1\r\n\r\n", seq=100, ack=200)
    info = _info(frame, lost=10)
    pkt = parse_packet(frame, 0, 4, info, False)
    assert pkt.version == 4
    assert pkt.src_ip == SRC_V4
    assert pkt.dst_ip == DST_V4
    assert (pkt.src_port, pkt.dst_port) == (5535, 8000)
    assert (pkt.seq, pkt.ack) == (100, 200)
    assert pkt.payload == b"GET / HTTP/1.1\r\n\r\n"
    assert pkt.capture_length == len(frame)
    assert pkt.lost == info.length - info.capture_length
    assert pkt.timestamp == info.timestamp
    assert pkt.direction is Direction.UNKNOWN


def test_parse_flags():
    frame = _ipv4_frame(b"x", flags=0x01 | 0x02 | 0x10)
    pkt = parse_packet(frame, 0, 4, _info(frame), False)
    assert pkt.fin and pkt.syn and pkt.is_ack
    assert not pkt.rst


def test_empty_payload_rejected_unless_allowed():
    frame = _ipv4_frame(b"")
    with pytest.raises(EmptyPacketError, match="Empty packet"):
        parse_packet(frame, 0, 4, _info(frame), False)
    assert parse_packet(frame, 0, 4, _info(frame), True).payload == b""


@pytest.mark.parametrize(
    "frame, error, message",
    [
        (b"\x00\x00", HeaderLengthError, "short Link length"),
        (LOOP_LINK, HeaderMissingError, "missing IPv4 or IPv6 header(s)"),
        (LOOP_LINK + bytes([5 << 4]) + bytes(30), HeaderExpectedError, "expected IPv4 or IPv6 header(s)"),
        (LOOP_LINK + bytes([4 << 4]) + bytes(10), HeaderLengthError, "short IPv4 length"),
        (_ipv4_frame(b"x", first_byte=4 << 4 | 4), HeaderInvalidError, "invalid IPv4's IHL value"),
        (_ipv4_frame(b"x", proto=17), HeaderExpectedError, "expected TCP header(s)"),
        (_ipv4_frame(b"")[:4 + 24 + 10], HeaderLengthError, "short TCP length"),
        (LOOP_LINK + bytes([6 << 4]) + bytes(20), HeaderLengthError, "short IPv6 length"),
    ],
)
def test_parse_errors(frame, error, message):
    with pytest.raises(error) as excinfo:
        parse_packet(frame, 0, 4, CaptureInfo(), False)
    assert str(excinfo.value) == message
    assert isinstance(excinfo.value, PacketError)


@pytest.mark.parametrize("extension", [False, True])
def test_parse_ipv6(extension):
    frame = _ipv6_frame(b"HTTP/1.1 200 OK\r\n\r\n", extension=extension)
    pkt = parse_packet(frame, 0, 4, _info(frame), False)
    assert pkt.version == 6
    assert pkt.src_ip == bytes(15) + b"\x01"
    assert pkt.dst_ip == bytes(15) + b"\x02"
    assert (pkt.src_port, pkt.dst_port, pkt.seq, pkt.ack) == (80, 60000, 9, 3)
    assert pkt.is_ack
    assert pkt.payload == b"HTTP/1.1 200 OK\r\n\r\n"


def test_message_id_shared_within_message():
    first = parse_packet(_ipv4_frame(b"a", seq=1, ack=7), 0, 4, CaptureInfo(), False)
    second = parse_packet(_ipv4_frame(b"b", seq=2, ack=7), 0, 4, CaptureInfo(), False)
    other = parse_packet(_ipv4_frame(b"c", seq=3, ack=8), 0, 4, CaptureInfo(), False)
    assert first.message_id() == second.message_id()
    assert first.message_id() != other.message_id()
    assert first.message_id() >> 48 == first.src_port


def test_ip_to_int():
    assert ip_to_int(b"") == 0
    assert ip_to_int(bytes([127, 0, 0, 1])) == 0x7F000001
    assert ip_to_int(bytes(12) + SRC_V4) == ip_to_int(SRC_V4)
    with pytest.raises(ValueError):
        ip_to_int(b"\x01\x02")


def test_src_and_dst_strings():
    frame = _ipv4_frame(b"x")
    pkt = parse_packet(frame, 0, 4, _info(frame), False)
    assert pkt.src() == "10.0.0.1:5535"
    assert pkt.dst().endswith(":8000")
    mapped = bytes(10) + b"\xff\xff" + SRC_V4
    assert Packet(src_ip=mapped, src_port=80).src() == Packet(src_ip=SRC_V4, src_port=80).src()