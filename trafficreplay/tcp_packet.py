"""Parsing of captured IPv4/IPv6 TCP packets."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import IntEnum

_U64 = (1 << 64) - 1
_U32 = (1 << 32) - 1


class Direction(IntEnum):
    """Which side of a connection a packet or message belongs to."""

    UNKNOWN = 0
    INCOMING = 1
    OUTGOING = 2


@dataclass
class CaptureInfo:
    """Capture metadata: timestamp in seconds, captured and original lengths."""

    timestamp: float = 0.0
    capture_length: int = 0
    length: int = 0


class PacketError(ValueError):
    """Base class for packet parsing errors."""


class EmptyPacketError(PacketError):
    def __init__(self) -> None:
        super().__init__("Empty packet")


class HeaderLengthError(PacketError):
    def __init__(self, what: str) -> None:
        super().__init__(f"short {what} length")


class HeaderMissingError(PacketError):
    def __init__(self, what: str) -> None:
        super().__init__(f"missing {what} header(s)")


class HeaderExpectedError(PacketError):
    def __init__(self, what: str) -> None:
        super().__init__(f"expected {what} header(s)")


class HeaderInvalidError(PacketError):
    def __init__(self, what: str) -> None:
        super().__init__(f"invalid {what} value")


def ip_to_int(ip: bytes) -> int:
    """Return the last four bytes of an IPv6 address, or an IPv4 address, as an int."""
    if not ip:
        return 0
    if len(ip) == 16:
        return int.from_bytes(ip[12:16], "big")
    if len(ip) < 4:
        raise ValueError(f"IP address too short: {bytes(ip)!r}")
    return int.from_bytes(ip[:4], "big")


def _format_ip(ip: bytes) -> str:
    if not ip:
        return "<nil>"
    if len(ip) == 4:
        return str(ipaddress.IPv4Address(bytes(ip)))
    if len(ip) == 16:
        addr = ipaddress.IPv6Address(bytes(ip))
        mapped = addr.ipv4_mapped
        return str(mapped) if mapped is not None else str(addr)
    return "?" + bytes(ip).hex()


def _is_ipv6_extension(next_header: int) -> bool:
    return next_header in (0, 43, 44)


@dataclass(eq=False)
class Packet:
    """Addresses, TCP header fields and payload of one captured packet."""

    direction: Direction = Direction.UNKNOWN
    src_ip: bytes = b""
    dst_ip: bytes = b""
    version: int = 0
    src_port: int = 0
    dst_port: int = 0
    ack: int = 0
    seq: int = 0
    is_ack: bool = False
    syn: bool = False
    fin: bool = False
    rst: bool = False
    lost: int = 0
    retry: int = 0
    capture_length: int = 0
    timestamp: float = 0.0
    payload: bytes = b""
    _message_id: int = field(default=0, init=False, repr=False)

    def message_id(self) -> int:
        """Identifier shared by all packets of the same TCP message."""
        if self._message_id == 0:
            self._message_id = (
                (self.src_port << 48)
                | (self.dst_port << 32)
                | (ip_to_int(self.src_ip) + ip_to_int(self.dst_ip) + self.ack)
            ) & _U64
        return self._message_id

    def src(self) -> str:
        """Source socket as ``ip:port``."""
        return f"{_format_ip(self.src_ip)}:{self.src_port}"

    def dst(self) -> str:
        """Destination socket as ``ip:port``."""
        return f"{_format_ip(self.dst_ip)}:{self.dst_port}"


def parse_packet(
    data: bytes,
    link_type: int,
    link_type_len: int,
    capture_info: CaptureInfo,
    allow_empty: bool,
) -> Packet:
    """Parse a link-layer frame holding an IPv4 or IPv6 TCP segment.

    Raises a ``PacketError`` subclass when the frame cannot be parsed, and
    ``EmptyPacketError`` for payload-less segments unless ``allow_empty``.
    """
    data = bytes(data)
    if len(data) < link_type_len:
        raise HeaderLengthError("Link")
    if len(data) <= link_type_len:
        raise HeaderMissingError("IPv4 or IPv6")

    ldata = data[link_type_len:]
    ip_version = ldata[0] >> 4
    if ip_version == 4:
        if len(ldata) < 20:
            raise HeaderLengthError("IPv4")
        proto = ldata[9]
        ihl = (ldata[0] & 0x0F) * 4
        if ihl < 20:
            raise HeaderInvalidError("IPv4's IHL")
        if len(ldata) < ihl:
            raise HeaderLengthError("IPv4 opts")
        net_layer = ldata[:ihl]
    elif ip_version == 6:
        if len(ldata) < 40:
            raise HeaderLengthError("IPv6")
        proto = ldata[6]
        total = 40
        while _is_ipv6_extension(proto):
            remaining = len(ldata) - total
            if remaining < 8:
                raise HeaderExpectedError("IPv6 opts")
            ext_len = 8 if proto == 44 else (ldata[total + 1] + 1) * 8
            if remaining < ext_len:
                raise HeaderLengthError("IPv6 opts")
            proto = ldata[total]
            total += ext_len
        net_layer = ldata[:total]
    else:
        raise HeaderExpectedError("IPv4 or IPv6")

    if proto != 6:
        raise HeaderExpectedError("TCP")
    if len(data) <= len(net_layer):
        raise HeaderMissingError("TCP")

    ndata = ldata[len(net_layer):]
    if len(ndata) < 20:
        raise HeaderLengthError("TCP")
    offset = (ndata[12] >> 4) * 4
    if offset < 20:
        raise HeaderInvalidError("TCP's ndata offset")
    if len(ndata) < offset:
        raise HeaderLengthError("TCP opts")
    if not allow_empty and len(ndata) == offset:
        raise EmptyPacketError()

    if ip_version == 4:
        version, src_ip, dst_ip = 4, net_layer[12:16], net_layer[16:20]
    else:
        version, src_ip, dst_ip = 6, net_layer[8:24], net_layer[24:40]

    tcp = ndata[:offset]
    flags = tcp[13]
    return Packet(
        src_ip=src_ip,
        dst_ip=dst_ip,
        version=version,
        src_port=int.from_bytes(tcp[0:2], "big"),
        dst_port=int.from_bytes(tcp[2:4], "big"),
        seq=int.from_bytes(tcp[4:8], "big"),
        ack=int.from_bytes(tcp[8:12], "big"),
        fin=bool(flags & 0x01),
        syn=bool(flags & 0x02),
        rst=bool(flags & 0x04),
        is_ack=bool(flags & 0x10),
        lost=(capture_info.length - capture_info.capture_length) & _U32,
        capture_length=capture_info.capture_length,
        timestamp=capture_info.timestamp,
        payload=ndata[offset:],
    )