"""Reassembly of TCP packets into messages.

A :class:`MessageParser` collects packets belonging to the same TCP message,
identified by source port, destination port, and the last four bytes of the
addresses plus the acknowledgement number. It emits each message when it is
complete. Completion is decided by the ``end`` hint, or by expiry when no hint
is set.

Example::

    parser = MessageParser(5 << 20, 2.0, False, debugger)
    parser.start = lambda pkt: (is_request(pkt), is_response(pkt))
    parser.end = lambda msg: is_complete(msg)
    parser.packet_handler(packet)
    message = parser.read()

The level passed to the debugger gives the priority of a log entry: 4 for
errors, 5 for discarded packets and 6 for received packets.
"""

from __future__ import annotations

import bisect
import queue
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from trafficreplay.tcp_packet import Direction, Packet, ip_to_int

_U64 = (1 << 64) - 1
_U32 = (1 << 32) - 1

TICK_INTERVAL = 0.1
DEFAULT_MAX_SIZE = 5 << 20
DEFAULT_EXPIRE = 1.0
QUEUE_SIZE = 10000

stats: Counter = Counter()
_stats_lock = threading.Lock()


def _count(name: str) -> None:
    with _stats_lock:
        stats[name] += 1


def _seq(packet: Packet) -> int:
    return packet.seq


Debugger = Callable[..., None]
HintStart = Callable[[Packet], "tuple[bool, bool]"]
HintEnd = Callable[["Message"], bool]


@dataclass(eq=False)
class Message:
    """Packets of one TCP message, kept in sequence order, plus their stats."""

    packets: list[Packet] = field(default_factory=list)
    direction: Direction = Direction.UNKNOWN
    lost_data: int = 0
    length: int = 0
    start: float = 0.0
    end: float = 0.0
    src_addr: str = ""
    dst_addr: str = ""
    timed_out: bool = False
    truncated: bool = False
    ip_version: int = 0
    protocol_state: Any = field(default=None, repr=False)
    parser: Optional["MessageParser"] = field(default=None, repr=False)

    def uuid(self) -> bytes:
        """24 hex characters shared by a request and its response."""
        first = self.packets[0]
        if self.direction == Direction.INCOMING:
            stream = (
                (first.src_port << 48)
                | (first.dst_port << 32)
                | ip_to_int(first.src_ip)
            )
            tail = first.ack
        else:
            stream = (
                (first.dst_port << 48)
                | (first.src_port << 32)
                | ip_to_int(first.dst_ip)
            )
            tail = first.seq
        raw = (stream & _U64).to_bytes(8, "big") + (tail & _U32).to_bytes(4, "big")
        return raw.hex().encode("ascii")

    def add(self, packet: Packet) -> bool:
        """Insert a packet in sequence order; duplicates are skipped (False)."""
        if any(p.seq == packet.seq for p in self.packets):
            return False
        index = bisect.bisect_right(self.packets, packet.seq, key=_seq)
        self.packets.insert(index, packet)
        self.length += len(packet.payload)
        self.lost_data += packet.lost
        if self.end == 0 or packet.timestamp > self.end:
            self.end = packet.timestamp
        return True

    def missing_chunk(self) -> bool:
        """Whether there is a gap between consecutive packets' sequence numbers."""
        next_seq = self.packets[0].seq
        for packet in self.packets:
            if packet.seq != next_seq:
                return True
            next_seq = (next_seq + len(packet.payload)) & _U32
        return False

    def packet_data(self) -> list[bytes]:
        """Payloads of the packets, in order."""
        return [packet.payload for packet in self.packets]

    def data(self) -> bytes:
        """The reassembled message payload."""
        return b"".join(self.packet_data())

    def sort(self) -> None:
        """Stable sort of packets by sequence number."""
        self.packets.sort(key=_seq)


class MessageParser:
    """Collects packets from a background thread and emits complete messages."""

    def __init__(
        self,
        max_size: int = 0,
        message_expire: float = 0.0,
        allow_incomplete: bool = False,
        debugger: Optional[Debugger] = None,
    ) -> None:
        self._debugger = debugger
        self.message_expire = message_expire if message_expire else DEFAULT_EXPIRE
        self.max_size = max_size if max_size >= 1 else DEFAULT_MAX_SIZE
        self.allow_incomplete = allow_incomplete
        self.start: Optional[HintStart] = None
        self.end: Optional[HintEnd] = None
        self._packets: queue.Queue[Packet] = queue.Queue(maxsize=QUEUE_SIZE)
        self._messages: queue.Queue[Message] = queue.Queue(maxsize=QUEUE_SIZE)
        self._pending: dict[int, Message] = {}
        self._stop = threading.Event()
        self._worker = threading.Thread(target=self._run, daemon=True)
        self._worker.start()

    def __enter__(self) -> "MessageParser":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def packet_handler(self, packet: Packet) -> None:
        """Queue a packet for reassembly."""
        self._packets.put(packet)

    def read(self, timeout: Optional[float] = None) -> Message:
        """Return the next complete message; TimeoutError if none arrives in time."""
        try:
            return self._messages.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no message available") from None

    def emit(self, message: Message) -> None:
        """Hand a message over to readers and forget about it."""
        _count("message_count")
        self._pending.pop(message.packets[0].message_id(), None)
        self._messages.put(message)

    def debug(self, level: int, *args: object) -> None:
        """Forward to the debugger, if one was given."""
        if self._debugger is not None:
            self._debugger(level, *args)

    def close(self) -> None:
        """Stop the background thread and wait for it to finish."""
        self._stop.set()
        if self._worker is not threading.current_thread():
            self._worker.join()

    def _run(self) -> None:
        next_tick = time.monotonic() + TICK_INTERVAL
        while not self._stop.is_set():
            remaining = next_tick - time.monotonic()
            if remaining <= 0:
                self._expire(time.time())
                next_tick = time.monotonic() + TICK_INTERVAL
                continue
            try:
                packet = self._packets.get(timeout=remaining)
            except queue.Empty:
                continue
            try:
                self._process(packet)
            except Exception as err:  # keep the worker alive on bad hints
                self.debug(4, "error while processing packet:", err)

    def _process(self, packet: Packet) -> None:
        message_id = packet.message_id()
        message = self._pending.get(message_id)
        if message is not None:
            self._add_packet(message, packet)
            return

        if packet.direction == Direction.UNKNOWN and self.start is not None:
            incoming, outgoing = self.start(packet)
            if not (incoming or outgoing):
                # Packets may arrive out of order; give them another chance.
                if packet.retry < 2 and packet.payload:
                    packet.retry += 1
                    try:
                        self._packets.put_nowait(packet)
                    except queue.Full:
                        self.debug(5, "dropping unknown packet", packet.src())
                return
            packet.direction = Direction.INCOMING if incoming else Direction.OUTGOING

        message = Message(
            direction=packet.direction, start=packet.timestamp, parser=self
        )
        self._pending[message_id] = message
        self._add_packet(message, packet)

    def _add_packet(self, message: Message, packet: Packet) -> bool:
        overflow = message.length + len(packet.payload) - self.max_size
        if overflow > 0:
            message.truncated = True
            _count("message_timeout_count")
            packet.payload = packet.payload[: self.max_size - message.length]
        if not message.add(packet):
            return False
        if overflow > 0:
            return False
        if self.end is not None and self.end(message):
            self.emit(message)
        return True

    def _expire(self, now: float) -> None:
        for message in list(self._pending.values()):
            if now - message.end > self.message_expire:
                message.timed_out = True
                _count("message_timeout_count")
                if self.end is None or self.allow_incomplete:
                    self.emit(message)
                else:
                    self._pending.pop(message.packets[0].message_id(), None)