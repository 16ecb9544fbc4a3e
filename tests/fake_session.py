"""Minimal AVDTP signaling endpoint used as the session under test.

It speaks just enough of the protocol (single-packet frames, discover,
capabilities, configuration, open, start) for the conformance catalog to run
end to end over the harness channel.
"""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from avdtp_conformance import protocol
from avdtp_conformance.session import SepConfirmations, SepIndications, Session


class LabelCounter:
    """Transaction labels, shared by every session created from one factory."""

    def __init__(self, start: int = 0) -> None:
        self._value = start

    def next(self) -> int:
        label = self._value
        self._value = (self._value + 1) % 16
        return label


@dataclass
class FakeLocalSep:
    seid: int
    sep_type: int
    media_type: int
    codec_type: int
    delay_reporting: bool
    ind: Optional[SepIndications] = None
    cfm: Optional[SepConfirmations] = None
    in_use: bool = False
    configuration: bytes = b""


@dataclass
class FakeRemoteSep:
    seid: int
    in_use: bool
    media_type: int
    sep_type: int
    capabilities: List[Tuple[int, bytes]] = field(default_factory=list)

    def codec_type(self) -> Optional[int]:
        for category, data in self.capabilities:
            if category == protocol.AVDTP_MEDIA_CODEC and len(data) >= 2:
                return data[1]
        return None


@dataclass
class FakeStream:
    local: FakeLocalSep
    remote: FakeRemoteSep
    transport: Optional[int] = None


def parse_capabilities(data: bytes) -> List[Tuple[int, bytes]]:
    caps = []
    offset = 0
    while offset + 2 <= len(data):
        category, length = data[offset], data[offset + 1]
        caps.append((category, data[offset + 2 : offset + 2 + length]))
        offset += 2 + length
    return caps


class FakeSession(Session):
    def __init__(self, sock, imtu, omtu, version, labels=None):
        self.sock = sock
        self.imtu = imtu
        self.omtu = omtu
        self.version = version
        self.labels = labels or LabelCounter()
        self.local_seps: List[FakeLocalSep] = []
        self.remote_seps: List[FakeRemoteSep] = []
        self.pending: Dict[int, Tuple[int, object]] = {}
        self.streams: List[FakeStream] = []
        self.sent: List[bytes] = []
        self.closed = False
        self._discover_cb = None
        self._caps_queue: List[FakeRemoteSep] = []

        sock.setblocking(False)
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(sock.fileno(), self._on_readable)

    # Session interface

    def register_sep(self, sep_type, media_type, codec_type, delay_reporting, ind=None, cfm=None):
        used = {sep.seid for sep in self.local_seps}
        seid = next(candidate for candidate in range(1, 0x3F) if candidate not in used)
        sep = FakeLocalSep(seid, sep_type, media_type, codec_type, delay_reporting, ind, cfm)
        self.local_seps.append(sep)
        return sep

    def unregister_sep(self, sep):
        self.local_seps.remove(sep)

    def discover(self, callback):
        self._discover_cb = callback
        self._request(protocol.AVDTP_DISCOVER, b"", None)
        return 0

    def find_remote_sep(self, local_sep):
        for remote in self.remote_seps:
            if remote.sep_type == local_sep.sep_type or remote.in_use:
                continue
            if remote.media_type != local_sep.media_type:
                continue
            if remote.codec_type() != local_sep.codec_type:
                continue
            return remote
        return None

    def set_configuration(self, remote_sep, local_sep, caps):
        stream = FakeStream(local_sep, remote_sep)
        self.streams.append(stream)
        payload = bytes([remote_sep.seid << 2, local_sep.seid << 2]) + protocol.encode_capabilities(caps)
        self._request(protocol.AVDTP_SET_CONFIGURATION, payload, stream)
        return 0, stream

    def get_configuration(self, stream):
        self._request(protocol.AVDTP_GET_CONFIGURATION, bytes([stream.remote.seid << 2]), stream)
        return 0

    def open(self, stream):
        self._request(protocol.AVDTP_OPEN, bytes([stream.remote.seid << 2]), stream)
        return 0

    def start(self, stream):
        if stream.transport is None:
            return -1
        self._request(protocol.AVDTP_START, bytes([stream.remote.seid << 2]), stream)
        return 0

    def stream_set_transport(self, stream, fd, imtu, omtu):
        stream.transport = fd
        return True

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._loop.remove_reader(self.sock.fileno())
        for stream in self.streams:
            if stream.transport is not None:
                os.close(stream.transport)
                stream.transport = None

    # Wire handling

    def _write(self, header: int, signal: int, payload: bytes) -> None:
        frame = bytes([header, signal]) + payload
        self.sent.append(frame)
        self.sock.send(frame)

    def _request(self, signal: int, payload: bytes, target) -> None:
        label = self.labels.next()
        self.pending[label] = (signal, target)
        self._write(label << 4 | protocol.AVDTP_MSG_TYPE_COMMAND, signal, payload)

    def _on_readable(self) -> None:
        try:
            data = self.sock.recv(self.imtu)
        except BlockingIOError:
            return
        if not data:
            self._loop.remove_reader(self.sock.fileno())
            return
        label = data[0] >> 4
        msg_type = data[0] & 0x03
        signal = data[1] & 0x3F
        if msg_type == protocol.AVDTP_MSG_TYPE_COMMAND:
            self._handle_command(label, signal, data[2:])
        else:
            self._handle_response(label, msg_type, signal, data[2:])

    def _find_local(self, seid: int) -> Optional[FakeLocalSep]:
        for sep in self.local_seps:
            if sep.seid == seid:
                return sep
        return None

    def _handle_command(self, label: int, signal: int, payload: bytes) -> None:
        accept = label << 4 | protocol.AVDTP_MSG_TYPE_ACCEPT
        reject = label << 4 | protocol.AVDTP_MSG_TYPE_REJECT

        if signal == protocol.AVDTP_DISCOVER:
            body = b"".join(
                bytes([sep.seid << 2 | int(sep.in_use) << 1, sep.media_type << 4 | sep.sep_type << 3])
                for sep in self.local_seps
            )
            self._write(accept, signal, body)
            return

        sep = self._find_local(payload[0] >> 2) if payload else None
        if sep is None:
            self._write(reject, signal, bytes([0x12]))
            return

        if signal in (protocol.AVDTP_GET_CAPABILITIES, protocol.AVDTP_GET_ALL_CAPABILITIES):
            get_all = signal == protocol.AVDTP_GET_ALL_CAPABILITIES
            caps = sep.ind.get_capability(self, sep, get_all) if sep.ind and sep.ind.get_capability else ()
            self._write(accept, signal, protocol.encode_capabilities(caps))
        elif signal == protocol.AVDTP_SET_CONFIGURATION:
            sep.in_use = True
            sep.configuration = payload[2:]
            self._write(accept, signal, b"")
        elif signal == protocol.AVDTP_GET_CONFIGURATION:
            self._write(accept, signal, sep.configuration)
        elif signal in (protocol.AVDTP_OPEN, protocol.AVDTP_START):
            self._write(accept, signal, b"")
        else:
            self._write(label << 4 | protocol.AVDTP_MSG_TYPE_GENERAL_REJECT, signal, b"")

    def _handle_response(self, label: int, msg_type: int, signal: int, payload: bytes) -> None:
        pending_signal, target = self.pending.pop(label, (None, None))
        if pending_signal != signal:
            return
        error = None if msg_type == protocol.AVDTP_MSG_TYPE_ACCEPT else ("rejected", payload)

        if signal == protocol.AVDTP_DISCOVER:
            if error is not None:
                self._discover_cb(self, [], error)
                return
            self.remote_seps = [
                FakeRemoteSep(
                    seid=payload[i] >> 2,
                    in_use=bool(payload[i] >> 1 & 0x01),
                    media_type=payload[i + 1] >> 4,
                    sep_type=payload[i + 1] >> 3 & 0x01,
                )
                for i in range(0, len(payload) - 1, 2)
            ]
            self._caps_queue = list(self.remote_seps)
            self._next_capabilities()
        elif signal == protocol.AVDTP_GET_CAPABILITIES:
            if error is None:
                target.capabilities = parse_capabilities(payload)
            self._next_capabilities()
        elif signal == protocol.AVDTP_SET_CONFIGURATION:
            self._confirm("set_configuration", target, error)
        elif signal == protocol.AVDTP_OPEN:
            self._confirm("open", target, error)
        elif signal == protocol.AVDTP_START:
            self._confirm("start", target, error)

    def _next_capabilities(self) -> None:
        if self._caps_queue:
            remote = self._caps_queue.pop(0)
            self._request(protocol.AVDTP_GET_CAPABILITIES, bytes([remote.seid << 2]), remote)
            return
        if self._discover_cb is not None:
            self._discover_cb(self, list(self.remote_seps), None)

    def _confirm(self, kind: str, stream: FakeStream, error) -> None:
        cfm = stream.local.cfm
        callback = getattr(cfm, kind, None) if cfm is not None else None
        if callback is not None:
            callback(self, stream.local, stream, error)


def make_factory(start_label: int = 0):
    """Factory whose sessions share one transaction label sequence."""
    labels = LabelCounter(start_label)

    def factory(sock, imtu, omtu, version):
        return FakeSession(sock, imtu, omtu, version, labels=labels)

    factory.labels = labels
    return factory
