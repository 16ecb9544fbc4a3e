"""Frame scripts, capability values and wire constants for AVDTP signaling.

Signal and category values follow the AVDTP 1.3 assigned numbers.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple

import numpy as np

from .errors import FixtureError

# Signal identifiers
AVDTP_DISCOVER = 0x01
AVDTP_GET_CAPABILITIES = 0x02
AVDTP_SET_CONFIGURATION = 0x03
AVDTP_GET_CONFIGURATION = 0x04
AVDTP_RECONFIGURE = 0x05
AVDTP_OPEN = 0x06
AVDTP_START = 0x07
AVDTP_CLOSE = 0x08
AVDTP_SUSPEND = 0x09
AVDTP_ABORT = 0x0A
AVDTP_GET_ALL_CAPABILITIES = 0x0C

# Message types (low two bits of the first octet)
AVDTP_MSG_TYPE_COMMAND = 0x00
AVDTP_MSG_TYPE_GENERAL_REJECT = 0x01
AVDTP_MSG_TYPE_ACCEPT = 0x02
AVDTP_MSG_TYPE_REJECT = 0x03

# Service categories
AVDTP_MEDIA_TRANSPORT = 0x01
AVDTP_REPORTING = 0x02
AVDTP_RECOVERY = 0x03
AVDTP_CONTENT_PROTECTION = 0x04
AVDTP_MEDIA_CODEC = 0x07
AVDTP_DELAY_REPORTING = 0x08

AVDTP_MEDIA_TYPE_AUDIO = 0x00
AVDTP_MEDIA_TYPE_VIDEO = 0x01

AVDTP_SEP_TYPE_SOURCE = 0x00
AVDTP_SEP_TYPE_SINK = 0x01

SBC_CODEC_TYPE = 0x00

DEFAULT_MTU = 672
DEFAULT_VERSION = 0x0100
# Largest frame the harness can read back in one call.
MAX_FRAME_SIZE = 512

# Position of the signal identifier inside a single-packet signaling frame.
SIGNAL_ID_OFFSET = 1

CAPABILITY_HEADER = struct.Struct("BB")


@dataclass(frozen=True)
class Frame:
    """One scripted signaling message, or the end-of-script sentinel."""

    data: bytes = b""
    valid: bool = True

    def __post_init__(self) -> None:
        if not self.valid and self.data:
            raise FixtureError("sentinel frame cannot carry data")

    def __len__(self) -> int:
        return len(self.data)

    def octet(self, index: int) -> Optional[int]:
        """Return the octet at ``index`` or ``None`` when the frame is shorter."""
        if index < len(self.data):
            return self.data[index]
        return None


END = Frame(b"", valid=False)


def raw_pdu(*octets: int) -> bytes:
    """Build a frame payload from literal octets."""
    try:
        return bytes(octets)
    except ValueError as exc:
        raise FixtureError(f"invalid octet in pdu: {exc}") from exc


class FrameScript:
    """Immutable ordered list of frames terminated by two sentinels.

    Position in the script is the only thing that ties an injected frame to the
    frame expected in response; no frame content is interpreted here.
    """

    def __init__(self, frames: Iterable[Frame]) -> None:
        entries = tuple(frames)
        for index, frame in enumerate(entries):
            if not isinstance(frame, Frame):
                raise FixtureError(f"script entry {index} is not a Frame")
            if len(frame) > MAX_FRAME_SIZE:
                raise FixtureError(f"script entry {index} exceeds {MAX_FRAME_SIZE} bytes")
        if len(entries) < 2 or entries[-1].valid or entries[-2].valid:
            raise FixtureError("frame script must end with two sentinels")
        self._frames: Tuple[Frame, ...] = entries

    @classmethod
    def from_pdus(cls, *pdus: bytes) -> "FrameScript":
        frames: List[Frame] = []
        for index, pdu in enumerate(pdus):
            if not isinstance(pdu, (bytes, bytearray)):
                raise FixtureError(f"pdu {index} must be bytes, got {type(pdu).__name__}")
            if not pdu:
                raise FixtureError(f"pdu {index} is empty")
            frames.append(Frame(bytes(pdu)))
        frames.extend((END, END))
        return cls(frames)

    def next(self, cursor: int) -> Frame:
        """Return the frame at ``cursor``; past the end this is always the sentinel."""
        if cursor < 0:
            raise IndexError(f"negative script cursor {cursor}")
        if cursor >= len(self._frames):
            return END
        return self._frames[cursor]

    @property
    def end_position(self) -> int:
        """Index of the first sentinel."""
        return len(self._frames) - 2

    def pdus(self) -> List[bytes]:
        return [frame.data for frame in self._frames if frame.valid]

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[Frame]:
        return iter(self._frames)


@dataclass(frozen=True)
class ServiceCapability:
    """A single service capability element (category, length, payload)."""

    category: int
    data: bytes = b""

    def to_bytes(self) -> bytes:
        """Return the packed capability element."""
        if len(self.data) > 0xFF:
            raise ValueError(f"capability payload too long: {len(self.data)} bytes")
        return CAPABILITY_HEADER.pack(self.category, len(self.data)) + self.data


def media_transport_capability() -> ServiceCapability:
    return ServiceCapability(AVDTP_MEDIA_TRANSPORT)


def media_codec_capability(media_type: int, codec_type: int, info: bytes) -> ServiceCapability:
    """Media codec element: media type in the high nibble, codec type, codec info."""
    return ServiceCapability(AVDTP_MEDIA_CODEC, bytes([media_type << 4, codec_type]) + bytes(info))


def encode_capabilities(caps: Iterable[ServiceCapability]) -> bytes:
    return b"".join(cap.to_bytes() for cap in caps)


def mismatch_offset(expected: bytes, actual: bytes) -> Optional[int]:
    """Return the first offset where the frames differ, or ``None`` if identical."""
    common = min(len(expected), len(actual))
    if common:
        exp = np.frombuffer(expected[:common], dtype=np.uint8)
        act = np.frombuffer(actual[:common], dtype=np.uint8)
        diff = np.flatnonzero(exp != act)
        if diff.size:
            return int(diff[0])
    if len(expected) != len(actual):
        return common
    return None


def hexdump(direction: str, data: bytes, prefix: str = "AVDTP: ") -> List[str]:
    """Render ``data`` as hexdump lines of 16 octets."""
    lines: List[str] = []
    for start in range(0, len(data), 16):
        chunk = data[start : start + 16]
        hex_part = " ".join(f"{octet:02x}" for octet in chunk)
        text = "".join(chr(octet) if 0x20 <= octet < 0x7F else "." for octet in chunk)
        lines.append(f"{prefix}{direction} {hex_part:<47} {text}")
    return lines


def format_frame(data: bytes) -> str:
    return data.hex(" ") if data else "<empty>"
