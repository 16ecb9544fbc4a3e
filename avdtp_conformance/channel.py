"""Connected datagram socket pair shared by the session under test and the harness."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass

from .errors import FixtureError, ShortWriteError, ValidationError
from .protocol import MAX_FRAME_SIZE, Frame

logger = logging.getLogger(__name__)

READ_BUFFER_SIZE = MAX_FRAME_SIZE


@dataclass
class DuplexChannel:
    """Endpoint A belongs to the session under test, endpoint B to the harness."""

    session_endpoint: socket.socket
    harness_endpoint: socket.socket
    closed: bool = False

    @classmethod
    def create(cls) -> "DuplexChannel":
        """Create a SOCK_SEQPACKET pair so every write arrives as one read."""
        try:
            session_end, harness_end = socket.socketpair(socket.AF_UNIX, socket.SOCK_SEQPACKET)
        except (OSError, AttributeError) as exc:
            raise FixtureError(f"unable to create duplex channel: {exc}") from exc

        harness_end.setblocking(False)
        logger.debug(
            "channel_created session_fd=%d harness_fd=%d",
            session_end.fileno(),
            harness_end.fileno(),
        )
        return cls(session_endpoint=session_end, harness_endpoint=harness_end)

    def fileno(self) -> int:
        return self.harness_endpoint.fileno()

    def send(self, frame: Frame) -> int:
        """Write one frame in a single call; a partial write is a failure."""
        written = self.harness_endpoint.send(frame.data)
        if written != len(frame):
            raise ShortWriteError(
                f"wrote {written} of {len(frame)} bytes",
                expected=frame.data,
                actual=frame.data[:written],
            )
        return written

    def receive(self) -> bytes:
        """Read one frame; a frame that did not fit the buffer is rejected."""
        data, _, flags, _ = self.harness_endpoint.recvmsg(READ_BUFFER_SIZE)
        if flags & socket.MSG_TRUNC:
            raise ValidationError(
                f"received frame exceeds {READ_BUFFER_SIZE} bytes",
                actual=data,
            )
        return data

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.harness_endpoint.close()
        self.session_endpoint.close()
