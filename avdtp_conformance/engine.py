"""Scripted exchange engine.

The engine owns the harness end of a :class:`DuplexChannel` and replays a
:class:`FrameScript` against the session under test. Script entries alternate
between frames the harness writes and frames the session must write back; which
side goes first is decided by the driver. Wire activity and session
confirmations are both turned into events on one queue, so exactly one event
is handled at a time and in arrival order.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .channel import DuplexChannel
from .errors import (
    ChannelClosedError,
    FixtureError,
    ScenarioTimeoutError,
    UnexpectedCallbackError,
    ValidationError,
    ZeroLengthReadError,
)
from .protocol import DEFAULT_MTU, DEFAULT_VERSION, Frame, FrameScript, format_frame, hexdump, mismatch_offset
from .session import LocalSep, Session, SessionFactory

logger = logging.getLogger(__name__)

SENT = "<"
RECEIVED = ">"


class EngineState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"
    FAILED = "failed"


@dataclass(frozen=True)
class SendNext:
    """Write the frame at the cursor."""


@dataclass(frozen=True)
class FrameReceived:
    data: bytes
    truncated: bool = False


@dataclass(frozen=True)
class ChannelClosed:
    reason: str


@dataclass(frozen=True)
class Confirmation:
    """A completion reported by the session under test.

    ``kind`` is one of ``discover``, ``set_configuration``, ``open`` or
    ``start``. ``payload`` is the remote SEP list for discovery and the stream
    handle otherwise.
    """

    kind: str
    session: Any
    payload: Any = None
    error: Optional[object] = None


Event = Union[SendNext, FrameReceived, ChannelClosed, Confirmation]
ConfirmationHandler = Callable[["ScenarioContext", Confirmation], None]


@dataclass
class ScenarioContext:
    """Per-run state shared by the engine and the scenario driver."""

    script: FrameScript
    channel: DuplexChannel
    session: Optional[Session] = None
    sep: Optional[LocalSep] = None
    cursor: int = 0
    verbose: bool = False
    handlers: Dict[str, ConfirmationHandler] = field(default_factory=dict)
    trace: List[Tuple[str, bytes]] = field(default_factory=list)
    accepting: bool = True
    _events: "asyncio.Queue[Event]" = field(default_factory=asyncio.Queue, repr=False)

    def post(self, event: Event) -> None:
        """Queue an event for the engine; ignored once the run has ended."""
        if not self.accepting:
            logger.debug("event_dropped event=%s", type(event).__name__)
            return
        self._events.put_nowait(event)

    def peek(self) -> Frame:
        """Frame at the cursor: the next one to send or to expect."""
        return self.script.next(self.cursor)

    def on(self, kind: str, handler: ConfirmationHandler) -> None:
        self.handlers[kind] = handler

    def discover_callback(self) -> Callable[[Any, Sequence[Any], Optional[object]], None]:
        def _callback(session: Any, seps: Sequence[Any], error: Optional[object]) -> None:
            self.post(Confirmation("discover", session, list(seps), error))

        return _callback

    def stream_confirmation(self, kind: str) -> Callable[[Any, Any, Any, Optional[object]], None]:
        def _callback(session: Any, sep: Any, stream: Any, error: Optional[object]) -> None:
            self.post(Confirmation(kind, session, stream, error))

        return _callback

    def release(self) -> None:
        self.accepting = False
        session, self.session = self.session, None
        try:
            if session is not None:
                session.close()
        finally:
            self.channel.close()


def create_context(
    script: FrameScript,
    session_factory: SessionFactory,
    mtu: int = DEFAULT_MTU,
    version: int = DEFAULT_VERSION,
    verbose: bool = False,
) -> ScenarioContext:
    """Open a channel and bind a fresh session to its session endpoint."""
    channel = DuplexChannel.create()
    try:
        session = session_factory(channel.session_endpoint, mtu, mtu, version)
    except Exception:
        channel.close()
        raise
    if session is None:
        channel.close()
        raise FixtureError("session factory returned no session")
    return ScenarioContext(script=script, channel=channel, session=session, verbose=verbose)


class ExchangeEngine:
    """Replay a script against the session bound to ``context``."""

    def __init__(self, context: ScenarioContext) -> None:
        self.context = context
        self.state = EngineState.IDLE
        self._reading = False

    def schedule_send(self) -> None:
        self.context.post(SendNext())

    async def run(self, timeout: Optional[float] = None) -> None:
        """Process events until the script is exhausted.

        Raises a :class:`HarnessError` subclass on the first violation. Without
        ``timeout`` an unresponsive session blocks forever.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        context = self.context

        self.state = EngineState.RUNNING
        loop.add_reader(context.channel.fileno(), self._on_readable)
        self._reading = True
        try:
            while self.state is EngineState.RUNNING:
                event = await self._next_event(loop, deadline)
                self._dispatch(event)
        except Exception:
            if self.state is EngineState.RUNNING:
                self.state = EngineState.FAILED
            raise
        finally:
            context.accepting = False
            self._stop_reading()

        logger.debug("run_finished cursor=%d frames=%d", context.cursor, len(context.trace))

    async def _next_event(self, loop: asyncio.AbstractEventLoop, deadline: Optional[float]) -> Event:
        queue = self.context._events
        if deadline is None:
            return await queue.get()
        remaining = deadline - loop.time()
        try:
            if remaining <= 0:
                return queue.get_nowait()
            return await asyncio.wait_for(queue.get(), remaining)
        except (asyncio.TimeoutError, asyncio.QueueEmpty):
            raise ScenarioTimeoutError(
                f"no progress at script position {self.context.cursor} before the deadline"
            ) from None

    def _on_readable(self) -> None:
        try:
            data = self.context.channel.receive()
        except BlockingIOError:
            return
        except ValidationError as exc:
            self.context.post(FrameReceived(exc.actual or b"", truncated=True))
            return
        except OSError as exc:
            self._stop_reading()
            self.context.post(ChannelClosed(f"read failed: {exc}"))
            return
        if not data:
            # EOF stays readable; stop watching after the first empty read.
            self._stop_reading()
        self.context.post(FrameReceived(data))

    def _stop_reading(self) -> None:
        if not self._reading:
            return
        self._reading = False
        try:
            asyncio.get_running_loop().remove_reader(self.context.channel.fileno())
        except (RuntimeError, ValueError, OSError):
            logger.debug("reader_already_removed")

    def _dispatch(self, event: Event) -> None:
        if isinstance(event, SendNext):
            self._send_next()
        elif isinstance(event, FrameReceived):
            self._validate(event.data, event.truncated)
        elif isinstance(event, ChannelClosed):
            self.state = EngineState.DRAINING
            raise ChannelClosedError(
                f"channel closed at script position {self.context.cursor}: {event.reason}"
            )
        elif isinstance(event, Confirmation):
            self._confirm(event)
        else:
            raise UnexpectedCallbackError(f"unknown event {event!r}")

    def _send_next(self) -> None:
        context = self.context
        frame = context.peek()
        if not frame.valid:
            self._terminate()
            return

        position = context.cursor
        context.cursor += 1
        try:
            context.channel.send(frame)
        except OSError as exc:
            self.state = EngineState.DRAINING
            raise ChannelClosedError(f"write of frame {position} failed: {exc}") from exc
        self._record(SENT, frame.data)

        if not context.peek().valid:
            self._terminate()

    def _validate(self, data: bytes, truncated: bool = False) -> None:
        context = self.context
        position = context.cursor
        expected = context.peek()
        context.cursor += 1

        if not data:
            self.state = EngineState.DRAINING
            raise ZeroLengthReadError(f"zero-length read at script position {position}")

        self._record(RECEIVED, data)

        if not expected.valid:
            raise ValidationError(
                f"frame {position}: unexpected {format_frame(data)} after end of script",
                position=position,
                expected=b"",
                actual=data,
            )
        if truncated:
            raise ValidationError(
                f"frame {position}: expected {len(expected)} bytes, got more than {len(data)} bytes",
                position=position,
                expected=expected.data,
                actual=data,
            )
        if len(data) != len(expected):
            raise ValidationError(
                f"frame {position}: expected {len(expected)} bytes [{format_frame(expected.data)}], "
                f"got {len(data)} bytes [{format_frame(data)}]",
                position=position,
                expected=expected.data,
                actual=data,
            )
        offset = mismatch_offset(expected.data, data)
        if offset is not None:
            raise ValidationError(
                f"frame {position}: mismatch at offset {offset}, expected [{format_frame(expected.data)}], "
                f"got [{format_frame(data)}]",
                position=position,
                expected=expected.data,
                actual=data,
            )

        if not context.peek().valid:
            self._terminate()
            return
        self.schedule_send()

    def _confirm(self, event: Confirmation) -> None:
        handler = self.context.handlers.get(event.kind)
        if handler is None:
            raise UnexpectedCallbackError(
                f"{event.kind} confirmation at script position {self.context.cursor} has no follow-up"
            )
        logger.debug("confirmation kind=%s cursor=%d", event.kind, self.context.cursor)
        handler(self.context, event)

    def _terminate(self) -> None:
        self.state = EngineState.TERMINATED
        self.context.accepting = False
        self._stop_reading()

    def _record(self, direction: str, data: bytes) -> None:
        self.context.trace.append((direction, data))
        if self.context.verbose:
            for line in hexdump(direction, data):
                logger.info(line)
