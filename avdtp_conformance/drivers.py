"""Scenario drivers.

A driver prepares a freshly created :class:`ScenarioContext`: it registers the
local stream endpoint the scenario needs, wires session confirmations to
follow-up requests, and issues the first operation. :func:`execute` then runs
the exchange engine and tears everything down.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Optional, Sequence

from .engine import Confirmation, ExchangeEngine, ScenarioContext, SendNext, create_context
from .errors import FixtureError, ProtocolCallError, UnexpectedCallbackError
from .protocol import (
    AVDTP_GET_CONFIGURATION,
    AVDTP_MEDIA_TYPE_AUDIO,
    AVDTP_OPEN,
    AVDTP_SEP_TYPE_SINK,
    AVDTP_SEP_TYPE_SOURCE,
    DEFAULT_MTU,
    DEFAULT_VERSION,
    SBC_CODEC_TYPE,
    SIGNAL_ID_OFFSET,
    FrameScript,
    ServiceCapability,
    media_codec_capability,
    media_transport_capability,
)
from .session import SepConfirmations, SepIndications, SessionFactory

logger = logging.getLogger(__name__)

Driver = Callable[[ScenarioContext], None]

# SBC codec information elements advertised by the local source endpoint and
# requested when configuring a remote one.
SOURCE_SBC_CAPABILITIES = bytes([0xFF, 0xFF, 0x02, 0x40])
SINK_SBC_CONFIGURATION = bytes([0x21, 0x02, 0x02, 0x20])


def _check_status(operation: str, status: int) -> None:
    if status != 0:
        raise ProtocolCallError(operation, status)


def _check_error(operation: str, error: Optional[object]) -> None:
    if error is not None:
        raise ProtocolCallError(operation, error)


def source_capabilities(session, sep, get_all: bool) -> Sequence[ServiceCapability]:
    """Capabilities reported when the remote peer asks the local source endpoint."""
    return (
        media_transport_capability(),
        media_codec_capability(AVDTP_MEDIA_TYPE_AUDIO, SBC_CODEC_TYPE, SOURCE_SBC_CAPABILITIES),
    )


def sink_configuration() -> Sequence[ServiceCapability]:
    return (
        media_transport_capability(),
        media_codec_capability(AVDTP_MEDIA_TYPE_AUDIO, SBC_CODEC_TYPE, SINK_SBC_CONFIGURATION),
    )


def configure_remote_sep(context: ScenarioContext, event: Confirmation) -> None:
    """Discovery finished: configure the remote endpoint matching the local sink."""
    _check_error("discover", event.error)
    if not event.payload:
        raise ProtocolCallError("discover", "no remote stream endpoints")

    session = event.session
    remote_sep = session.find_remote_sep(context.sep)
    if remote_sep is None:
        raise ProtocolCallError("find_remote_sep", None)

    status, stream = session.set_configuration(remote_sep, context.sep, sink_configuration())
    _check_status("set_configuration", status)
    logger.debug("set_configuration_sent stream=%r", stream)


def follow_configuration(context: ScenarioContext, event: Confirmation) -> None:
    """Configuration accepted: the next scripted frame decides the next request."""
    _check_error("set_configuration", event.error)

    upcoming = context.peek()
    if len(upcoming) < 2:
        return

    signal = upcoming.octet(SIGNAL_ID_OFFSET)
    session, stream = event.session, event.payload
    if signal == AVDTP_GET_CONFIGURATION:
        _check_status("get_configuration", session.get_configuration(stream))
    elif signal == AVDTP_OPEN:
        _check_status("open", session.open(stream))
    else:
        raise UnexpectedCallbackError(
            f"set_configuration confirmed but next frame has signal 0x{signal:02x}"
        )


def start_opened_stream(context: ScenarioContext, event: Confirmation) -> None:
    """Stream opened: attach a transport and start streaming."""
    _check_error("open", event.error)

    try:
        fd = os.open(os.devnull, os.O_RDWR)
    except OSError as exc:
        raise FixtureError(f"cannot open transport placeholder: {exc}") from exc

    session, stream = event.session, event.payload
    if not session.stream_set_transport(stream, fd, DEFAULT_MTU, DEFAULT_MTU):
        os.close(fd)
        raise ProtocolCallError("stream_set_transport", False)
    _check_status("start", session.start(stream))


def _register_sink(context: ScenarioContext, confirmations: Optional[SepConfirmations] = None) -> None:
    context.sep = context.session.register_sep(
        AVDTP_SEP_TYPE_SINK,
        AVDTP_MEDIA_TYPE_AUDIO,
        SBC_CODEC_TYPE,
        False,
        ind=None,
        cfm=confirmations,
    )


def _discover(context: ScenarioContext) -> None:
    _check_status("discover", context.session.discover(context.discover_callback()))


def server(context: ScenarioContext) -> None:
    """Act as the initiator against a local source endpoint; the harness speaks first."""
    context.sep = context.session.register_sep(
        AVDTP_SEP_TYPE_SOURCE,
        AVDTP_MEDIA_TYPE_AUDIO,
        SBC_CODEC_TYPE,
        True,
        ind=SepIndications(get_capability=source_capabilities),
        cfm=None,
    )
    context.post(SendNext())


def discover(context: ScenarioContext) -> None:
    _discover(context)


def get_capabilities(context: ScenarioContext) -> None:
    # Capabilities are fetched by the session itself once discovery answers.
    _discover(context)


def set_configuration(context: ScenarioContext) -> None:
    _register_sink(context)
    context.on("discover", configure_remote_sep)
    _discover(context)


def _configured_stream(context: ScenarioContext) -> None:
    _register_sink(
        context,
        SepConfirmations(
            set_configuration=context.stream_confirmation("set_configuration"),
            open=context.stream_confirmation("open"),
        ),
    )
    context.on("discover", configure_remote_sep)
    context.on("set_configuration", follow_configuration)
    context.on("open", start_opened_stream)
    _discover(context)


def get_configuration(context: ScenarioContext) -> None:
    _configured_stream(context)


def open_stream(context: ScenarioContext) -> None:
    _configured_stream(context)


def start_stream(context: ScenarioContext) -> None:
    _configured_stream(context)


async def execute(
    driver: Driver,
    script: FrameScript,
    session_factory: SessionFactory,
    mtu: int = DEFAULT_MTU,
    version: int = DEFAULT_VERSION,
    timeout: Optional[float] = None,
    verbose: bool = False,
) -> ScenarioContext:
    """Run one scenario to completion and return its (released) context."""
    context = create_context(script, session_factory, mtu=mtu, version=version, verbose=verbose)
    try:
        driver(context)
        await ExchangeEngine(context).run(timeout=timeout)
    finally:
        try:
            if context.sep is not None and context.session is not None:
                context.session.unregister_sep(context.sep)
        finally:
            context.sep = None
            context.release()
    return context
