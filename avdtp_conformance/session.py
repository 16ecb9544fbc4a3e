"""Interface of the AVDTP session implementation exercised by the harness."""

from __future__ import annotations

import importlib
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .protocol import ServiceCapability

# Handles owned by the session implementation; the harness never looks inside.
LocalSep = Any
RemoteSep = Any
Stream = Any

DiscoverCallback = Callable[["Session", Sequence[RemoteSep], Optional[object]], None]
GetCapabilityIndication = Callable[["Session", LocalSep, bool], Sequence[ServiceCapability]]
StreamConfirmation = Callable[["Session", LocalSep, Stream, Optional[object]], None]


@dataclass
class SepIndications:
    """Callbacks the session invokes when the remote peer issues a command."""

    get_capability: Optional[GetCapabilityIndication] = None


@dataclass
class SepConfirmations:
    """Callbacks the session invokes when a locally issued request completes."""

    set_configuration: Optional[StreamConfirmation] = None
    open: Optional[StreamConfirmation] = None
    start: Optional[StreamConfirmation] = None


class Session(ABC):
    """Signaling session bound to one channel endpoint.

    Requests return 0 when accepted and a non-zero status otherwise. Completion
    is reported later through the callbacks given at registration or request
    time, with ``None`` as the error when the peer accepted.
    """

    @abstractmethod
    def register_sep(
        self,
        sep_type: int,
        media_type: int,
        codec_type: int,
        delay_reporting: bool,
        ind: Optional[SepIndications] = None,
        cfm: Optional[SepConfirmations] = None,
    ) -> LocalSep:
        ...

    @abstractmethod
    def unregister_sep(self, sep: LocalSep) -> None:
        ...

    @abstractmethod
    def discover(self, callback: DiscoverCallback) -> int:
        ...

    @abstractmethod
    def find_remote_sep(self, local_sep: LocalSep) -> Optional[RemoteSep]:
        ...

    @abstractmethod
    def set_configuration(
        self,
        remote_sep: RemoteSep,
        local_sep: LocalSep,
        caps: Sequence[ServiceCapability],
    ) -> Tuple[int, Optional[Stream]]:
        ...

    @abstractmethod
    def get_configuration(self, stream: Stream) -> int:
        ...

    @abstractmethod
    def open(self, stream: Stream) -> int:
        ...

    @abstractmethod
    def start(self, stream: Stream) -> int:
        ...

    @abstractmethod
    def stream_set_transport(self, stream: Stream, fd: int, imtu: int, omtu: int) -> bool:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


SessionFactory = Callable[[socket.socket, int, int, int], Session]


def load_session_factory(path: str) -> SessionFactory:
    """Resolve ``package.module:attribute`` to a session factory."""
    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(f"session factory must look like 'module:callable', got {path!r}")

    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"cannot import {module_name}: {exc}") from exc

    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ConfigurationError(f"{module_name} has no attribute {attribute}") from exc

    if not callable(target):
        raise ConfigurationError(f"{path} is not callable")
    return target
