"""Catalog of AVDTP signaling conformance scenarios.

Stream Management Service: verifies that discovery, capability retrieval,
configuration, open and start are implemented as specified in AVDTP.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from . import drivers
from .drivers import Driver
from .protocol import FrameScript, raw_pdu


@dataclass(frozen=True)
class Scenario:
    name: str
    script: FrameScript
    driver: Driver


def _define(table: Dict[str, Scenario], name: str, driver: Driver, *pdus: bytes) -> None:
    if name in table:
        raise ValueError(f"duplicate scenario {name}")
    table[name] = Scenario(name=name, script=FrameScript.from_pdus(*pdus), driver=driver)


def build_registry() -> Dict[str, Scenario]:
    """Build the ordered scenario table; called once at startup."""
    table: Dict[str, Scenario] = {}

    _define(table, "/TP/SIG/SMG/BV-05-C", drivers.discover,
            raw_pdu(0x00, 0x01))
    _define(table, "/TP/SIG/SMG/BV-06-C", drivers.server,
            raw_pdu(0x00, 0x01),
            raw_pdu(0x02, 0x01, 0x04, 0x00))
    _define(table, "/TP/SIG/SMG/BV-07-C", drivers.get_capabilities,
            raw_pdu(0x10, 0x01),
            raw_pdu(0x12, 0x01, 0x04, 0x00),
            raw_pdu(0x20, 0x02, 0x04))
    _define(table, "/TP/SIG/SMG/BV-08-C", drivers.server,
            raw_pdu(0x00, 0x01),
            raw_pdu(0x02, 0x01, 0x04, 0x00),
            raw_pdu(0x10, 0x02, 0x04),
            raw_pdu(0x12, 0x02, 0x01, 0x00, 0x07, 0x06, 0x00, 0x00,
                    0xff, 0xff, 0x02, 0x40))
    _define(table, "/TP/SIG/SMG/BV-09-C", drivers.set_configuration,
            raw_pdu(0x30, 0x01),
            raw_pdu(0x32, 0x01, 0x04, 0x00),
            raw_pdu(0x40, 0x02, 0x04),
            raw_pdu(0x42, 0x02, 0x01, 0x00, 0x07, 0x06, 0x00, 0x00,
                    0xff, 0xff, 0x02, 0x40),
            raw_pdu(0x50, 0x03, 0x04, 0x04, 0x01, 0x00, 0x07, 0x06,
                    0x00, 0x00, 0x21, 0x02, 0x02, 0x20))
    _define(table, "/TP/SIG/SMG/BV-10-C", drivers.server,
            raw_pdu(0x00, 0x01),
            raw_pdu(0x02, 0x01, 0x04, 0x00),
            raw_pdu(0x10, 0x02, 0x04),
            raw_pdu(0x12, 0x02, 0x01, 0x00, 0x07, 0x06, 0x00, 0x00,
                    0xff, 0xff, 0x02, 0x40),
            raw_pdu(0x20, 0x03, 0x04, 0x04, 0x01, 0x00, 0x07, 0x06,
                    0x00, 0x00, 0x21, 0x02, 0x02, 0x20),
            raw_pdu(0x22, 0x03))
    _define(table, "/TP/SIG/SMG/BV-11-C", drivers.get_configuration,
            raw_pdu(0x60, 0x01),
            raw_pdu(0x62, 0x01, 0x04, 0x00),
            raw_pdu(0x70, 0x02, 0x04),
            raw_pdu(0x72, 0x02, 0x01, 0x00, 0x07, 0x06, 0x00, 0x00,
                    0xff, 0xff, 0x02, 0x40),
            raw_pdu(0x80, 0x03, 0x04, 0x04, 0x01, 0x00, 0x07, 0x06,
                    0x00, 0x00, 0x21, 0x02, 0x02, 0x20),
            raw_pdu(0x82, 0x03),
            raw_pdu(0x90, 0x04, 0x04))
    _define(table, "/TP/SIG/SMG/BV-12-C", drivers.server,
            raw_pdu(0x00, 0x01),
            raw_pdu(0x02, 0x01, 0x04, 0x00),
            raw_pdu(0x10, 0x02, 0x04),
            raw_pdu(0x12, 0x02, 0x01, 0x00, 0x07, 0x06, 0x00, 0x00,
                    0xff, 0xff, 0x02, 0x40),
            raw_pdu(0x20, 0x03, 0x04, 0x04, 0x01, 0x00, 0x07, 0x06,
                    0x00, 0x00, 0x21, 0x02, 0x02, 0x20),
            raw_pdu(0x22, 0x03),
            raw_pdu(0x30, 0x04, 0x04),
            raw_pdu(0x32, 0x04, 0x01, 0x00, 0x07, 0x06, 0x00, 0x00,
                    0x21, 0x02, 0x02, 0x20))
    _define(table, "/TP/SIG/SMG/BV-15-C", drivers.open_stream,
            raw_pdu(0xa0, 0x01),
            raw_pdu(0xa2, 0x01, 0x04, 0x00),
            raw_pdu(0xb0, 0x02, 0x04),
            raw_pdu(0xb2, 0x02, 0x01, 0x00, 0x07, 0x06, 0x00, 0x00,
                    0xff, 0xff, 0x02, 0x40),
            raw_pdu(0xc0, 0x03, 0x04, 0x04, 0x01, 0x00, 0x07, 0x06,
                    0x00, 0x00, 0x21, 0x02, 0x02, 0x20),
            raw_pdu(0xc2, 0x03),
            raw_pdu(0xd0, 0x06, 0x04))
    _define(table, "/TP/SIG/SMG/BV-16-C", drivers.server,
            raw_pdu(0x00, 0x01),
            raw_pdu(0x02, 0x01, 0x04, 0x00),
            raw_pdu(0x10, 0x02, 0x04),
            raw_pdu(0x12, 0x02, 0x01, 0x00, 0x07, 0x06, 0x00, 0x00,
                    0xff, 0xff, 0x02, 0x40),
            raw_pdu(0x20, 0x03, 0x04, 0x04, 0x01, 0x00, 0x07, 0x06,
                    0x00, 0x00, 0x21, 0x02, 0x02, 0x20),
            raw_pdu(0x22, 0x03),
            raw_pdu(0x30, 0x06, 0x04),
            raw_pdu(0x32, 0x06))
    _define(table, "/TP/SIG/SMG/BV-17-C", drivers.start_stream,
            raw_pdu(0xe0, 0x01),
            raw_pdu(0xe2, 0x01, 0x04, 0x00),
            raw_pdu(0xf0, 0x02, 0x04),
            raw_pdu(0xf2, 0x02, 0x01, 0x00, 0x07, 0x06, 0x00, 0x00,
                    0xff, 0xff, 0x02, 0x40),
            raw_pdu(0x00, 0x03, 0x04, 0x04, 0x01, 0x00, 0x07, 0x06,
                    0x00, 0x00, 0x21, 0x02, 0x02, 0x20),
            raw_pdu(0x02, 0x03),
            raw_pdu(0x10, 0x06, 0x04),
            raw_pdu(0x12, 0x06),
            raw_pdu(0x20, 0x07, 0x04))

    return table


def select(registry: Dict[str, Scenario], prefix: Optional[str] = None) -> List[Scenario]:
    """Scenarios whose name starts with ``prefix``, in registration order."""
    if not prefix:
        return list(registry.values())
    return [scenario for name, scenario in registry.items() if name.startswith(prefix)]
