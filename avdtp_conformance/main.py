"""Run the conformance catalog against a session implementation."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence

from . import drivers
from .config import HarnessConfig
from .errors import ConfigurationError, FixtureError, HarnessError
from .scenarios import Scenario, build_registry, select
from .session import SessionFactory, load_session_factory

logger = logging.getLogger("avdtp_conformance")
handler = logging.StreamHandler()
formatter = logging.Formatter("[%(asctime)s] %(name)s %(levelname)s: %(message)s")
handler.setFormatter(formatter)
if not logger.handlers:
    logger.addHandler(handler)
logger.setLevel(logging.INFO)


@dataclass(frozen=True)
class ScenarioResult:
    name: str
    passed: bool
    detail: str = ""
    frames: int = 0


def run_scenario(scenario: Scenario, session_factory: SessionFactory, config: HarnessConfig) -> ScenarioResult:
    """Run one scenario on its own event loop.

    Scenario failures become a failed result; a :class:`FixtureError` propagates
    because the harness itself is broken.
    """
    logger.info("scenario_start name=%s frames=%d", scenario.name, len(scenario.script.pdus()))
    try:
        context = asyncio.run(
            drivers.execute(
                scenario.driver,
                scenario.script,
                session_factory,
                mtu=config.mtu,
                version=config.version,
                timeout=config.timeout,
                verbose=config.verbose,
            )
        )
    except FixtureError:
        raise
    except HarnessError as exc:
        logger.warning("scenario_failed name=%s error=%s", scenario.name, exc)
        return ScenarioResult(scenario.name, False, f"{type(exc).__name__}: {exc}")
    except Exception as exc:  # noqa: BLE001
        logger.exception("scenario_crashed name=%s error=%s", scenario.name, exc)
        return ScenarioResult(scenario.name, False, f"unexpected {type(exc).__name__}: {exc}")

    logger.info("scenario_passed name=%s frames=%d", scenario.name, len(context.trace))
    return ScenarioResult(scenario.name, True, frames=len(context.trace))


def run_all(
    scenarios: Iterable[Scenario],
    session_factory: SessionFactory,
    config: HarnessConfig,
) -> List[ScenarioResult]:
    """Run every scenario in order; one failure does not stop the others."""
    return [run_scenario(scenario, session_factory, config) for scenario in scenarios]


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="avdtp-conformance", description=__doc__)
    parser.add_argument("--list", action="store_true", help="List scenario names and exit")
    parser.add_argument(
        "-p",
        "--prefix",
        default=None,
        help="Only run scenarios whose name starts with this prefix (e.g. /TP/SIG/SMG/BV-1)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", default=None, help="Hexdump every frame")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds each scenario may run (0 waits forever)",
    )
    parser.add_argument(
        "--session",
        default=None,
        help="Session factory as module:callable (defaults to AVDTP_SESSION_FACTORY)",
    )
    return parser.parse_args(argv)


def _report(results: Sequence[ScenarioResult]) -> None:
    for result in results:
        if result.passed:
            print(f"PASS {result.name}")
        else:
            print(f"FAIL {result.name}: {result.detail}")
    failed = sum(1 for result in results if not result.passed)
    print(f"{len(results) - failed} passed, {failed} failed")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        registry = build_registry()
    except FixtureError as exc:
        logger.error("catalog_invalid error=%s", exc)
        return 1
    scenarios = select(registry, args.prefix)

    if args.list:
        for scenario in scenarios:
            print(scenario.name)
        return 0

    try:
        config = HarnessConfig.from_env().override(session_factory=args.session, verbose=args.verbose)
        if args.timeout is not None:
            if args.timeout < 0:
                raise ConfigurationError(f"--timeout must not be negative, got {args.timeout}")
            config = replace(config, timeout=args.timeout or None)
        if not config.session_factory:
            raise ConfigurationError("no session factory; pass --session or set AVDTP_SESSION_FACTORY")
        session_factory = load_session_factory(config.session_factory)
    except ConfigurationError as exc:
        logger.error("configuration_error error=%s", exc)
        return 2

    if config.verbose:
        logger.setLevel(logging.DEBUG)

    if not scenarios:
        logger.warning("no_scenarios prefix=%s", args.prefix)
        return 1

    try:
        results = run_all(scenarios, session_factory, config)
    except FixtureError as exc:
        logger.error("run_aborted error=%s", exc)
        return 1

    _report(results)
    return 0 if all(result.passed for result in results) else 1


if __name__ == "__main__":
    sys.exit(main())
