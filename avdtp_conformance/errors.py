"""
Conformance harness exception hierarchy
"""

from __future__ import annotations

from typing import Optional


class HarnessError(Exception):
    """Base exception for every scenario failure"""
    pass


class FixtureError(HarnessError):
    """Test infrastructure failure; aborts the whole run"""
    pass


class ValidationError(HarnessError):
    """A frame on the wire did not match the script"""

    def __init__(
        self,
        message: str,
        position: Optional[int] = None,
        expected: Optional[bytes] = None,
        actual: Optional[bytes] = None,
    ):
        self.position = position
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class ShortWriteError(ValidationError):
    """A scripted frame was not written in a single call"""
    pass


class ChannelClosedError(HarnessError):
    """The channel hung up or failed before the script was exhausted"""
    pass


class ZeroLengthReadError(ChannelClosedError):
    """The harness endpoint returned an empty read"""
    pass


class ProtocolCallError(HarnessError):
    """The session under test rejected a request or confirmed with an error"""

    def __init__(self, operation: str, status: object):
        self.operation = operation
        self.status = status
        super().__init__(f"{operation} failed: {status!r}")


class UnexpectedCallbackError(HarnessError):
    """A session event fired where the scenario defines no next action"""
    pass


class ScenarioTimeoutError(HarnessError):
    """The scenario did not reach the end of its script in time"""
    pass


class ConfigurationError(HarnessError):
    """Invalid harness configuration"""
    pass
