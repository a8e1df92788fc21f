"""Exception types raised by the conversation core.

Expected business outcomes (agreement already resolved, request expired, ...)
are never raised; domain services report them through ``ServiceResult``.
"""


class NearbuyError(Exception):
    """Base class for nearbuy errors."""


class NoActiveFlowError(NearbuyError):
    """A step change was requested while the session is idle on the main menu."""


class SessionLockTimeout(NearbuyError):
    """The per-phone session lock could not be acquired in time."""

    def __init__(self, phone_masked: str):
        super().__init__(f"session lock busy for {phone_masked}")
        self.phone_masked = phone_masked


class UnknownFlowError(NearbuyError):
    """No handler is registered for the requested flow type."""


class IncompleteStepTableError(NearbuyError):
    """A flow handler's dispatch table does not cover every declared step."""
