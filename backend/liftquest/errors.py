"""
Errors raised by the progression engine. All of them are reported to the
immediate caller; the engine never retries an XP award on its own.
"""


class ProgressionError(Exception):
    pass


class InvalidAmount(ProgressionError, ValueError):
    """XP award or challenge payout called with a non-positive amount."""


class NotFound(ProgressionError, LookupError):
    """A referenced user, exercise, challenge or participation does not exist."""


class ConcurrencyConflict(ProgressionError):
    """The store rejected an atomic update; retry the whole operation."""
