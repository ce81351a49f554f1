"""
Engine-level errors for the purchase ledger.

Business outcomes (not found, wrong plugin, bound to someone else) are
not errors - they come back as a Decision. These exceptions cover the
cases where the engine could not produce a decision at all.
"""


class LedgerError(Exception):
    """Base class for ledger failures surfaced as {ok: false, error}."""

    retryable = False


class ValidationError(LedgerError, ValueError):
    """Malformed or missing required input. Nothing was written."""


class ContentionError(LedgerError):
    """The mutation guard could not be acquired in time."""

    retryable = True


class ConfigurationError(LedgerError):
    """Store unreachable, sheet missing, or required columns absent."""
