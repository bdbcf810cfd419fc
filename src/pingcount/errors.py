"""Exception taxonomy for the ingestion pipeline and the store.

Every rejection the pipeline can produce is a PingcountError subclass
carrying the status code the transport should answer with. The message
is safe to return to a client: AuthError in particular never says which
part of the signature check failed.
"""
from __future__ import annotations


class PingcountError(Exception):
    """Base class. `status` mirrors an HTTP status code."""

    status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PingcountError):
    """Missing or malformed request field. Retry with corrected input."""

    status = 400


class FreshnessError(PingcountError):
    """Claimed timestamp is outside the accepted clock-skew window."""

    status = 400


class ReplayError(PingcountError):
    """Nonce was already used inside the replay window."""

    status = 409


class AuthError(PingcountError):
    """Signature did not verify."""

    status = 401

    def __init__(self, message: str = "unauthorized") -> None:
        super().__init__(message)


class PersistenceError(PingcountError):
    """A snapshot write to the backend failed.

    Raised by StatsStore.flush(). The ingestion path never lets it reach
    the client: in-memory state is already updated when it happens.
    """

    status = 500


class ConfigurationError(PingcountError, ValueError):
    """Deployment misconfiguration: fatal at startup, not per request.

    Examples: merging estimators of different precision, a keyed
    derivation without a secret, snapshots that cannot be decoded.
    """

    status = 500
