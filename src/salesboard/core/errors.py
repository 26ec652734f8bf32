"""Error taxonomy shared by the platform adapters, the view model, and the API.

Every failure that reaches the HTTP layer is one of these kinds. Platform
SDK exceptions are converted at the adapter boundary; messages carried here
are safe to show to the user.
"""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for user-surfaceable failures.

    Attributes:
        kind: Stable machine-readable category used in API payloads.
        status_code: HTTP status the API layer responds with.
        message: Human-readable text safe for display.
    """

    kind: str = "error"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, dict[str, str]]:
        return {"error": {"kind": self.kind, "message": self.message}}


class ValidationError(DashboardError):
    """Bad user input, rejected before any network call."""

    kind = "validation_error"
    status_code = 422


class InsertRejected(DashboardError):
    """The store refused an insert (access policy or constraint). Not retried."""

    kind = "insert_rejected"
    status_code = 403


class InitializationError(DashboardError):
    """The baseline read or the feed subscription could not be established."""

    kind = "initialization_error"
    status_code = 503


class FeedDisconnected(DashboardError):
    """The live feed dropped; displayed totals may be stale until a resync."""

    kind = "feed_disconnected"
    status_code = 503


class AuthError(DashboardError):
    """Invalid credentials, unconfirmed account, or missing session."""

    kind = "auth_error"
    status_code = 401


class ConfigurationError(DashboardError):
    """Required platform configuration is missing or invalid at startup."""

    kind = "configuration_error"
    status_code = 500
