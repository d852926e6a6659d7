"""Exceptions related to fleet-trust."""

__all__ = [
    "FleetTrustException",
    "InputException",
    "CommandException",
    "CommandTimeout",
    "ReadError",
    "CredentialUnavailable",
    "Unreachable",
    "SourceMissing",
    "MalformedPEM",
    "ApplyError",
    "PartialApply",
    "TransportRejected",
    "ApplyTimeout",
    "ReconcileError",
    "NoSourcesAvailable",
]


class FleetTrustException(Exception):
    """Generic base exception used for this library."""


class InputException(FleetTrustException):
    """Raised when the input files or values are not formatted as expected."""


class CommandException(FleetTrustException):
    """Raised when there is a failure running a subcommand."""


class CommandTimeout(CommandException):
    """Raised when a subcommand did not finish within its timeout."""


class ReadError(FleetTrustException):
    """Raised when CA material could not be read from a source."""

    def __init__(self, source_id: str, message: str | None = None) -> None:
        super().__init__(
            f"Source {source_id} {self.reason}: {message or 'Unknown error'}"
        )
        self.source_id = source_id
        self.message = message

    @property
    def reason(self) -> str:
        """A short description of the failure."""
        return "read failed"


class CredentialUnavailable(ReadError):
    """Raised when a short-lived credential for a cluster could not be acquired."""

    @property
    def reason(self) -> str:
        return "credential unavailable"


class Unreachable(ReadError):
    """Raised when a cluster could not be contacted or timed out."""

    @property
    def reason(self) -> str:
        return "unreachable"


class SourceMissing(ReadError):
    """Raised when the expected trust bundle object does not exist."""

    @property
    def reason(self) -> str:
        return "missing"


class MalformedPEM(ReadError):
    """Raised when a payload contains no parseable certificate block."""

    @property
    def reason(self) -> str:
        return "malformed"


class ApplyError(FleetTrustException):
    """Raised when a bundle could not be applied to a target cluster."""

    def __init__(self, cluster_id: str, message: str | None = None) -> None:
        super().__init__(
            f"Apply to {cluster_id} failed: {message or 'Unknown error'}"
        )
        self.cluster_id = cluster_id
        self.message = message


class PartialApply(ApplyError):
    """Raised when only some of the steps to install a bundle succeeded."""

    def __init__(self, cluster_id: str, step: str, message: str | None = None) -> None:
        super().__init__(cluster_id, f"step '{step}': {message or 'Unknown error'}")
        self.step = step


class TransportRejected(ApplyError):
    """Raised when the policy transport refused a distribution manifest."""


class ApplyTimeout(ApplyError):
    """Raised when an apply or compliance confirmation exceeded its time budget."""


class ReconcileError(FleetTrustException):
    """Raised when a reconciliation pass could not proceed."""


class NoSourcesAvailable(ReconcileError):
    """Raised when every certificate source failed in a pass."""
