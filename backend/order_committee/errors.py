"""
Exception hierarchy for the Committee Engine.

Provider-level errors are absorbed by the dispatcher and recorded on the
vote. Only pool, quorum and audit failures reach the caller.
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import AuditReferences, ProviderVote


class CommitteeError(Exception):
    """Base exception for committee errors."""


class ConfigurationError(CommitteeError):
    """Raised when the committee or provider pool is misconfigured."""


class PoolExhausted(CommitteeError):
    """Raised when fewer providers are enabled than the committee needs."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough enabled providers. Requested: {requested}, "
            f"Available: {available}"
        )


class InsufficientProviders(CommitteeError):
    """Raised when too few providers returned valid votes to decide.

    The caller is expected to fall back to human column selection.
    """

    def __init__(
        self,
        task_id: str,
        required: int,
        valid: int,
        votes: "list[ProviderVote]",
        audit: "AuditReferences | None" = None,
    ):
        self.task_id = task_id
        self.required = required
        self.valid = valid
        self.votes = votes
        self.audit = audit
        super().__init__(
            f"Insufficient valid provider votes for task {task_id}. "
            f"Required: {required}, Got: {valid}"
        )


class ProviderError(CommitteeError):
    """Base exception for a single provider call."""

    def __init__(self, message: str, provider: str, original_error: Exception | None = None):
        self.message = message
        self.provider = provider
        self.original_error = original_error
        super().__init__(f"[{provider}] {message}")


class ProviderTimeout(ProviderError):
    """Raised when a provider call exceeds its timeout."""

    def __init__(self, provider: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Provider timeout after {timeout_seconds}s", provider)


class ProviderTransportError(ProviderError):
    """Raised when the call to a provider fails at the transport level."""


class ProviderInvalidOutput(ProviderError):
    """Raised when a provider answer violates the output contract."""

    def __init__(self, provider: str, reasons: list[str], payload: Any = None):
        self.reasons = reasons
        self.payload = payload
        super().__init__("Invalid provider output: " + "; ".join(reasons), provider)


class AuditSinkError(CommitteeError):
    """Raised when an artifact could not be archived."""

    def __init__(self, task_id: str, artifact: str, original_error: Exception | None = None):
        self.task_id = task_id
        self.artifact = artifact
        self.original_error = original_error
        super().__init__(f"Failed to archive '{artifact}' for task {task_id}: {original_error}")
