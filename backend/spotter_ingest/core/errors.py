from __future__ import annotations

"""Controlled ingestion errors for the Spotter Network loader.

Failure policy:
- Transient errors (network, 5xx, storage hiccups) are retried locally with a
  bounded budget; exhaustion fails only the current cycle.
- Auth failures, fatal storage errors and lost checkpoint races are
  process-fatal. Continuing without trusted access to the feed or the store is
  incorrect, so these must never be masked.
- Individual bad reports never raise out of the pipeline; they are quarantined.
"""

from typing import Optional


class IngestionError(RuntimeError):
    """Base error for the loader."""

    retryable: bool = False


class ConfigError(IngestionError):
    """Raised for invalid loader configuration."""


# --- Fetch -----------------------------------------------------------------


class FetchError(IngestionError):
    """Raised when polling the upstream feed fails."""


class TransientFetchError(FetchError):
    """Network glitch, timeout, or 5xx from the feed."""

    retryable = True


class RateLimitedError(FetchError):
    """Feed asked us to slow down (429)."""

    retryable = True

    def __init__(self, message: str, *, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AuthFailureError(FetchError):
    """Feed rejected our credentials or identity (401/403). Process-fatal."""


class MalformedResponseError(FetchError):
    """Feed answered with a body we cannot decode as a report page."""


# --- Normalization -----------------------------------------------------------


class NormalizationError(IngestionError):
    """Raised inside the normalizer; always converted into a quarantine record."""

    def __init__(self, reason: str, detail: str) -> None:
        super().__init__(f"{reason}: {detail}")
        self.reason = reason
        self.detail = detail


# --- Write -------------------------------------------------------------------


class WriteError(IngestionError):
    """Raised when the event store does not acknowledge a batch."""


class TransientWriteError(WriteError):
    """Storage temporarily unavailable; the whole batch may be retried."""

    retryable = True


class WriteConflictError(WriteError):
    """Storage rejected the batch on a constraint other than the event id."""


class FatalWriteError(WriteError):
    """Storage cannot accept writes (schema, permissions). Process-fatal."""


# --- Checkpoint --------------------------------------------------------------


class CheckpointError(IngestionError):
    """Raised for checkpoint load/commit failures."""


class CheckpointPersistError(CheckpointError):
    """Checkpoint could not be persisted; cursor must not advance."""


class CheckpointConflictError(CheckpointError):
    """Compare-and-set lost: another loader instance advanced the checkpoint."""


# --- Quarantine --------------------------------------------------------------


class QuarantineSinkError(IngestionError):
    """Quarantine sink failed; logged by the orchestrator, never propagated."""


# --- Orchestration -----------------------------------------------------------


class FatalPipelineError(IngestionError):
    """Pipeline reached the Fatal state and must stop."""
