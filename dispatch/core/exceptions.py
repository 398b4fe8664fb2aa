"""
Exception types raised across the dispatcher.

Reasoning-service failures are split so the orchestration loop can map them to
distinct failure kinds (``llm_timeout`` vs ``llm_error``). Optimistic-lock
failures are split between a single write (VersionConflictError, retried by the
attention store) and an exhausted retry budget (AttentionConflictError,
surfaced to the caller).
"""


class ReasoningServiceError(RuntimeError):
    """The reasoning service call failed (HTTP error, bad payload, auth)."""


class ReasoningTimeoutError(ReasoningServiceError, TimeoutError):
    """The reasoning service did not answer within the configured timeout."""


class VersionConflictError(RuntimeError):
    """A compare-and-swap write found a different stored version."""

    def __init__(self, expected_version: int, actual_version: int):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Attention state version conflict: expected {expected_version}, found {actual_version}"
        )


class AttentionConflictError(RuntimeError):
    """Attention state could not be written after exhausting CAS retries."""

    def __init__(self, attempts: int, last_conflict: VersionConflictError):
        self.attempts = attempts
        self.last_conflict = last_conflict
        super().__init__(
            f"Attention state update aborted after {attempts} attempts: {last_conflict}"
        )


class InvalidCorrectionError(ValueError):
    """A feedback correction payload is malformed or self-contradictory."""
