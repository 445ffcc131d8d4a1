from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when output or stream configuration is invalid."""


class OversizedRecordError(ValueError):
    """Raised when a single encoded record exceeds the per-record size cap."""

    def __init__(self, *, size: int, limit: int, prefix: str = "") -> None:
        super().__init__(f"Record size ({size}) exceeds the per-record cap ({limit})")
        self.size = size
        self.limit = limit
        self.prefix = prefix


class TransportFailure(RuntimeError):
    """Raised when a PutRecords call fails as a whole."""

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.error_message = error_message


class PartialSubmissionFailure(RuntimeError):
    """Describes records a PutRecords call reported as failed."""

    def __init__(self, *, failed: int, submitted: int, error_codes: frozenset[str]) -> None:
        super().__init__(f"{failed} of {submitted} records failed ({', '.join(sorted(error_codes))})")
        self.failed = failed
        self.submitted = submitted
        self.error_codes = error_codes
