"""
Error taxonomy for ingestion jobs.

Every failure that can end a job is expressed as an IngestError subclass.
The dispatcher is the single place that turns these into queue outcomes:
a retryable error sends the job back with backoff, anything else marks
the job failed for operator attention.

Invariants:
    - All errors inherit from IngestError
    - retryable is decided by the error kind, never by the caller
    - The offending version is attached whenever it is known

How to change safely:
    - New error kinds must pick a retry semantics explicitly
    - Keep codes stable, they show up in failed job reasons
"""

from __future__ import annotations

from typing import Any


class IngestError(Exception):
    """Base exception for ingestion failures.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        version: Ledger version being processed, if known
        details: Additional error context
    """

    code = "INGEST_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        version: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.version = version
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class TransactionNotFoundError(IngestError):
    """The node returned no transaction for the requested version.

    Expected while polling close to the head: the node may not have
    indexed the version yet.
    """

    code = "NOT_FOUND"
    retryable = True

    def __init__(self, version: int) -> None:
        super().__init__(f"transaction not found {version}", version=version)


class UnsupportedTransactionTypeError(IngestError):
    """The transaction kind is not (fully) handled.

    Whether this is retried comes from the disposition table.
    """

    code = "UNSUPPORTED_TRANSACTION_TYPE"

    def __init__(
        self,
        transaction_type: str,
        version: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(
            f"Unsupported transaction type {transaction_type}",
            version=version,
            details={"transaction_type": transaction_type},
        )
        self.transaction_type = transaction_type
        self.retryable = retryable


class EncodingError(IngestError):
    """Event data cannot be projected onto the columnar schema."""

    code = "ENCODING_ERROR"


class LoadError(IngestError):
    """The columnar store rejected a batch."""

    code = "LOAD_ERROR"
    retryable = True


class InvalidJobNameError(IngestError):
    """A job with an unknown name reached the dispatcher."""

    code = "INVALID_JOB_NAME"

    def __init__(self, name: str) -> None:
        super().__init__(f"invalid job name {name}", details={"name": name})
        self.name = name


class ChainClientError(IngestError):
    """Transport or protocol failure talking to the node."""

    code = "CHAIN_CLIENT_ERROR"
    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        version: int | None = None,
    ) -> None:
        super().__init__(message, version=version, details={"status_code": status_code})
        self.status_code = status_code


class JobTimeoutError(IngestError):
    """A job exceeded the per-job deadline."""

    code = "JOB_TIMEOUT"
    retryable = True


__all__ = [
    "IngestError",
    "TransactionNotFoundError",
    "UnsupportedTransactionTypeError",
    "EncodingError",
    "LoadError",
    "InvalidJobNameError",
    "ChainClientError",
    "JobTimeoutError",
]
