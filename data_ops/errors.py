"""
Error taxonomy for the data pipeline.

Per-cell coercion problems are never errors: a non-numeric cell keeps its
raw value and is dropped later by the join's validity predicate.
"""

from typing import Optional


class ScatterviewError(Exception):
    """Base class for all pipeline errors."""


class ParseError(ScatterviewError):
    """Raised when delimited text is structurally malformed.

    Attributes:
        row: 1-based line number reported by the tokenizer, or None when the
            fault concerns the whole input (empty body, undecodable bytes).
        column: Offending field count / column position when known.
        reason: Human-readable description from the decoder.
    """

    def __init__(self, row: Optional[int], column: Optional[int], reason: str):
        self.row = row
        self.column = column
        self.reason = reason
        where = f" on row {row}" if row is not None else ""
        super().__init__(f"{reason}{where}")


class FetchError(ScatterviewError):
    """Raised when a resource is unreachable or answers with a non-2xx status."""

    def __init__(self, resource: str, cause: Optional[BaseException] = None):
        self.resource = resource
        self.cause = cause
        super().__init__(f"Could not get {resource}")


class ConfigurationError(ScatterviewError):
    """Raised synchronously, before any network call, for unusable settings."""
