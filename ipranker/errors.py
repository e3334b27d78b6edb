"""
Error types for sample ingestion and ranking.

A cache miss is not an error: ResultCache.get returns None and the caller
recomputes. A partially failed scheduled refresh is reported through
RefreshReport rather than raised.
"""


class InvalidSample(ValueError):
    """Malformed or physically impossible measurement. Never folded into state."""


class PartitionUnavailable(RuntimeError):
    """The state store backing a partition could not be reached."""

    def __init__(self, partition: str, reason: str = ""):
        self.partition = partition
        self.reason = reason
        message = f"Partition {partition!r} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StoreUnavailable(RuntimeError):
    """A state store backend failed to read or write."""
