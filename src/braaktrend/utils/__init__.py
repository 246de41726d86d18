"""Utility modules shared by the external collaborators."""

from braaktrend.utils.retry import RetryPolicy, call_with_retry, is_transient_error

__all__ = [
    "RetryPolicy",
    "call_with_retry",
    "is_transient_error",
]
