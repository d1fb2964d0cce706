"""核心业务逻辑."""

from retrui.core.errors import FetchError, FetchErrorKind, UrlRejectedError
from retrui.core.retry import RetryPolicy, with_retry

__all__ = [
    "FetchError",
    "FetchErrorKind",
    "RetryPolicy",
    "UrlRejectedError",
    "with_retry",
]
