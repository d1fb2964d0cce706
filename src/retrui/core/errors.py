"""抓取错误定义."""

from enum import StrEnum


class FetchErrorKind(StrEnum):
    """抓取错误类型."""

    INVALID_URL = "invalid_url"
    BLOCKED = "blocked"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    MALFORMED_FEED = "malformed_feed"
    NETWORK = "network"
    UNKNOWN = "unknown"


STATUS_CODES: dict[FetchErrorKind, int] = {
    FetchErrorKind.INVALID_URL: 400,
    FetchErrorKind.BLOCKED: 403,
    FetchErrorKind.NOT_FOUND: 404,
    FetchErrorKind.MALFORMED_FEED: 422,
    FetchErrorKind.TIMEOUT: 504,
    FetchErrorKind.NETWORK: 500,
    FetchErrorKind.UNKNOWN: 500,
}


class FetchError(Exception):
    """Feed / 页面抓取失败."""

    def __init__(self, kind: FetchErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        """对应的 HTTP 状态码."""
        return STATUS_CODES[self.kind]

    def __repr__(self) -> str:
        return f"FetchError(kind={self.kind.value!r}, message={self.message!r})"


class UrlRejectedError(FetchError):
    """URL 未通过安全校验（请求未发出，不计入订阅源健康状态）."""
