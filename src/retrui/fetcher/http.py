"""HTTP 下载与错误归类."""

import logging

import httpx

from retrui.core.errors import FetchError, FetchErrorKind, UrlRejectedError
from retrui.utils.security import ensure_public_url

logger = logging.getLogger(__name__)

# 最多跟随的重定向次数
MAX_REDIRECTS = 5

# 各平台 DNS 解析失败时的错误信息片段
_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "name resolution",
)


def classify_http_error(exc: httpx.HTTPError, timeout: float | None = None) -> FetchError:
    """把 httpx 异常归类为 FetchError."""
    if isinstance(exc, httpx.TimeoutException):
        detail = f" after {timeout:g}s" if timeout is not None else ""
        return FetchError(FetchErrorKind.TIMEOUT, f"Request timeout{detail}")

    if isinstance(exc, httpx.UnsupportedProtocol):
        return FetchError(FetchErrorKind.INVALID_URL, f"Unsupported protocol: {exc}")

    if isinstance(exc, httpx.ConnectError):
        text = str(exc).lower()
        if any(marker in text for marker in _DNS_MARKERS):
            return FetchError(FetchErrorKind.NETWORK, f"DNS resolution failure: {exc}")
        return FetchError(FetchErrorKind.NETWORK, f"Connection failed: {exc}")

    return FetchError(FetchErrorKind.NETWORK, str(exc) or exc.__class__.__name__)


def check_status(response: httpx.Response) -> None:
    """非 2xx 状态转为 FetchError（404 为永久错误，其余按临时错误处理）."""
    if response.status_code == 404:
        raise FetchError(FetchErrorKind.NOT_FOUND, "Feed not found (HTTP 404)")
    if not response.is_success:
        raise FetchError(
            FetchErrorKind.NETWORK,
            f"HTTP {response.status_code} {response.reason_phrase}".strip(),
        )


async def _check_redirect_target(url: str, target: str, resolve_dns: bool) -> None:
    try:
        await ensure_public_url(target, resolve=resolve_dns)
    except UrlRejectedError as e:
        logger.warning(f"拦截重定向: {url} -> {target} ({e.message})")
        raise UrlRejectedError(
            FetchErrorKind.BLOCKED, "Redirect to internal resources is not allowed"
        ) from e


async def download(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout: float,
    headers: dict[str, str] | None = None,
    resolve_dns: bool = True,
    max_redirects: int = MAX_REDIRECTS,
) -> httpx.Response:
    """
    GET 请求并完成状态检查.

    重定向由这里逐跳跟随，每个 Location 都先经过 SSRF 校验再请求。

    Raises:
        UrlRejectedError: 重定向目标未通过安全校验
        FetchError: 请求失败、状态码异常或重定向次数超限
    """
    current = url
    for _ in range(max_redirects + 1):
        try:
            response = await client.get(
                current, timeout=timeout, headers=headers, follow_redirects=False
            )
        except httpx.InvalidURL as e:
            raise FetchError(FetchErrorKind.INVALID_URL, f"Invalid URL: {e}") from e
        except httpx.HTTPError as e:
            raise classify_http_error(e, timeout) from e

        if not response.is_redirect:
            check_status(response)
            return response

        target = str(response.url.join(response.headers["Location"]))
        await _check_redirect_target(current, target, resolve_dns)
        logger.debug(f"跟随重定向: {current} -> {target}")
        current = target

    raise FetchError(FetchErrorKind.NETWORK, f"Too many redirects (> {max_redirects})")
