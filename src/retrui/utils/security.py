"""URL 安全校验（SSRF 防护）."""

import asyncio
import ipaddress
import logging
import socket
from urllib.parse import SplitResult, urlsplit

from retrui.core.errors import FetchErrorKind, UrlRejectedError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})

# 云厂商元数据等内部主机名
BLOCKED_HOSTS = frozenset(
    {
        "localhost",
        "metadata.google.internal",
        "metadata.azure.com",
        "169.254.169.254",
    }
)

BLOCKED_PORTS = frozenset(
    {
        22,  # SSH
        23,  # Telnet
        25,  # SMTP
        53,  # DNS
        135,  # Windows RPC
        137,  # NetBIOS
        138,
        139,
        445,  # SMB
        3306,  # MySQL
        3389,  # RDP
        5432,  # PostgreSQL
        6379,  # Redis
        27017,  # MongoDB
        27018,
    }
)

BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "127.0.0.0/8",
        "0.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",
        "::1/128",
        "::/128",
        "fc00::/7",
        "fe80::/10",
    )
)


def is_blocked_address(address: str) -> bool:
    """判断 IP 是否落在内网 / 回环 / 链路本地地址段."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return any(ip in network for network in BLOCKED_NETWORKS)


def is_blocked_host(hostname: str) -> bool:
    """判断主机名是否被禁止."""
    lower = hostname.lower().rstrip(".")
    return lower in BLOCKED_HOSTS or is_blocked_address(lower)


def validate_url(url: str) -> SplitResult:
    """
    校验 URL 是否允许访问.

    在发出任何网络请求之前调用：只允许 http/https，拒绝内部主机、
    私有 IP 段以及内部服务端口。

    Raises:
        UrlRejectedError: URL 格式错误 (400) 或指向内部资源 (403)
    """
    if not url or not isinstance(url, str):
        raise UrlRejectedError(FetchErrorKind.INVALID_URL, "Invalid URL format")

    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        raise UrlRejectedError(
            FetchErrorKind.INVALID_URL, "Invalid URL format"
        ) from None

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise UrlRejectedError(
            FetchErrorKind.INVALID_URL, "Only HTTP and HTTPS URLs are allowed"
        )

    hostname = parts.hostname
    if not hostname:
        raise UrlRejectedError(FetchErrorKind.INVALID_URL, "Invalid URL format")

    # 空标签或超长标签无法做 IDNA 编码，DNS 解析前就拒绝
    try:
        hostname.encode("idna")
    except UnicodeError:
        raise UrlRejectedError(
            FetchErrorKind.INVALID_URL, "Invalid URL format"
        ) from None

    if is_blocked_host(hostname):
        logger.warning(f"拦截 SSRF 请求: 主机 {hostname}")
        raise UrlRejectedError(
            FetchErrorKind.BLOCKED, "Access to internal resources is not allowed"
        )

    if port is not None and port in BLOCKED_PORTS:
        logger.warning(f"拦截 SSRF 请求: 端口 {port}")
        raise UrlRejectedError(
            FetchErrorKind.BLOCKED, "Access to this port is not allowed"
        )

    return parts


async def ensure_public_url(url: str, *, resolve: bool = True) -> SplitResult:
    """
    校验 URL 并（可选）解析主机名，拒绝解析到内部地址的域名.

    DNS 解析失败不在这里处理，交给后续抓取按 DNS 错误分类。
    """
    parts = validate_url(url)
    if not resolve:
        return parts

    hostname = parts.hostname or ""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, parts.port, type=socket.SOCK_STREAM)
    except socket.gaierror:
        return parts

    for info in infos:
        address = str(info[4][0])
        if is_blocked_address(address):
            logger.warning(f"拦截 SSRF 请求: {hostname} 解析到内部地址 {address}")
            raise UrlRejectedError(
                FetchErrorKind.BLOCKED, "Access to internal resources is not allowed"
            )

    return parts
