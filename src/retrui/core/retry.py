"""重试策略：渐进超时 + 指数退避 + 抖动."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from retrui.config import Settings
from retrui.core.errors import UrlRejectedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

# 命中这些子串的错误视为永久错误，不再重试
PERMANENT_ERROR_MARKERS: tuple[str, ...] = (
    "not found",
    "404",
    "enotfound",
    "invalid url",
    "unsupported protocol",
    "dns resolution failure",
)


def is_permanent_error(message: str) -> bool:
    """判断错误信息是否属于永久错误."""
    lower = message.lower()
    return any(marker in lower for marker in PERMANENT_ERROR_MARKERS)


def add_jitter(base_delay_ms: int, jitter_ms: int, rng: random.Random | None = None) -> float:
    """在基础延迟上叠加 ±jitter_ms 的随机抖动，返回秒."""
    source = rng or random
    jitter = source.uniform(-jitter_ms, jitter_ms)
    return max(0.0, base_delay_ms + jitter) / 1000


@dataclass(frozen=True)
class RetryPolicy:
    """重试策略（max_retries 次重试，共 max_retries + 1 次尝试）."""

    name: str
    max_retries: int
    timeouts: Sequence[float]
    base_delays_ms: Sequence[int]
    jitter_ms: int = 200

    @property
    def max_attempts(self) -> int:
        """总尝试次数."""
        return self.max_retries + 1

    def timeout_for(self, attempt: int) -> float:
        """第 attempt 次尝试（从 0 开始）的超时秒数."""
        return self.timeouts[min(attempt, len(self.timeouts) - 1)]

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """第 attempt 次失败后、重试前的等待秒数."""
        base = self.base_delays_ms[min(attempt, len(self.base_delays_ms) - 1)]
        return add_jitter(base, self.jitter_ms, rng)

    @classmethod
    def interactive(cls, settings: Settings) -> "RetryPolicy":
        """单个 Feed 抓取接口使用的策略."""
        return cls(
            name="interactive",
            max_retries=settings.fetch_max_retries,
            timeouts=tuple(settings.fetch_timeouts_seconds),
            base_delays_ms=tuple(settings.fetch_base_delays_ms),
            jitter_ms=settings.fetch_jitter_ms,
        )

    @classmethod
    def aggregator(cls, settings: Settings) -> "RetryPolicy":
        """批量聚合使用的策略（偏向速度，失败交给熔断器）."""
        return cls(
            name="aggregator",
            max_retries=settings.aggregator_max_retries,
            timeouts=tuple(settings.aggregator_timeouts_seconds),
            base_delays_ms=tuple(settings.aggregator_base_delays_ms),
            jitter_ms=settings.aggregator_jitter_ms,
        )

    @classmethod
    def sync(cls, settings: Settings) -> "RetryPolicy":
        """同步任务使用的策略（偏向完整性）."""
        return cls(
            name="sync",
            max_retries=settings.sync_max_retries,
            timeouts=tuple(settings.sync_timeouts_seconds),
            base_delays_ms=tuple(settings.sync_base_delays_ms),
            jitter_ms=settings.sync_jitter_ms,
        )


def _is_transient(exc: BaseException) -> bool:
    # CancelledError 等非 Exception 不重试
    if isinstance(exc, UrlRejectedError):
        return False
    return isinstance(exc, Exception) and not is_permanent_error(str(exc))


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    rng: random.Random | None = None,
) -> T:
    """
    按策略执行 operation，operation 接收当前尝试序号（从 0 开始）.

    永久错误立即抛出；临时错误在抖动退避后重试；
    全部尝试失败后抛出最后一次的错误。
    """

    def wait(retry_state: RetryCallState) -> float:
        return policy.delay_for(retry_state.attempt_number - 1, rng)

    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.debug(
            f"[{policy.name}] 第 {retry_state.attempt_number}/{policy.max_attempts} "
            f"次尝试失败: {error}，{retry_state.upcoming_sleep:.2f}s 后重试"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait,
        retry=retry_if_exception(_is_transient),
        before_sleep=before_sleep,
        sleep=sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            return await operation(attempt.retry_state.attempt_number - 1)

    # AsyncRetrying 在 reraise=True 时不会走到这里
    msg = "重试循环异常结束"
    raise RuntimeError(msg)
