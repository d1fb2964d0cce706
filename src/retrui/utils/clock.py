"""时间工具."""

from collections.abc import Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """当前 UTC 时间（带时区）."""
    return datetime.now(UTC)


def epoch_ms(moment: datetime) -> int:
    """转换为毫秒时间戳."""
    return int(moment.timestamp() * 1000)


def to_db_time(moment: datetime | None) -> datetime | None:
    """数据库中统一存储无时区的 UTC 时间."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(UTC).replace(tzinfo=None)


def from_db_time(moment: datetime | None) -> datetime | None:
    """从数据库读取的时间补回 UTC 时区."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def db_now() -> datetime:
    """数据库默认时间（无时区 UTC）."""
    return datetime.now(UTC).replace(tzinfo=None)


def parse_datetime(value: str | None) -> datetime | None:
    """解析 Feed 中的时间（RFC 3339 或 RFC 822），无法解析返回 None."""
    if not value:
        return None
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        try:
            moment = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)
