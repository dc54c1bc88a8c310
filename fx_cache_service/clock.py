"""时间工具：统一使用毫秒级 epoch 时间戳"""

import time
from datetime import datetime, timezone

MS_PER_HOUR = 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_from_ms(ms: int) -> str:
    """毫秒时间戳 → ISO-8601（UTC，毫秒精度，Z 结尾）"""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return iso_from_ms(now_ms())
