"""
缓存快照模型

Snapshot 为不可变对象：任何变更都会生成新实例，由 CacheStore 整体替换引用，
读者持有的旧引用永远不会被就地修改。
"""

import math
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

SERIES_NAMES: Tuple[str, ...] = ("usdjpy1D", "dxy1D", "usdjpy4H", "dxy4H")
REQUIRED_FIELDS: Tuple[str, ...] = ("lastUpdate",) + SERIES_NAMES

_FIELD_BY_SERIES = {
    "usdjpy1D": "usdjpy_1d",
    "dxy1D": "dxy_1d",
    "usdjpy4H": "usdjpy_4h",
    "dxy4H": "dxy_4h",
}


class Point(BaseModel):
    """单个收盘价点：日线 {date, close}，4H {timestamp, date, close}"""

    model_config = ConfigDict(frozen=True)

    timestamp: Optional[int] = None
    date: str
    close: float = Field(allow_inf_nan=False)


class Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    last_update: Optional[int] = Field(default=None, alias="lastUpdate")
    usdjpy_1d: Tuple[Point, ...] = Field(default=(), alias="usdjpy1D")
    dxy_1d: Tuple[Point, ...] = Field(default=(), alias="dxy1D")
    usdjpy_4h: Tuple[Point, ...] = Field(default=(), alias="usdjpy4H")
    dxy_4h: Tuple[Point, ...] = Field(default=(), alias="dxy4H")
    data_ready: bool = Field(default=False, alias="dataReady")
    is_loading: bool = Field(default=False, alias="isLoading")
    error: Optional[str] = None

    @field_validator("usdjpy_1d", "dxy_1d", "usdjpy_4h", "dxy_4h", mode="before")
    @classmethod
    def _drop_invalid_points(cls, value: Any) -> Any:
        """与处理层一致：收盘价为 null / NaN / 无穷大 / 非数值的点直接剔除"""
        if not isinstance(value, (list, tuple)):
            return value
        return [p for p in value if not isinstance(p, dict) or _finite(p.get("close"))]

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls()

    @classmethod
    def from_body(cls, body: Dict[str, Any], **overrides: Any) -> "Snapshot":
        """从 JSON 结构（磁盘文件 / 外部写入）构建快照，overrides 使用字段名"""
        snapshot = cls.model_validate(body)
        if overrides:
            snapshot = snapshot.model_copy(update=overrides)
        return snapshot

    def series(self, name: str) -> Tuple[Point, ...]:
        return getattr(self, _FIELD_BY_SERIES[name])

    def series_counts(self) -> Dict[str, int]:
        return {name: len(self.series(name)) for name in SERIES_NAMES}

    def age_ms(self, now: int) -> Optional[int]:
        if self.last_update is None:
            return None
        return now - self.last_update

    def to_body(self) -> Dict[str, Any]:
        """序列化为对外 / 落盘的 JSON 结构（camelCase 字段）"""
        body: Dict[str, Any] = {"lastUpdate": self.last_update}
        for name in SERIES_NAMES:
            body[name] = _dump_points(self.series(name))
        body["dataReady"] = self.data_ready
        body["isLoading"] = self.is_loading
        body["error"] = self.error
        return body


def _finite(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _dump_points(points: Tuple[Point, ...]) -> List[Dict[str, Any]]:
    return [p.model_dump(exclude_none=True) for p in points]
