"""
Layer 2 – 数据处理层
将上游返回的平行数组（epoch 秒时间戳 / 收盘价）转换为有序的收盘价点序列：
  日线：取最后 8 根，日期格式 YYYY-MM-DD（UTC）
  4H  ：基于 1H 数据每 4 根取 1 根（索引 ≡ 0 mod 4），保留原始时间戳
最后统一剔除 null / NaN / 非数值 / 无穷大的收盘价。
"""

import logging
from enum import Enum
from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd

from fx_cache_service.models.snapshot import Point

logger = logging.getLogger(__name__)

DAILY_POINTS = 8
INTRADAY_STEP = 4

_DAILY_FORMAT = "%Y-%m-%d"
_INSTANT_FORMAT = "%Y-%m-%dT%H:%M:%S.000Z"


class SeriesKind(str, Enum):
    DAILY = "daily"
    INTRADAY = "intraday"


class ProcessingLayer:
    """数据处理层：截取 + 降采样 + 过滤，无内部状态"""

    def normalize(
        self,
        timestamps: Sequence[Any],
        closes: Sequence[Any],
        kind: SeriesKind,
    ) -> List[Point]:
        if kind == SeriesKind.DAILY:
            return self.normalize_daily(timestamps, closes)
        return self.normalize_intraday(timestamps, closes)

    def normalize_daily(
        self,
        timestamps: Sequence[Any],
        closes: Sequence[Any],
        last_n: int = DAILY_POINTS,
    ) -> List[Point]:
        """日线：先截取最后 last_n 根，再过滤无效值（结果可能少于 last_n）"""
        df = self._frame(timestamps, closes).tail(last_n)
        df = self._drop_invalid(df)
        dates = self._format_dates(df, _DAILY_FORMAT)
        return [
            Point(date=d, close=float(c))
            for d, c in zip(dates, df["close"])
        ]

    def normalize_intraday(
        self,
        timestamps: Sequence[Any],
        closes: Sequence[Any],
        step: int = INTRADAY_STEP,
    ) -> List[Point]:
        """
        1H → 近似 4H：按原始索引每 step 根保留 1 根，再过滤无效值

        step=1 时返回全部 K 线（代理接口的 4h 查询使用）
        """
        df = self._frame(timestamps, closes).iloc[::step]
        df = self._drop_invalid(df)
        dates = self._format_dates(df, _INSTANT_FORMAT)
        return [
            Point(timestamp=int(ts), date=d, close=float(c))
            for ts, d, c in zip(df["timestamp"], dates, df["close"])
        ]

    # ── 内部工具 ──────────────────────────────────────────

    @staticmethod
    def _frame(
        timestamps: Optional[Sequence[Any]], closes: Optional[Sequence[Any]]
    ) -> pd.DataFrame:
        timestamps = list(timestamps or [])
        closes = list(closes or [])
        n = min(len(timestamps), len(closes))
        if len(timestamps) != len(closes):
            logger.debug(f"时间戳与收盘价长度不一致（{len(timestamps)} vs {len(closes)}），按 {n} 截断")
        df = pd.DataFrame({
            "timestamp": pd.Series(timestamps[:n], dtype="object"),
            "close": pd.Series(closes[:n], dtype="object"),
        })
        df["timestamp"] = pd.to_numeric(df["timestamp"], errors="coerce")
        df["close"] = pd.to_numeric(df["close"], errors="coerce")
        return df

    @staticmethod
    def _drop_invalid(df: pd.DataFrame) -> pd.DataFrame:
        df = df.dropna(subset=["timestamp", "close"])
        return df[np.isfinite(df["close"].astype("float64"))]

    @staticmethod
    def _format_dates(df: pd.DataFrame, fmt: str) -> List[str]:
        if df.empty:
            return []
        stamps = pd.to_datetime(df["timestamp"].astype("int64"), unit="s", utc=True)
        return stamps.dt.strftime(fmt).tolist()


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
