"""
Layer 1 – 数据获取层
从 Yahoo Finance Chart API 拉取原始 K 线（平行的时间戳 / 收盘价数组）。
一次刷新周期并发发起 4 个请求并全部等待完成，任一失败则整个周期失败，
不会产生部分更新的快照。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx

from fx_cache_service.clock import now_ms
from fx_cache_service.config import settings
from fx_cache_service.layers.processing import (
    ProcessingLayer,
    SeriesKind,
    get_processing_layer,
)
from fx_cache_service.models.result import ErrorKind, Result
from fx_cache_service.models.snapshot import Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawSeries:
    symbol: str
    interval: str
    range: str
    timestamps: List[Any]
    closes: List[Any]


@dataclass(frozen=True)
class SeriesRequest:
    name: str        # 快照中的序列名
    symbol: str
    interval: str
    range: str
    kind: SeriesKind


def default_series_requests() -> Tuple[SeriesRequest, ...]:
    """一次刷新周期需要的 4 路请求：USDJPY / DXY 的日线与 1H（用于 4H 降采样）"""
    return (
        SeriesRequest("usdjpy1D", settings.USDJPY_SYMBOL, settings.DAILY_INTERVAL,
                      settings.DAILY_RANGE, SeriesKind.DAILY),
        SeriesRequest("dxy1D", settings.DXY_SYMBOL, settings.DAILY_INTERVAL,
                      settings.DAILY_RANGE, SeriesKind.DAILY),
        SeriesRequest("usdjpy4H", settings.USDJPY_SYMBOL, settings.INTRADAY_INTERVAL,
                      settings.INTRADAY_RANGE, SeriesKind.INTRADAY),
        SeriesRequest("dxy4H", settings.DXY_SYMBOL, settings.INTRADAY_INTERVAL,
                      settings.INTRADAY_RANGE, SeriesKind.INTRADAY),
    )


INVALID_STRUCTURE = "Invalid data structure"
MISSING_DATA = "Missing timestamp or close price data"


def parse_chart_payload(payload: Any, label: str) -> Result[Tuple[List[Any], List[Any]]]:
    """
    解析 Yahoo Chart 响应

    期望结构：
      payload["chart"]["result"][0]["timestamp"]                     -> epoch 秒数组
      payload["chart"]["result"][0]["indicators"]["quote"][0]["close"] -> 收盘价数组
    """
    invalid = Result.failure(ErrorKind.UPSTREAM_FAILURE, INVALID_STRUCTURE, source=label)

    chart = payload.get("chart") if isinstance(payload, dict) else None
    results = chart.get("result") if isinstance(chart, dict) else None
    if not isinstance(results, list) or not results:
        return invalid
    result = results[0]
    if not isinstance(result, dict):
        return invalid
    indicators = result.get("indicators", {})
    if not isinstance(indicators, dict):
        return invalid
    quotes = indicators.get("quote", [{}])
    if not isinstance(quotes, list) or not quotes or not isinstance(quotes[0], dict):
        return invalid

    timestamps = result.get("timestamp")
    closes = quotes[0].get("close")
    if not timestamps or not closes:
        return Result.failure(ErrorKind.UPSTREAM_FAILURE, MISSING_DATA, source=label)
    if not isinstance(timestamps, list) or not isinstance(closes, list):
        return invalid
    return Result.success((timestamps, closes))


class AcquisitionLayer:
    """数据获取层：封装上游 HTTP 调用，返回显式 Result"""

    def __init__(
        self,
        processor: Optional[ProcessingLayer] = None,
        requests: Optional[Tuple[SeriesRequest, ...]] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock=now_ms,
    ):
        self._proc = processor or get_processing_layer()
        self._requests = requests or default_series_requests()
        self._base_url = (base_url or settings.YAHOO_CHART_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.UPSTREAM_TIMEOUT_SECONDS
        self._transport = transport
        self._clock = clock

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"User-Agent": settings.USER_AGENT, "Accept": "application/json"},
        )

    # ── 单序列 ────────────────────────────────────────────

    async def fetch_series(
        self,
        symbol: str,
        interval: str,
        range: str,
        base_url: Optional[str] = None,
    ) -> Result[RawSeries]:
        """拉取单个品种的原始序列（代理接口与刷新周期共用）"""
        async with self._client() as client:
            return await self._request(client, symbol, interval, range, label=symbol, base_url=base_url)

    async def _request(
        self,
        client: httpx.AsyncClient,
        symbol: str,
        interval: str,
        range: str,
        label: str,
        base_url: Optional[str] = None,
    ) -> Result[RawSeries]:
        url = f"{(base_url or self._base_url).rstrip('/')}/{symbol}"
        logger.debug(f"📡 请求上游: {url} interval={interval} range={range}")
        try:
            resp = await client.get(url, params={"interval": interval, "range": range})
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException:
            return Result.failure(
                ErrorKind.UPSTREAM_FAILURE, f"timeout after {self._timeout:g}s", source=label
            )
        except httpx.HTTPStatusError as exc:
            return Result.failure(
                ErrorKind.UPSTREAM_FAILURE,
                f"HTTP {exc.response.status_code}",
                source=label,
            )
        except httpx.RequestError as exc:
            return Result.failure(ErrorKind.UPSTREAM_FAILURE, f"network error: {exc}", source=label)
        except ValueError:
            return Result.failure(ErrorKind.UPSTREAM_FAILURE, "malformed JSON payload", source=label)

        parsed = parse_chart_payload(payload, label)
        if not parsed.ok:
            return Result.from_error(parsed.error)
        timestamps, closes = parsed.value
        return Result.success(RawSeries(symbol, interval, range, timestamps, closes))

    # ── 完整刷新周期 ──────────────────────────────────────

    async def fetch_snapshot(self) -> Result[Snapshot]:
        """
        并发拉取 4 路序列并标准化为候选快照

        全部请求结束后才判定结果；任一失败返回 UPSTREAM_FAILURE，
        错误信息列出所有失败的调用。
        """
        async with self._client() as client:
            results = await asyncio.gather(*(
                self._request(client, req.symbol, req.interval, req.range, label=req.name)
                for req in self._requests
            ))

        failures = [r.error for r in results if not r.ok]
        if failures:
            message = "; ".join(str(err) for err in failures)
            logger.warning(f"❌ 上游拉取失败（{len(failures)}/{len(results)}）: {message}")
            return Result.failure(ErrorKind.UPSTREAM_FAILURE, message)

        series: Dict[str, tuple] = {}
        for req, res in zip(self._requests, results):
            raw = res.value
            series[req.name] = tuple(self._proc.normalize(raw.timestamps, raw.closes, req.kind))

        candidate = Snapshot(
            lastUpdate=self._clock(),
            usdjpy1D=series.get("usdjpy1D", ()),
            dxy1D=series.get("dxy1D", ()),
            usdjpy4H=series.get("usdjpy4H", ()),
            dxy4H=series.get("dxy4H", ()),
            dataReady=True,
            isLoading=False,
            error=None,
        )
        return Result.success(candidate)


# ── 模块级别单例 ──────────────────────────────────────────
_acquisition: Optional[AcquisitionLayer] = None


def get_acquisition_layer() -> AcquisitionLayer:
    global _acquisition
    if _acquisition is None:
        _acquisition = AcquisitionLayer()
    return _acquisition
