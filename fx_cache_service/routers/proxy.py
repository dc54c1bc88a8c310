"""
行情代理路由（透传 Yahoo Finance，供前端直接调试单个品种）
GET /api/yahoo/{symbol}      - v8 Chart，interval=4h 返回全部 K 线，否则返回最近 8 根日线
GET /api/yahoo-v7/{symbol}   - v7 Chart 备用接口（固定 1d / 1mo）
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from fx_cache_service.clock import utc_now_iso
from fx_cache_service.config import settings
from fx_cache_service.layers.acquisition import (
    INVALID_STRUCTURE,
    MISSING_DATA,
    AcquisitionLayer,
    get_acquisition_layer,
)
from fx_cache_service.layers.processing import ProcessingLayer, get_processing_layer
from fx_cache_service.models.response import ApiResponse, error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["行情代理"])

_PAYLOAD_ERRORS = (INVALID_STRUCTURE, MISSING_DATA)


async def _proxy(
    acq: AcquisitionLayer,
    proc: ProcessingLayer,
    symbol: str,
    interval: str,
    range: str,
    source: str,
    base_url: Optional[str] = None,
):
    logger.info(f"🔄 [PROXY] 拉取 {symbol} interval={interval} range={range}")
    fetched = await acq.fetch_series(symbol, interval, range, base_url=base_url)
    if not fetched.ok:
        err = fetched.error
        code = (
            status.HTTP_400_BAD_REQUEST
            if err.message in _PAYLOAD_ERRORS
            else status.HTTP_502_BAD_GATEWAY
        )
        logger.error(f"❌ [PROXY] {symbol} 拉取失败: {err.message}")
        return error_response(code, "Proxy error", err.message, symbol=symbol, timestamp=utc_now_iso())

    raw = fetched.value
    if interval == "4h":
        points = proc.normalize_intraday(raw.timestamps, raw.closes, step=1)
    else:
        points = proc.normalize_daily(raw.timestamps, raw.closes)
    logger.info(f"📊 [PROXY] {symbol} 处理完成，共 {len(points)} 个数据点")

    return ApiResponse.ok(
        data={
            "symbol": symbol,
            "interval": interval,
            "range": range,
            "data": [p.model_dump(exclude_none=True) for p in points],
            "timestamp": utc_now_iso(),
            "source": source,
        },
    )


@router.get("/yahoo/{symbol}", response_model=ApiResponse)
async def yahoo_chart(
    symbol: str,
    interval: str = Query(default="1d"),
    range: str = Query(default="1mo"),
    acq: AcquisitionLayer = Depends(get_acquisition_layer),
    proc: ProcessingLayer = Depends(get_processing_layer),
):
    """Yahoo Finance v8 Chart 代理"""
    return await _proxy(acq, proc, symbol, interval, range, source="yahoo-finance")


@router.get("/yahoo-v7/{symbol}", response_model=ApiResponse)
async def yahoo_chart_v7(
    symbol: str,
    acq: AcquisitionLayer = Depends(get_acquisition_layer),
    proc: ProcessingLayer = Depends(get_processing_layer),
):
    """Yahoo Finance v7 Chart 备用代理"""
    return await _proxy(
        acq, proc, symbol, "1d", "1mo",
        source="yahoo-finance-v7",
        base_url=settings.YAHOO_CHART_V7_URL,
    )
