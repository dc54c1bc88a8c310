"""
FX 缓存路由
GET  /api/fx-cache                              - 读取内存快照（公开）
GET  /api/fx-cache/status                       - 缓存状态（公开）
POST /api/fx-cache                              - 外部写入快照（X-API-Key）
POST /api/fx-cache/refresh                      - 手动触发刷新（X-API-Key）
GET  /api/fx-cache/backups                      - 备份列表（X-API-Key）
POST /api/fx-cache/backups/{backup_id}/restore  - 回滚到指定备份（X-API-Key）
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request, status

from fx_cache_service.clock import MS_PER_HOUR, iso_from_ms, now_ms, utc_now_iso
from fx_cache_service.layers.cache import CacheStore, get_cache_store
from fx_cache_service.layers.persistence import PersistenceManager, get_persistence_manager
from fx_cache_service.models.response import error_response
from fx_cache_service.models.result import CacheError, ErrorKind
from fx_cache_service.models.snapshot import Snapshot
from fx_cache_service.routers.auth import verify_api_key
from fx_cache_service.services.refresh_service import RefreshScheduler, get_refresh_scheduler
from fx_cache_service.services.write_service import WriteGateway, WriteReceipt, get_write_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/fx-cache", tags=["FX 缓存"])

_STATUS_BY_KIND = {
    ErrorKind.UNAUTHORIZED: (status.HTTP_401_UNAUTHORIZED, "Unauthorized"),
    ErrorKind.FORBIDDEN: (status.HTTP_403_FORBIDDEN, "Forbidden"),
    ErrorKind.VALIDATION_FAILURE: (status.HTTP_400_BAD_REQUEST, "Invalid data"),
    ErrorKind.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "Not found"),
    ErrorKind.PERSIST_FAILURE: (status.HTTP_500_INTERNAL_SERVER_ERROR, "Local backup failed"),
}


def _error_from(err: CacheError, **extra: Any):
    code, title = _STATUS_BY_KIND.get(
        err.kind, (status.HTTP_500_INTERNAL_SERVER_ERROR, "Write failed")
    )
    return error_response(code, title, err.message, timestamp=utc_now_iso(), **extra)


def _next_refresh_at(snapshot: Snapshot, scheduler: RefreshScheduler) -> Optional[str]:
    if scheduler.next_refresh_at is not None:
        return iso_from_ms(scheduler.next_refresh_at)
    if snapshot.last_update is not None:
        return iso_from_ms(snapshot.last_update + scheduler.interval_ms)
    return None


def _receipt_body(receipt: WriteReceipt, message: str) -> Dict[str, Any]:
    return {
        "success": True,
        "message": message,
        "localBackup": receipt.local_backup,
        "backupId": receipt.backup_id,
        "remoteUpload": receipt.remote_upload,
        "remoteError": receipt.remote_error,
        "archiveError": receipt.archive_error,
        "rotationError": receipt.rotation_error,
        "memoryUpdated": receipt.memory_updated,
        "dataPoints": receipt.data_points,
        "timestamp": utc_now_iso(),
    }


# ── 读取 ──────────────────────────────────────────────────

@router.get("")
async def read_fx_cache(
    store: CacheStore = Depends(get_cache_store),
    scheduler: RefreshScheduler = Depends(get_refresh_scheduler),
):
    """读取内存中的 FX 快照，未就绪返回 503"""
    snapshot = store.read()
    if not snapshot.data_ready:
        logger.info("⚠️ [FX-CACHE] 缓存尚未就绪")
        return error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Cache not ready",
            "FX cache is still loading. Please try again in a few seconds.",
            isLoading=snapshot.is_loading,
            timestamp=utc_now_iso(),
        )

    age = snapshot.age_ms(now_ms())
    data = snapshot.to_body()
    data.pop("error", None)
    return {
        "source": "server-memory",
        "data": data,
        "cacheAge": {
            "milliseconds": age,
            "hours": None if age is None else age / MS_PER_HOUR,
            "lastUpdate": None if snapshot.last_update is None else iso_from_ms(snapshot.last_update),
        },
        "nextRefreshAt": _next_refresh_at(snapshot, scheduler),
        "timestamp": utc_now_iso(),
    }


@router.get("/status")
async def fx_cache_status(
    store: CacheStore = Depends(get_cache_store),
    scheduler: RefreshScheduler = Depends(get_refresh_scheduler),
):
    """轻量状态：就绪 / 加载中 / 最近错误 / 年龄 / 下次刷新 / 各序列点数"""
    snapshot = store.read()
    age = snapshot.age_ms(now_ms())
    hours = None if age is None else age / MS_PER_HOUR
    return {
        "dataReady": snapshot.data_ready,
        "isLoading": snapshot.is_loading,
        "error": snapshot.error,
        "lastUpdate": None if snapshot.last_update is None else iso_from_ms(snapshot.last_update),
        "cacheAge": "never updated" if hours is None else f"{hours:.1f} hours",
        "cacheAgeHours": hours,
        "nextRefreshAt": _next_refresh_at(snapshot, scheduler),
        "schedulerState": scheduler.state.value,
        "dataPoints": snapshot.series_counts(),
        "timestamp": utc_now_iso(),
    }


# ── 写入 ──────────────────────────────────────────────────

@router.post("")
async def write_fx_cache(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    gateway: WriteGateway = Depends(get_write_gateway),
):
    """外部写入完整快照（本地优先，远端尽力）"""
    try:
        body = await request.json()
    except ValueError:
        body = None

    result = await gateway.submit(body, x_api_key)
    if not result.ok:
        return _error_from(result.error)
    return _receipt_body(result.value, "FX cache updated successfully")


@router.post("/refresh")
async def refresh_fx_cache(
    _: str = Depends(verify_api_key),
    store: CacheStore = Depends(get_cache_store),
    scheduler: RefreshScheduler = Depends(get_refresh_scheduler),
):
    """手动触发一次刷新周期"""
    logger.info("🔄 [FX-CACHE] 手动刷新触发")
    result = await scheduler.refresh(reason="manual")
    if not result.ok:
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            str(result.error),
            "Failed to refresh cache",
            timestamp=utc_now_iso(),
        )
    snapshot = store.read()
    return {
        "success": True,
        "message": "FX cache refreshed successfully",
        "lastUpdate": snapshot.last_update,
        "dataPoints": snapshot.series_counts(),
        "timestamp": utc_now_iso(),
    }


# ── 备份 ──────────────────────────────────────────────────

@router.get("/backups")
async def list_fx_cache_backups(
    _: str = Depends(verify_api_key),
    persistence: PersistenceManager = Depends(get_persistence_manager),
):
    """备份列表（最新在前）"""
    backups = await persistence.list_backups()
    return {
        "backups": [b.to_dict() for b in backups],
        "count": len(backups),
    }


@router.post("/backups/{backup_id}/restore")
async def restore_fx_cache_backup(
    backup_id: int,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    gateway: WriteGateway = Depends(get_write_gateway),
):
    """以指定备份覆盖 latest（回滚前的 latest 会先被备份）"""
    result = await gateway.rollback(backup_id, x_api_key)
    if not result.ok:
        return _error_from(result.error)
    return _receipt_body(result.value, f"FX cache restored from backup {backup_id}")
