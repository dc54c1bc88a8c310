"""健康检查路由"""

import time

from fastapi import APIRouter, Depends

from fx_cache_service import __version__
from fx_cache_service.layers.cache import CacheStore, get_cache_store

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health(store: CacheStore = Depends(get_cache_store)):
    """服务健康检查"""
    snapshot = store.read()
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "FX Cache Service",
            "cache": {
                "dataReady": snapshot.data_ready,
                "isLoading": snapshot.is_loading,
                "lastUpdate": snapshot.last_update,
            },
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes 存活检查"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(store: CacheStore = Depends(get_cache_store)):
    """Kubernetes 就绪检查：首次加载完成前为 false"""
    return {"ready": store.read().data_ready}
