"""
FX 行情缓存服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn fx_cache_service.main:app --host 0.0.0.0 --port 3001
    python -m fx_cache_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware

from fx_cache_service import __version__
from fx_cache_service.clock import utc_now_iso
from fx_cache_service.config import settings
from fx_cache_service.models.response import error_response
from fx_cache_service.routers import fx_cache, health, proxy
from fx_cache_service.services.refresh_service import get_refresh_scheduler

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 FX Cache Service v{__version__} 启动中")
    logger.info(f"   缓存目录  : {settings.CACHE_DIR}")
    logger.info(f"   刷新周期  : {settings.REFRESH_INTERVAL_HOURS:g} 小时")
    logger.info(f"   远端副本  : {'已配置' if settings.REMOTE_ENABLED else '未配置'}")
    if settings.USING_DEFAULT_API_KEY:
        logger.warning("🔐 ⚠️ 正在使用默认 API Key，请设置 FX_CACHE_API_KEY 环境变量！")
    else:
        logger.info("🔐 ✅ 已配置自定义 API Key")
    logger.info("=" * 60)

    # 首次加载在后台执行，加载完成前读接口返回 503
    scheduler = get_refresh_scheduler()
    await scheduler.start()

    yield

    logger.info("🔄 FX 缓存服务正在关闭...")
    await scheduler.stop()
    logger.info("✅ FX 缓存服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="FX Cache Service",
    description=(
        "USDJPY / DXY 行情共享缓存服务：\n"
        "- 📊 四个序列（日线 ×2、4H ×2）保存在内存中，所有调用方共享一份\n"
        "- ⏰ 每 4 小时从 Yahoo Finance 刷新，失败时回退到磁盘备份\n"
        "- 💾 磁盘快照 + 时间戳备份链（保留最近 10 份），重启快速恢复\n"
        "- 🔐 X-API-Key 鉴权的外部写入 / 手动刷新 / 备份回滚\n"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"❌ {request.method} {request.url.path} 未处理的异常: {exc}", exc_info=True)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        str(exc),
        path=request.url.path,
        timestamp=utc_now_iso(),
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(fx_cache.router)
app.include_router(proxy.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "FX Cache Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "cache": "/api/fx-cache",
        "status": "/api/fx-cache/status",
        "proxy": "/api/yahoo/{symbol}",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "fx_cache_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
