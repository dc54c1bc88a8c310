"""
刷新调度服务
驱动缓存生命周期：启动加载 → 新鲜度判定 → 立即 / 延迟刷新 → 固定周期定时器

状态机：
  INIT → LOADING_BACKUP → {FRESH, STALE, EMPTY} → REFRESHING → IDLE
  IDLE 在定时器到期或手动触发时回到 REFRESHING，进程生命周期内不终止。

同一时刻最多一个刷新周期在执行；手动触发与定时触发重叠时合并到同一周期。
时钟与 sleep 可注入，测试可以驱动虚拟时间。
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from fx_cache_service.clock import MS_PER_HOUR, iso_from_ms, now_ms
from fx_cache_service.config import settings
from fx_cache_service.layers.acquisition import AcquisitionLayer, get_acquisition_layer
from fx_cache_service.layers.cache import CacheStore, get_cache_store
from fx_cache_service.layers.persistence import PersistenceManager, get_persistence_manager
from fx_cache_service.models.result import CacheError, ErrorKind, Result
from fx_cache_service.models.snapshot import Snapshot

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SchedulerState(str, Enum):
    INIT = "init"
    LOADING_BACKUP = "loading_backup"
    FRESH = "fresh"
    STALE = "stale"
    EMPTY = "empty"
    REFRESHING = "refreshing"
    IDLE = "idle"


class RefreshScheduler:
    """拥有 CacheStore 的刷新驱动器"""

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        fetcher: Optional[AcquisitionLayer] = None,
        persistence: Optional[PersistenceManager] = None,
        interval_ms: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
        sleep: Sleep = asyncio.sleep,
    ):
        self._store = store or get_cache_store()
        self._fetcher = fetcher or get_acquisition_layer()
        self._persistence = persistence or get_persistence_manager()
        self._interval_ms = interval_ms if interval_ms is not None else settings.REFRESH_INTERVAL_MS
        self._clock = clock
        self._sleep = sleep

        self._state = SchedulerState.INIT
        self._startup_state: Optional[SchedulerState] = None
        self._next_refresh_at: Optional[int] = None
        self._timer: Optional[asyncio.Task] = None
        self._init_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Future] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def startup_state(self) -> Optional[SchedulerState]:
        return self._startup_state

    @property
    def next_refresh_at(self) -> Optional[int]:
        return self._next_refresh_at

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def is_refreshing(self) -> bool:
        return self._inflight is not None

    # ── 生命周期 ──────────────────────────────────────────

    async def start(self) -> None:
        """后台执行初始化，HTTP 服务在首次加载期间即可响应（503）"""
        if self._init_task is not None and not self._init_task.done():
            return
        logger.info("🚀 [FX-INIT] 初始化 FX 缓存系统...")
        self._init_task = asyncio.create_task(self.initialize())

    async def stop(self) -> None:
        """取消定时器、初始化任务与进行中的刷新"""
        pending = [
            t for t in (self._timer, self._init_task, self._inflight)
            if t is not None and not t.done()
        ]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._timer = None
        self._init_task = None
        self._inflight = None
        self._next_refresh_at = None
        logger.info("⏹️ [FX-INIT] 自动刷新已停止")

    async def initialize(self) -> SchedulerState:
        self._state = SchedulerState.LOADING_BACKUP
        loaded = await self._persistence.load_latest()
        now = self._clock()

        if loaded.ok and self._persistence.is_usable(loaded.value, now):
            backup = loaded.value
            current = self._store.read()
            if current.last_update is None or backup.last_update > current.last_update:
                self._store.replace(backup.model_copy(
                    update={"data_ready": True, "is_loading": False, "error": None}
                ))
                logger.info("✅ [FX-BACKUP] 已从磁盘加载备份")
            else:
                logger.info("⚠️ [FX-BACKUP] 内存快照已比磁盘备份新，保留内存快照")
            age = now - self._store.read().last_update
            hours = age / MS_PER_HOUR

            if age <= self._interval_ms:
                self._startup_state = SchedulerState.FRESH
                logger.info(f"✅ [FX-INIT] 使用备份（{hours:.1f} 小时前）")
                self._schedule(self._interval_ms - age)
                self._state = SchedulerState.IDLE
                return self._startup_state

            self._startup_state = SchedulerState.STALE
            logger.info(f"⚠️ [FX-INIT] 备份已有 {hours:.1f} 小时，立即刷新...")
        else:
            if loaded.ok:
                logger.info("⚠️ [FX-BACKUP] 备份过旧，跳过")
            self._startup_state = SchedulerState.EMPTY
            logger.info("📡 [FX-INIT] 无可用备份，立即拉取最新数据...")

        await self.refresh(reason="startup")
        return self._startup_state

    # ── 刷新周期 ──────────────────────────────────────────

    async def refresh(self, reason: str = "manual") -> Result[Snapshot]:
        """
        执行一次刷新周期；若已有周期在执行则等待并返回该周期的结果

        周期结束（成功或失败）后定时器重新排期为一个固定周期之后。
        """
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._run_cycle(reason))
            self._inflight.add_done_callback(self._clear_inflight)
        else:
            logger.info(f"⏳ [FX-REFRESH] 刷新进行中，{reason} 请求合并到当前周期")
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, fut: asyncio.Future) -> None:
        if self._inflight is fut:
            self._inflight = None

    async def _run_cycle(self, reason: str) -> Result[Snapshot]:
        self._state = SchedulerState.REFRESHING
        logger.info(f"🔄 [FX-REFRESH] 开始刷新 FX 缓存（{reason}）...")
        self._store.mark_loading(True)
        self._store.set_error(None)

        try:
            result = await self._fetcher.fetch_snapshot()
        except asyncio.CancelledError:
            self._store.mark_loading(False)
            raise
        except Exception as exc:
            logger.error(f"❌ [FX-REFRESH] 刷新异常: {exc}", exc_info=True)
            result = Result.failure(ErrorKind.UPSTREAM_FAILURE, str(exc))

        if result.ok:
            await self._commit(result.value)
        else:
            await self._recover(result.error)

        self._schedule(self._interval_ms)
        self._state = SchedulerState.IDLE
        return result

    async def _commit(self, candidate: Snapshot) -> None:
        self._store.replace(candidate)
        counts = candidate.series_counts()
        logger.info(
            "✅ [FX-REFRESH] 刷新完成: "
            + ", ".join(f"{name}={n}" for name, n in counts.items())
        )
        saved = await self._persistence.save_backup(candidate)
        if not saved.ok:
            logger.warning(f"⚠️ [FX-BACKUP] 备份保存失败（内存快照已更新）: {saved.error}")

    async def _recover(self, error: CacheError) -> None:
        """上游失败：保留上一份快照并记录错误，尝试用更新的磁盘备份回退"""
        message = str(error)
        logger.error(f"❌ [FX-REFRESH] 刷新失败: {message}")
        self._store.replace(
            self._store.read().model_copy(update={"is_loading": False, "error": message})
        )

        fallback = await self._persistence.load_latest()
        if not fallback.ok:
            logger.info("⚠️ [FX-BACKUP] 无可用备份，继续提供当前快照")
            return

        current = self._store.read()
        backup = fallback.value
        newer = current.last_update is None or (backup.last_update or 0) > current.last_update
        if self._persistence.is_usable(backup, self._clock()) and newer:
            self._store.replace(backup.model_copy(
                update={"data_ready": True, "is_loading": False, "error": message}
            ))
            logger.info("✅ [FX-BACKUP] 已回退到磁盘备份")
        else:
            logger.info("⚠️ [FX-BACKUP] 磁盘备份不比当前快照新或已过期，跳过")

    # ── 定时器 ────────────────────────────────────────────

    def _schedule(self, delay_ms: int) -> None:
        delay_ms = max(0, int(delay_ms))
        self._cancel_timer()
        self._next_refresh_at = self._clock() + delay_ms
        self._timer = asyncio.create_task(self._tick(delay_ms))
        logger.info(
            f"⏰ [FX-REFRESH] 下次刷新: {iso_from_ms(self._next_refresh_at)}"
            f"（{delay_ms / MS_PER_HOUR:.1f} 小时后）"
        )

    def _cancel_timer(self) -> None:
        timer = self._timer
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _tick(self, delay_ms: int) -> None:
        await self._sleep(delay_ms / 1000)
        if self._timer is asyncio.current_task():
            self._timer = None
        await self.refresh(reason="scheduled")


# ── 模块级别单例 ──────────────────────────────────────────
_scheduler: Optional[RefreshScheduler] = None


def get_refresh_scheduler() -> RefreshScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = RefreshScheduler()
    return _scheduler
