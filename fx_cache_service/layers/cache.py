"""
Layer 3 – 缓存层
进程内唯一的当前快照。所有读者共享同一份数据：
  - read() 直接返回不可变快照引用，不触发任何网络 I/O
  - replace() / 元数据变更均构造新快照后一次性替换引用，读者不会看到半更新状态
"""

import logging
from typing import Optional

from fx_cache_service.models.snapshot import Snapshot

logger = logging.getLogger(__name__)


class CacheStore:
    """内存快照存储，生命周期：init → read / replace → teardown"""

    def __init__(self, initial: Optional[Snapshot] = None):
        self._current: Snapshot = initial or Snapshot.empty()

    def init(self) -> None:
        self._current = Snapshot.empty()
        logger.debug("缓存已初始化为空快照")

    def read(self) -> Snapshot:
        return self._current

    def replace(self, snapshot: Snapshot) -> None:
        """原子安装新快照（四个序列与时间戳同时生效）"""
        self._current = snapshot
        counts = snapshot.series_counts()
        logger.debug(f"快照已替换: lastUpdate={snapshot.last_update} {counts}")

    # ── 仅元数据变更：不触碰最后一份有效数据 ───────────────

    def mark_loading(self, loading: bool) -> None:
        self._current = self._current.model_copy(update={"is_loading": loading})

    def set_error(self, message: Optional[str]) -> None:
        self._current = self._current.model_copy(update={"error": message})

    def teardown(self) -> None:
        self._current = Snapshot.empty()
        logger.debug("缓存已清空")


# ── 模块级别单例 ──────────────────────────────────────────
_store: Optional[CacheStore] = None


def get_cache_store() -> CacheStore:
    global _store
    if _store is None:
        _store = CacheStore()
    return _store
