"""
写入网关
外部提交的快照按以下顺序处理（本地优先）：
  1. 鉴权           共享密钥，缺失 401 / 不匹配 403
  2. 校验           五个必填字段齐全，四个序列必须为数组；失败时不写入任何内容
  3. 写入前备份     复制旧 latest 为时间戳备份（失败不致命）
  4. 写入 latest    失败即中止，不回报成功
  5. 远端副本       可选，失败仅回报
  6. 备份轮转       保留最近 MAX_BACKUPS 份

默认不更新内存快照（内存由上游刷新驱动）；APPLY_WRITES_TO_MEMORY=true 时
成功写入后同时替换 CacheStore。
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from fx_cache_service.config import settings
from fx_cache_service.layers.cache import CacheStore, get_cache_store
from fx_cache_service.layers.persistence import (
    BackupId,
    PersistenceManager,
    get_persistence_manager,
)
from fx_cache_service.layers.replication import RemoteSink, get_remote_sink
from fx_cache_service.models.result import ErrorKind, Result
from fx_cache_service.models.snapshot import REQUIRED_FIELDS, SERIES_NAMES, Snapshot
from fx_cache_service.services.auth_service import ApiKeyAuthService, get_auth_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteReceipt:
    local_backup: bool
    backup_id: Optional[BackupId]
    remote_upload: bool
    remote_error: Optional[str]
    data_points: Dict[str, int]
    memory_updated: bool = False
    archive_error: Optional[str] = None    # 写入前备份失败（非致命）
    rotation_error: Optional[str] = None   # 备份轮转失败（非致命）


def validate_snapshot_body(body: Any) -> Result[Dict[str, Any]]:
    if not isinstance(body, dict):
        return Result.failure(
            ErrorKind.VALIDATION_FAILURE, "FX cache data must be a valid JSON object"
        )
    for field in REQUIRED_FIELDS:
        if field not in body:
            return Result.failure(
                ErrorKind.VALIDATION_FAILURE, f"Missing required field: {field}", source=field
            )
    for field in SERIES_NAMES:
        if not isinstance(body[field], list):
            return Result.failure(
                ErrorKind.VALIDATION_FAILURE, f"Field must be an array: {field}", source=field
            )
    return Result.success(body)


class WriteGateway:
    def __init__(
        self,
        persistence: Optional[PersistenceManager] = None,
        store: Optional[CacheStore] = None,
        remote: Optional[RemoteSink] = None,
        auth: Optional[ApiKeyAuthService] = None,
        apply_to_memory: Optional[bool] = None,
        max_backups: Optional[int] = None,
    ):
        self._persistence = persistence or get_persistence_manager()
        self._store = store or get_cache_store()
        self._remote = remote or get_remote_sink()
        self._auth = auth or get_auth_service()
        self._apply_to_memory = (
            settings.APPLY_WRITES_TO_MEMORY if apply_to_memory is None else apply_to_memory
        )
        self._max_backups = settings.MAX_BACKUPS if max_backups is None else max_backups

    async def submit(self, body: Any, credential: Optional[str]) -> Result[WriteReceipt]:
        auth = self._auth.check(credential)
        if not auth.ok:
            return Result.from_error(auth.error)

        logger.info("✍️ [FX-CACHE] 收到写入请求")
        valid = validate_snapshot_body(body)
        if not valid.ok:
            logger.warning(f"❌ [FX-CACHE] 数据校验失败: {valid.error.message}")
            return Result.from_error(valid.error)
        return await self._commit(valid.value)

    async def rollback(self, backup_id: BackupId, credential: Optional[str]) -> Result[WriteReceipt]:
        """将指定备份重新提交为 latest（当前 latest 会先被备份）"""
        auth = self._auth.check(credential)
        if not auth.ok:
            return Result.from_error(auth.error)

        restored = await self._persistence.restore(backup_id)
        if not restored.ok:
            return Result.failure(ErrorKind.NOT_FOUND, f"Backup not found: {backup_id}")
        valid = validate_snapshot_body(restored.value)
        if not valid.ok:
            return Result.from_error(valid.error)
        logger.info(f"⏪ [FX-CACHE] 回滚到备份 {backup_id}")
        return await self._commit(valid.value)

    async def _commit(self, body: Dict[str, Any]) -> Result[WriteReceipt]:
        data_points = {name: len(body[name]) for name in SERIES_NAMES}
        logger.info(f"📊 [FX-CACHE] 数据概要: {data_points}")

        committed = await self._persistence.commit_latest(body)
        if not committed.ok:
            return Result.from_error(committed.error)

        remote_upload = False
        remote_error: Optional[str] = None
        if self._remote.enabled:
            uploaded = await self._remote.upload(body)
            remote_upload = uploaded.ok
            remote_error = None if uploaded.ok else uploaded.error.message
        else:
            logger.info("ℹ️ [FX-CACHE] 未配置远端上传（REMOTE_UPLOAD_URL）")

        rotated = await self._persistence.rotate(self._max_backups)
        if not rotated.ok:
            logger.warning(f"⚠️ [FX-CACHE] 备份轮转失败（写入已成功）: {rotated.error.message}")

        memory_updated = self._apply_to_memory and self._install(body)
        return Result.success(WriteReceipt(
            local_backup=True,
            backup_id=committed.value.archived_id,
            remote_upload=remote_upload,
            remote_error=remote_error,
            data_points=data_points,
            memory_updated=memory_updated,
            archive_error=committed.value.archive_error,
            rotation_error=None if rotated.ok else rotated.error.message,
        ))

    def _install(self, body: Dict[str, Any]) -> bool:
        try:
            snapshot = Snapshot.from_body(
                body, data_ready=True, is_loading=False, error=None
            )
        except ValidationError as exc:
            logger.warning(f"⚠️ [FX-CACHE] 写入内容无法转换为内存快照（已落盘）: {exc.error_count()} 处错误")
            return False
        self._store.replace(snapshot)
        logger.info("✅ [FX-CACHE] 内存快照已同步更新")
        return True


# ── 模块级别单例 ──────────────────────────────────────────
_gateway: Optional[WriteGateway] = None


def get_write_gateway() -> WriteGateway:
    global _gateway
    if _gateway is None:
        _gateway = WriteGateway()
    return _gateway
