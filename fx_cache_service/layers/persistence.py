"""
Layer 4 – 持久化层
磁盘布局（CACHE_DIR 下）：
  fx-cache-backup.json              最新快照，重启时快速加载
  fx-cache-backup-<epochMs>.json    时间戳备份，仅保留最近 MAX_BACKUPS 份

所有文件操作在线程池中执行（asyncio.to_thread），写入先落临时文件再 os.replace，
"写入 + 轮转" 在同一把锁内完成，列举备份时不会与删除交错。
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from fx_cache_service.clock import iso_from_ms, now_ms
from fx_cache_service.config import settings
from fx_cache_service.models.result import ErrorKind, Result
from fx_cache_service.models.snapshot import Snapshot

logger = logging.getLogger(__name__)

LATEST_FILENAME = "fx-cache-backup.json"
_BACKUP_RE = re.compile(r"^fx-cache-backup-(\d+)\.json$")

BackupId = int


@dataclass(frozen=True)
class BackupInfo:
    filename: str
    backup_id: BackupId

    @property
    def date(self) -> str:
        return iso_from_ms(self.backup_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "backupId": self.backup_id,
            "timestamp": self.backup_id,
            "date": self.date,
        }


@dataclass(frozen=True)
class CommitInfo:
    archived_id: Optional[BackupId]      # 写入前对旧 latest 的备份；首次写入为 None
    archive_error: Optional[str] = None


def backup_filename(backup_id: BackupId) -> str:
    return f"fx-cache-backup-{backup_id}.json"


class PersistenceManager:
    """最新快照 + 时间戳备份链的读写与轮转"""

    def __init__(
        self,
        cache_dir: Optional[str] = None,
        max_kept: Optional[int] = None,
        max_age_ms: Optional[int] = None,
        clock=now_ms,
    ):
        self._dir = cache_dir or settings.CACHE_DIR
        self._max_kept = max_kept if max_kept is not None else settings.MAX_BACKUPS
        self._max_age_ms = max_age_ms if max_age_ms is not None else settings.BACKUP_MAX_AGE_MS
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_id: BackupId = 0

    @property
    def cache_dir(self) -> str:
        return self._dir

    @property
    def latest_path(self) -> str:
        return os.path.join(self._dir, LATEST_FILENAME)

    def backup_path(self, backup_id: BackupId) -> str:
        return os.path.join(self._dir, backup_filename(backup_id))

    def is_usable(self, snapshot: Snapshot, now: Optional[int] = None) -> bool:
        """启动 / 回退加载的新鲜度策略：lastUpdate 距今小于 BACKUP_MAX_AGE"""
        age = snapshot.age_ms(self._clock() if now is None else now)
        return age is not None and age < self._max_age_ms

    # ── 刷新周期：保存备份 ────────────────────────────────

    async def save_backup(self, snapshot: Snapshot) -> Result[BackupId]:
        """写入时间戳备份并覆盖 latest，随后轮转"""
        body = snapshot.to_body()
        async with self._lock:
            try:
                backup_id = await asyncio.to_thread(self._save_sync, body)
            except (OSError, TypeError, ValueError) as exc:
                logger.error(f"⚠️ 备份保存失败: {exc}")
                return Result.failure(ErrorKind.PERSIST_FAILURE, str(exc))
            await self._rotate_locked(self._max_kept)
        logger.info(f"💾 快照已备份: {backup_filename(backup_id)}")
        return Result.success(backup_id)

    def _save_sync(self, body: Dict[str, Any]) -> BackupId:
        os.makedirs(self._dir, exist_ok=True)
        backup_id = self._next_backup_id()
        self._write_json(self.backup_path(backup_id), body)
        self._write_json(self.latest_path, body)
        return backup_id

    # ── 读取 ──────────────────────────────────────────────

    async def load_latest(self) -> Result[Snapshot]:
        loaded = await asyncio.to_thread(self._read_json, self.latest_path)
        if not loaded.ok:
            return Result.from_error(loaded.error)
        try:
            return Result.success(Snapshot.from_body(loaded.value))
        except ValidationError as exc:
            logger.warning(f"⚠️ 最新快照文件格式无效: {exc.error_count()} 处错误")
            return Result.failure(ErrorKind.NOT_FOUND, "latest snapshot is not a valid snapshot")

    async def restore(self, backup_id: BackupId) -> Result[Dict[str, Any]]:
        """读取指定备份的原始内容（用于回滚）"""
        return await asyncio.to_thread(self._read_json, self.backup_path(backup_id))

    async def list_backups(self) -> List[BackupInfo]:
        """按时间戳倒序（最新在前）"""
        async with self._lock:
            return await asyncio.to_thread(self._list_sync)

    def _list_sync(self) -> List[BackupInfo]:
        if not os.path.isdir(self._dir):
            return []
        infos = []
        for name in os.listdir(self._dir):
            match = _BACKUP_RE.match(name)
            if match:
                infos.append(BackupInfo(filename=name, backup_id=int(match.group(1))))
        return sorted(infos, key=lambda i: i.backup_id, reverse=True)

    # ── 外部写入：先备份旧 latest 再写入新内容 ─────────────

    async def archive_latest(self) -> Result[Optional[BackupId]]:
        async with self._lock:
            return await self._archive_locked()

    async def write_latest(self, body: Dict[str, Any]) -> Result[None]:
        async with self._lock:
            return await self._write_latest_locked(body)

    async def commit_latest(self, body: Dict[str, Any]) -> Result[CommitInfo]:
        """
        外部写入的本地落盘单元

        1. 若存在旧 latest，复制为新的时间戳备份（失败仅记录日志）
        2. 写入新 latest（失败即 PERSIST_FAILURE，操作中止）
        """
        async with self._lock:
            archived = await self._archive_locked()
            if not archived.ok:
                logger.warning(f"⚠️ 写入前备份失败（继续写入）: {archived.error}")
            written = await self._write_latest_locked(body)
            if not written.ok:
                return Result.from_error(written.error)
        return Result.success(CommitInfo(
            archived_id=archived.value if archived.ok else None,
            archive_error=None if archived.ok else archived.error.message,
        ))

    async def _archive_locked(self) -> Result[Optional[BackupId]]:
        try:
            backup_id = await asyncio.to_thread(self._archive_sync)
        except OSError as exc:
            return Result.failure(ErrorKind.PERSIST_FAILURE, str(exc))
        if backup_id is None:
            logger.info("⚠️ 无旧快照可备份")
        else:
            logger.info(f"💾 已备份旧快照: {backup_filename(backup_id)}")
        return Result.success(backup_id)

    def _archive_sync(self) -> Optional[BackupId]:
        if not os.path.exists(self.latest_path):
            return None
        with open(self.latest_path, "r", encoding="utf-8") as fh:
            existing = fh.read()
        backup_id = self._next_backup_id()
        self._write_text(self.backup_path(backup_id), existing)
        return backup_id

    async def _write_latest_locked(self, body: Dict[str, Any]) -> Result[None]:
        try:
            await asyncio.to_thread(self._write_latest_sync, body)
        except (OSError, TypeError, ValueError) as exc:
            logger.error(f"❌ 最新快照写入失败: {exc}")
            return Result.failure(ErrorKind.PERSIST_FAILURE, str(exc))
        logger.info("✅ 最新快照已写入本地")
        return Result.success()

    def _write_latest_sync(self, body: Dict[str, Any]) -> None:
        os.makedirs(self._dir, exist_ok=True)
        self._write_json(self.latest_path, body)

    # ── 轮转 ──────────────────────────────────────────────

    async def rotate(self, max_kept: Optional[int] = None) -> Result[int]:
        """只保留最近 max_kept 份备份，成功返回删除数量；失败为 ROTATION_FAILURE，不抛出"""
        async with self._lock:
            return await self._rotate_locked(self._max_kept if max_kept is None else max_kept)

    async def _rotate_locked(self, max_kept: int) -> Result[int]:
        try:
            infos = await asyncio.to_thread(self._list_sync)
        except OSError as exc:
            logger.warning(f"⚠️ 备份清理失败（非关键）: {exc}")
            return Result.failure(ErrorKind.ROTATION_FAILURE, str(exc))
        stale = infos[max_kept:]
        deleted = 0
        failed = []
        for info in reversed(stale):  # 最旧的先删
            try:
                await asyncio.to_thread(os.remove, os.path.join(self._dir, info.filename))
                deleted += 1
                logger.info(f"🗑️ 已删除旧备份: {info.filename}")
            except OSError as exc:
                logger.warning(f"⚠️ 删除旧备份失败 {info.filename}: {exc}")
                failed.append(info.filename)
        if failed:
            return Result.failure(
                ErrorKind.ROTATION_FAILURE, f"failed to delete {', '.join(failed)}"
            )
        return Result.success(deleted)

    # ── 文件工具 ──────────────────────────────────────────

    def _next_backup_id(self) -> BackupId:
        """同一毫秒内的多次备份顺延到下一个空闲毫秒，保证 ID 单调且唯一"""
        candidate = max(self._clock(), self._last_id + 1)
        while os.path.exists(self.backup_path(candidate)):
            candidate += 1
        self._last_id = candidate
        return candidate

    @staticmethod
    def _read_json(path: str) -> Result[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                body = json.load(fh)
        except FileNotFoundError:
            return Result.failure(ErrorKind.NOT_FOUND, "no backup available", source=os.path.basename(path))
        except (OSError, ValueError) as exc:
            logger.warning(f"⚠️ 快照文件读取失败 {path}: {exc}")
            return Result.failure(ErrorKind.NOT_FOUND, f"unreadable: {exc}", source=os.path.basename(path))
        if not isinstance(body, dict):
            return Result.failure(ErrorKind.NOT_FOUND, "not a JSON object", source=os.path.basename(path))
        return Result.success(body)

    @classmethod
    def _write_json(cls, path: str, body: Dict[str, Any]) -> None:
        cls._write_text(path, json.dumps(body, ensure_ascii=False, indent=2, default=str))

    @staticmethod
    def _write_text(path: str, text: str) -> None:
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp, path)


# ── 模块级别单例 ──────────────────────────────────────────
_persistence: Optional[PersistenceManager] = None


def get_persistence_manager() -> PersistenceManager:
    global _persistence
    if _persistence is None:
        _persistence = PersistenceManager()
    return _persistence
