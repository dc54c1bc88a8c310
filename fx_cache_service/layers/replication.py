"""
Layer 5 – 远端副本
本地落盘成功之后，尽力把同一份快照 POST 到远端上传地址。
失败只回报给调用方，不回滚本地写入。
"""

import logging
from typing import Any, Dict, Optional

import httpx

from fx_cache_service.config import settings
from fx_cache_service.models.result import ErrorKind, Result

logger = logging.getLogger(__name__)


class RemoteSink:
    def __init__(
        self,
        upload_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = settings.REMOTE_UPLOAD_URL if upload_url is None else upload_url
        self._token = settings.REMOTE_TOKEN if token is None else token
        self._timeout = settings.REMOTE_TIMEOUT_SECONDS if timeout is None else timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def upload(self, body: Dict[str, Any]) -> Result[None]:
        if not self.enabled:
            return Result.failure(ErrorKind.REMOTE_FAILURE, "remote upload not configured")

        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        logger.info("🌐 正在上传快照到远端...")
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, json=body, headers=headers)
                resp.raise_for_status()
        except httpx.TimeoutException:
            message = f"timeout after {self._timeout:g}s"
        except httpx.HTTPStatusError as exc:
            message = f"HTTP {exc.response.status_code}"
        except httpx.RequestError as exc:
            message = f"network error: {exc}"
        else:
            logger.info("✅ 远端上传成功")
            return Result.success()

        logger.warning(f"⚠️ 远端上传失败: {message}")
        return Result.failure(ErrorKind.REMOTE_FAILURE, message)


# ── 模块级别单例 ──────────────────────────────────────────
_sink: Optional[RemoteSink] = None


def get_remote_sink() -> RemoteSink:
    global _sink
    if _sink is None:
        _sink = RemoteSink()
    return _sink
