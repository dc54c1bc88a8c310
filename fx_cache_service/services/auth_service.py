"""
认证服务
写入 / 刷新 / 备份接口使用共享密钥（X-API-Key 请求头），整串比对，不做部分匹配
"""

import hmac
import logging
from typing import Optional

from fx_cache_service.config import settings
from fx_cache_service.models.result import ErrorKind, Result

logger = logging.getLogger(__name__)


class ApiKeyAuthService:
    """共享密钥认证：缺失 → UNAUTHORIZED，不匹配 → FORBIDDEN"""

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key if api_key is not None else settings.FX_CACHE_API_KEY

    def check(self, credential: Optional[str]) -> Result[None]:
        if not credential:
            logger.error("❌ [AUTH] 未提供 API Key")
            return Result.failure(
                ErrorKind.UNAUTHORIZED, "API key required for write operations"
            )
        if not hmac.compare_digest(credential.encode(), self._api_key.encode()):
            logger.error("❌ [AUTH] API Key 无效")
            return Result.failure(ErrorKind.FORBIDDEN, "Invalid API key")
        return Result.success()


# ── 模块级别单例 ──────────────────────────────────────────
_auth_service: Optional[ApiKeyAuthService] = None


def get_auth_service() -> ApiKeyAuthService:
    global _auth_service
    if _auth_service is None:
        _auth_service = ApiKeyAuthService()
    return _auth_service
