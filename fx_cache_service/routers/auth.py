"""
接口鉴权依赖
受保护接口通过 X-API-Key 请求头携带共享密钥
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from fx_cache_service.models.result import ErrorKind
from fx_cache_service.services.auth_service import ApiKeyAuthService, get_auth_service

_STATUS_BY_KIND = {
    ErrorKind.UNAUTHORIZED: (status.HTTP_401_UNAUTHORIZED, "Unauthorized"),
    ErrorKind.FORBIDDEN: (status.HTTP_403_FORBIDDEN, "Forbidden"),
}


# ── 依赖注入：校验 X-API-Key ──────────────────────────────

async def verify_api_key(
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    auth: ApiKeyAuthService = Depends(get_auth_service),
) -> str:
    checked = auth.check(x_api_key)
    if not checked.ok:
        code, title = _STATUS_BY_KIND[checked.error.kind]
        raise HTTPException(
            status_code=code,
            detail={"error": title, "message": checked.error.message},
        )
    return x_api_key
