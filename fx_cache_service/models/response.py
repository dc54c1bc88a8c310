"""统一 API 响应模型"""

from typing import Any, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ApiResponse(BaseModel):
    """标准 API 响应封装"""
    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "success") -> "ApiResponse":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str = "failed") -> "ApiResponse":
        return cls(success=False, error=error, message=message)


def error_response(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    """以失败信封返回指定状态码，extra 字段平铺在顶层"""
    content = ApiResponse.fail(error=error, message=message).model_dump(exclude={"data"})
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)
