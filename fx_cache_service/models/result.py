"""
组件边界的显式结果类型
获取层 / 持久化层 / 写入网关之间通过 Result 传递成功值或带类型的错误，
异常只在 I/O 边缘捕获并转换。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    UPSTREAM_FAILURE = "upstream_failure"
    VALIDATION_FAILURE = "validation_failure"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    PERSIST_FAILURE = "persist_failure"
    NOT_FOUND = "not_found"
    REMOTE_FAILURE = "remote_failure"
    ROTATION_FAILURE = "rotation_failure"


@dataclass(frozen=True)
class CacheError:
    kind: ErrorKind
    message: str
    source: Optional[str] = None  # 出错的上游调用 / 字段名

    def __str__(self) -> str:
        if self.source:
            return f"{self.source}: {self.message}"
        return self.message


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[CacheError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls, kind: ErrorKind, message: str, source: Optional[str] = None
    ) -> "Result[T]":
        return cls(error=CacheError(kind=kind, message=message, source=source))

    @classmethod
    def from_error(cls, error: CacheError) -> "Result[T]":
        return cls(error=error)
