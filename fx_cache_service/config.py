"""
FX 缓存服务配置模块
支持从环境变量 / .env 读取配置
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_KEY = "CHANGE_THIS_IN_PRODUCTION"

_HOUR_MS = 60 * 60 * 1000


class FxCacheSettings(BaseSettings):
    """FX 缓存服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3001)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"]
    )

    # ── 写入鉴权 ──────────────────────────────────────────
    FX_CACHE_API_KEY: str = Field(default=DEFAULT_API_KEY)

    # ── 缓存与备份 ────────────────────────────────────────
    CACHE_DIR: str = Field(default="./cache")          # 最新快照与备份文件目录
    REFRESH_INTERVAL_HOURS: float = Field(default=4)   # 固定刷新周期（失败重试同周期）
    BACKUP_MAX_AGE_HOURS: float = Field(default=24)    # 启动时可用备份的最大年龄
    MAX_BACKUPS: int = Field(default=10)
    # 外部写入是否同时替换内存快照（默认仅落盘，内存等待下次刷新）
    APPLY_WRITES_TO_MEMORY: bool = Field(default=False)

    # ── 上游数据源（Yahoo Finance Chart API） ──────────────
    YAHOO_CHART_URL: str = Field(default="https://query1.finance.yahoo.com/v8/finance/chart")
    YAHOO_CHART_V7_URL: str = Field(default="https://query1.finance.yahoo.com/v7/finance/chart")
    USER_AGENT: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
        )
    )
    UPSTREAM_TIMEOUT_SECONDS: float = Field(default=10)
    USDJPY_SYMBOL: str = Field(default="JPY=X")
    DXY_SYMBOL: str = Field(default="DX-Y.NYB")
    DAILY_INTERVAL: str = Field(default="1d")
    DAILY_RANGE: str = Field(default="1mo")
    INTRADAY_INTERVAL: str = Field(default="1h")
    INTRADAY_RANGE: str = Field(default="5d")

    # ── 远端副本（可选） ──────────────────────────────────
    REMOTE_UPLOAD_URL: str = Field(default="")
    REMOTE_TOKEN: str = Field(default="")
    REMOTE_TIMEOUT_SECONDS: float = Field(default=10)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")

    @property
    def REFRESH_INTERVAL_MS(self) -> int:
        return int(self.REFRESH_INTERVAL_HOURS * _HOUR_MS)

    @property
    def BACKUP_MAX_AGE_MS(self) -> int:
        return int(self.BACKUP_MAX_AGE_HOURS * _HOUR_MS)

    @property
    def REMOTE_ENABLED(self) -> bool:
        return bool(self.REMOTE_UPLOAD_URL)

    @property
    def USING_DEFAULT_API_KEY(self) -> bool:
        return self.FX_CACHE_API_KEY == DEFAULT_API_KEY


@lru_cache
def get_settings() -> FxCacheSettings:
    """获取全局配置（单例）"""
    return FxCacheSettings()


settings = get_settings()
