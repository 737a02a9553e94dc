"""传输引擎配置

环境变量（构造参数优先）:
    R2U_MULTIPART_THRESHOLD: 超过该字节数走分片上传（默认 8 MiB）
    R2U_PART_SIZE: 分片大小（默认 5 MiB）
    R2U_PART_CONCURRENCY: 单文件并行分片数（默认 4）
    R2U_MAX_ACTIVE_UPLOADS: 全局同时上传的分片/对象数上限（默认 8）
    R2U_MAX_ATTEMPTS: 单个分片最大尝试次数（默认 4）
    R2U_RETRY_BASE_DELAY / R2U_RETRY_MAX_DELAY: 退避基数与上限（秒）
    R2U_SPEED_WINDOW: 速度平滑窗口（秒，默认 3）
    R2U_PRESIGN_TTL: 预签名 URL 有效期（秒，默认 3600）
    R2U_CONNECT_TIMEOUT / R2U_READ_TIMEOUT: 连接与读取超时（秒，默认 30）
"""

import logging
import os
import urllib.request
from dataclasses import dataclass, fields
from typing import Any

from .errors import ConfigError

logger = logging.getLogger(__name__)

MiB = 1024 * 1024

# S3 / R2 / OSS 共同的分片协议约束
MIN_PART_SIZE = 5 * MiB
MAX_PARTS = 10000


@dataclass
class TransferSettings:
    """分片、并发、重试参数"""

    multipart_threshold: int = 8 * MiB
    part_size: int = 5 * MiB
    part_concurrency: int = 4
    max_active_uploads: int = 8
    max_attempts: int = 4
    retry_base_delay: float = 0.5
    retry_max_delay: float = 8.0
    speed_window: float = 3.0
    presign_ttl: int = 3600
    connect_timeout: int = 30
    read_timeout: int = 30

    def __post_init__(self) -> None:
        if self.part_size < MIN_PART_SIZE:
            raise ConfigError(
                f"分片大小不能小于 {MIN_PART_SIZE} 字节: {self.part_size}",
                code="InvalidSetting",
            )
        for name in ("part_concurrency", "max_active_uploads", "max_attempts"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} 必须 >= 1", code="InvalidSetting")
        if self.multipart_threshold < 0 or self.retry_base_delay < 0:
            raise ConfigError("阈值与退避时间不能为负数", code="InvalidSetting")

    @classmethod
    def from_env(cls, **overrides: Any) -> "TransferSettings":
        """读取 R2U_* 环境变量，overrides 覆盖同名字段"""
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = os.environ.get(f"R2U_{f.name.upper()}")
            if raw is None:
                continue
            cast = float if f.type in (float, "float") else int
            try:
                values[f.name] = cast(raw)
            except ValueError as e:
                raise ConfigError(
                    f"环境变量 R2U_{f.name.upper()} 不是合法数字: {raw}",
                    code="InvalidSetting",
                ) from e
        values.update(overrides)
        return cls(**values)


@dataclass
class AppSettings:
    """应用设置中引擎需要读取的字段"""

    use_system_proxy: bool = True
    locale: str = "en"
    default_bucket_id: int | str | None = None
    last_active_bucket_id: int | str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppSettings":
        """从设置库中的 camelCase 记录构建"""
        return cls(
            use_system_proxy=data.get("useSystemProxy", True),
            locale=data.get("locale", "en"),
            default_bucket_id=data.get("defaultBucketId"),
            last_active_bucket_id=data.get("lastActiveBucketId"),
        )

    def proxies(self) -> dict[str, str] | None:
        """启用系统代理时返回 {scheme: proxy_url}"""
        if not self.use_system_proxy:
            return None
        found = {
            scheme: url
            for scheme, url in urllib.request.getproxies().items()
            if scheme in ("http", "https")
        }
        if found:
            logger.debug("使用系统代理: %s", found)
        return found or None
