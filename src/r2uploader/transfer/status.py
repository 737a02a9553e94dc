"""传输状态

Waiting → Uploading(...)* → Success | Cancelled | Error
终态不可再迁移；Uploading 可重复进入，bytes_uploaded 单调不减。
"""

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Waiting:
    """已提交，尚未开始上传"""

    terminal = False

    def to_dict(self) -> Any:
        return "waiting"


@dataclass(frozen=True)
class Uploading:
    """上传中"""

    bytes_uploaded: int
    total_bytes: int
    speed: float = 0.0

    terminal = False

    def __post_init__(self) -> None:
        if self.bytes_uploaded < 0 or self.bytes_uploaded > self.total_bytes:
            raise ValueError(
                f"bytes_uploaded 越界: {self.bytes_uploaded}/{self.total_bytes}"
            )

    @property
    def progress(self) -> float:
        if self.total_bytes == 0:
            return 1.0
        return self.bytes_uploaded / self.total_bytes

    def to_dict(self) -> Any:
        return {
            "uploading": {
                "progress": self.progress,
                "bytesUploaded": self.bytes_uploaded,
                "totalBytes": self.total_bytes,
                "speed": self.speed,
            }
        }


@dataclass(frozen=True)
class Success:
    terminal = True

    def to_dict(self) -> Any:
        return "success"


@dataclass(frozen=True)
class Cancelled:
    terminal = True

    def to_dict(self) -> Any:
        return "cancelled"


@dataclass(frozen=True)
class Error:
    """失败，code 为服务端错误码或引擎错误类型"""

    message: str
    code: str

    terminal = True

    def to_dict(self) -> Any:
        return {"error": {"message": self.message, "code": self.code}}


TransferStatus = Union[Waiting, Uploading, Success, Cancelled, Error]
