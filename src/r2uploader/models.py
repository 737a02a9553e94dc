"""存储桶、远端对象与传输任务的数据模型"""

import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from .errors import ConfigError, ValidationError

T = TypeVar("T")


class ProviderKind(str, Enum):
    """存储服务类型"""

    R2 = "r2"
    S3 = "s3"
    OSS = "oss"


@dataclass
class Bucket:
    """存储桶配置（由配置界面维护，引擎只读）"""

    id: int | str
    bucket_name: str
    access_key: str
    secret_key: str
    kind: ProviderKind | None = None
    account_id: str = ""
    custom_domain: str = ""
    s3_api: str = ""
    endpoint: str = ""
    region: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bucket":
        """从配置库中的 camelCase 记录构建"""
        kind = data.get("type") or data.get("kind")
        try:
            kind = ProviderKind(kind) if kind else None
        except ValueError as e:
            raise ConfigError(
                f"未知的服务类型: {kind}", code="UnrecognizedProvider"
            ) from e
        return cls(
            id=data["id"],
            bucket_name=data.get("bucketName") or data.get("bucket_name") or "",
            access_key=data.get("accessKey") or data.get("access_key") or "",
            secret_key=data.get("secretKey") or data.get("secret_key") or "",
            kind=kind,
            account_id=data.get("accountId") or data.get("account_id") or "",
            custom_domain=data.get("customDomain") or data.get("custom_domain") or "",
            s3_api=data.get("s3Api") or data.get("s3_api") or "",
            endpoint=data.get("endpoint") or "",
            region=data.get("region") or "",
        )


class SourceKind(str, Enum):
    """上传来源类型"""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


@dataclass
class TransferSource:
    """上传来源：本地路径或内联内容，二选一"""

    kind: SourceKind
    file_path: str | None = None
    content: str | bytes | None = None
    filename: str = ""

    def __post_init__(self) -> None:
        if (self.file_path is None) == (self.content is None):
            raise ValidationError("上传来源必须且只能提供 file_path 或 content 之一")

    @classmethod
    def from_path(cls, path: str, *, filename: str = "") -> "TransferSource":
        return cls(kind=SourceKind.FILE, file_path=path, filename=filename)

    @classmethod
    def from_text(cls, text: str, *, filename: str) -> "TransferSource":
        return cls(kind=SourceKind.TEXT, content=text, filename=filename)

    @classmethod
    def from_image(cls, data: bytes, *, filename: str) -> "TransferSource":
        return cls(kind=SourceKind.IMAGE, content=data, filename=filename)

    @property
    def is_inline(self) -> bool:
        return self.content is not None

    def inline_bytes(self) -> bytes:
        """内联内容转字节，文本按 UTF-8 编码"""
        if isinstance(self.content, str):
            return self.content.encode("utf-8")
        return self.content or b""


def join_key(prefix: str, filename: str) -> str:
    """远端前缀 + 文件名 → 对象 key，二者之间只保留一个 /"""
    prefix = prefix.strip("/")
    filename = filename.lstrip("/")
    return f"{prefix}/{filename}" if prefix else filename


@dataclass
class TransferTask:
    """单个文件的上传任务，执行期间归引擎所有"""

    transfer_id: str
    source: TransferSource
    bucket_id: int | str
    remote_filename: str
    remote_prefix: str = ""

    @property
    def key(self) -> str:
        return join_key(self.remote_prefix, self.remote_filename)

    @property
    def display_name(self) -> str:
        return posixpath.basename(self.key) or self.key


@dataclass(frozen=True)
class RemoteObject:
    """列表接口返回的对象快照"""

    key: str
    size: int
    last_modified: int
    etag: str


@dataclass(frozen=True)
class MultipartUploadHandle:
    """远端未完成的分片上传"""

    key: str
    upload_id: str
    initiated: int


@dataclass(frozen=True)
class CompletedPart:
    """已上传的分片"""

    part_number: int
    etag: str
    size: int = 0


@dataclass
class ListingPage(Generic[T]):
    """分页列表结果，continuation_token 只对签发它的 bucket + prefix 有效"""

    items: list[T] = field(default_factory=list)
    is_truncated: bool = False
    continuation_token: str | None = None
    key_count: int = 0

    def __post_init__(self) -> None:
        if not self.is_truncated and self.continuation_token:
            # 未截断的页不应携带 token
            self.continuation_token = None
        if self.is_truncated and not self.continuation_token:
            raise ValidationError("截断的分页缺少 continuation token")
        if not self.key_count:
            self.key_count = len(self.items)
