"""存储抽象接口

R2 / S3 / OSS 三种实现共用同一套能力，服务端差异（签名版本、endpoint 推导、
错误码格式）全部封装在各自实现内部，调用方不做类型判断。
"""

import logging
import mimetypes
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import BinaryIO

from ..errors import SigningError, ValidationError
from ..models import CompletedPart, ListingPage, MultipartUploadHandle, RemoteObject

logger = logging.getLogger(__name__)

# 单次列表请求的服务端上限
MAX_PAGE_SIZE = 1000


def guess_content_type(key: str) -> str:
    """按文件名推断 Content-Type，未知类型回退为二进制流"""
    content_type, _ = mimetypes.guess_type(key)
    return content_type or "application/octet-stream"


def ensure_ascending(parts: Sequence[CompletedPart]) -> list[CompletedPart]:
    """合并分片前校验分片号严格递增，不合法的请求不发出"""
    if not parts:
        raise ValidationError("合并分片时分片列表为空")
    numbers = [p.part_number for p in parts]
    if numbers[0] < 1:
        raise ValidationError(f"分片号从 1 开始: {numbers[0]}")
    for prev, cur in zip(numbers, numbers[1:]):
        if cur <= prev:
            raise ValidationError(
                f"分片号必须严格递增: {prev} -> {cur}",
                details={"part_numbers": numbers},
            )
    return list(parts)


class StorageProvider(ABC):
    """存储 Provider 抽象基类"""

    bucket: str

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider 名称"""

    @abstractmethod
    def put_object(
        self,
        key: str,
        data: bytes | BinaryIO,
        *,
        content_type: str | None = None,
    ) -> None:
        """单次上传（小于分片阈值的对象）"""

    @abstractmethod
    def initiate_multipart(self, key: str, *, content_type: str | None = None) -> str:
        """创建分片上传，返回 upload_id"""

    @abstractmethod
    def upload_part(
        self, key: str, upload_id: str, part_number: int, data: bytes
    ) -> CompletedPart:
        """上传单个分片"""

    @abstractmethod
    def complete_multipart(
        self, key: str, upload_id: str, parts: Sequence[CompletedPart]
    ) -> None:
        """合并分片，parts 必须按分片号严格递增"""

    @abstractmethod
    def abort_multipart(self, key: str, upload_id: str) -> None:
        """取消分片上传并清理已上传分片"""

    @abstractmethod
    def list_objects(
        self,
        prefix: str = "",
        continuation_token: str | None = None,
        page_size: int = 50,
    ) -> ListingPage[RemoteObject]:
        """分页列出对象"""

    @abstractmethod
    def list_multipart_uploads(
        self,
        continuation_token: str | None = None,
        page_size: int = MAX_PAGE_SIZE,
    ) -> ListingPage[MultipartUploadHandle]:
        """分页列出未完成的分片上传"""

    @abstractmethod
    def delete_object(self, key: str) -> None:
        """删除对象"""

    @abstractmethod
    def presigned_url(self, key: str, ttl_seconds: int = 3600) -> str:
        """本地计算 GET 预签名 URL，不发起网络请求"""

    @abstractmethod
    def ping(self) -> None:
        """校验凭证与存储桶可访问"""

    def close(self) -> None:
        """释放资源"""


def check_credentials(access_key_id: str, access_key_secret: str) -> None:
    """签名前检查凭证格式，避免生成无法使用的 URL"""
    for label, value in (("AccessKey", access_key_id), ("SecretKey", access_key_secret)):
        if not value or not value.isascii() or any(ch.isspace() for ch in value):
            raise SigningError(f"{label} 格式不正确", code="InvalidCredentials")
