"""阿里云 OSS 存储（V4 签名）"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import BinaryIO

import oss2
from oss2.exceptions import OssError, RequestError
from oss2.models import PartInfo

from ..errors import ProviderError, SigningError, TransientNetworkError, ValidationError
from ..models import CompletedPart, ListingPage, MultipartUploadHandle, RemoteObject
from ..settings import TransferSettings
from ._tokens import decode_token, encode_token
from .base import (
    MAX_PAGE_SIZE,
    StorageProvider,
    check_credentials,
    ensure_ascending,
    guess_content_type,
)

logger = logging.getLogger(__name__)

_TRANSIENT_CODES = frozenset(
    {"InternalError", "RequestTimeout", "ServiceUnavailable", "TooManyRequests"}
)

# OSS V4 预签名最长 7 天
MAX_PRESIGN_TTL = 7 * 24 * 3600


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    """oss2 异常 → 引擎错误分类"""
    try:
        yield
    except RequestError as e:
        raise TransientNetworkError(f"{action} 网络错误: {e}", code="RequestError") from e
    except OssError as e:
        code = e.code or "Unknown"
        message = f"{action} 失败: {e.message or code}"
        if code in _TRANSIENT_CODES or e.status >= 500:
            raise TransientNetworkError(message, code=code) from e
        raise ProviderError(message, code=code, status=e.status) from e


class OSSStorage(StorageProvider):
    """阿里云 OSS，开启 V4 签名"""

    def __init__(
        self,
        *,
        access_key_id: str,
        access_key_secret: str,
        endpoint: str,
        bucket: str,
        region: str,
        settings: TransferSettings | None = None,
        proxies: dict[str, str] | None = None,
    ):
        settings = settings or TransferSettings()
        self.bucket = bucket
        self.endpoint = endpoint.rstrip("/")
        self.region = region
        self._access_key_id = access_key_id
        self._access_key_secret = access_key_secret
        self.oss = oss2.Bucket(
            oss2.AuthV4(access_key_id, access_key_secret),
            self.endpoint,
            bucket,
            # oss2 原样传给 requests，(connect, read) 二元组分别生效
            connect_timeout=(settings.connect_timeout, settings.read_timeout),
            proxies=proxies,
            region=region,
        )
        logger.info(
            "创建 OSS 客户端: endpoint=%s, region=%s, bucket=%s",
            self.endpoint,
            region,
            bucket,
        )

    @property
    def name(self) -> str:
        return "oss"

    def put_object(
        self,
        key: str,
        data: bytes | BinaryIO,
        *,
        content_type: str | None = None,
    ) -> None:
        with _translate_errors("上传对象"):
            self.oss.put_object(
                key,
                data,
                headers={"Content-Type": content_type or guess_content_type(key)},
            )
        logger.info("OSS 上传完成: %s", key)

    def initiate_multipart(self, key: str, *, content_type: str | None = None) -> str:
        with _translate_errors("创建分片上传"):
            result = self.oss.init_multipart_upload(
                key,
                headers={"Content-Type": content_type or guess_content_type(key)},
            )
        return result.upload_id

    def upload_part(
        self, key: str, upload_id: str, part_number: int, data: bytes
    ) -> CompletedPart:
        with _translate_errors(f"上传分片 {part_number}"):
            result = self.oss.upload_part(key, upload_id, part_number, data)
        return CompletedPart(part_number=part_number, etag=result.etag, size=len(data))

    def complete_multipart(
        self, key: str, upload_id: str, parts: Sequence[CompletedPart]
    ) -> None:
        ordered = ensure_ascending(parts)
        with _translate_errors("合并分片"):
            self.oss.complete_multipart_upload(
                key,
                upload_id,
                [PartInfo(p.part_number, p.etag) for p in ordered],
            )
        logger.info("OSS 分片合并完成: %s (%d parts)", key, len(ordered))

    def abort_multipart(self, key: str, upload_id: str) -> None:
        with _translate_errors("取消分片上传"):
            self.oss.abort_multipart_upload(key, upload_id)
        logger.info("OSS 已取消分片上传: %s (%s)", key, upload_id)

    def list_objects(
        self,
        prefix: str = "",
        continuation_token: str | None = None,
        page_size: int = 50,
    ) -> ListingPage[RemoteObject]:
        with _translate_errors("列出对象"):
            result = self.oss.list_objects_v2(
                prefix=prefix,
                continuation_token=continuation_token or "",
                max_keys=min(page_size, MAX_PAGE_SIZE),
            )
        objects = [
            RemoteObject(
                key=obj.key,
                size=obj.size,
                last_modified=int(obj.last_modified or 0),
                etag=obj.etag,
            )
            for obj in result.object_list
        ]
        truncated = bool(result.is_truncated)
        return ListingPage(
            items=objects,
            is_truncated=truncated,
            continuation_token=result.next_continuation_token if truncated else None,
        )

    def list_multipart_uploads(
        self,
        continuation_token: str | None = None,
        page_size: int = MAX_PAGE_SIZE,
    ) -> ListingPage[MultipartUploadHandle]:
        markers = decode_token(continuation_token) if continuation_token else {}
        with _translate_errors("列出分片上传"):
            result = self.oss.list_multipart_uploads(
                key_marker=markers.get("key", ""),
                upload_id_marker=markers.get("upload_id", ""),
                max_uploads=min(page_size, MAX_PAGE_SIZE),
            )
        uploads = [
            MultipartUploadHandle(
                key=u.key,
                upload_id=u.upload_id,
                initiated=int(u.initiation_date or 0),
            )
            for u in result.upload_list
        ]
        truncated = bool(result.is_truncated)
        token = None
        if truncated:
            token = encode_token(
                {"key": result.next_key_marker, "upload_id": result.next_upload_id_marker}
            )
        return ListingPage(items=uploads, is_truncated=truncated, continuation_token=token)

    def delete_object(self, key: str) -> None:
        with _translate_errors("删除对象"):
            self.oss.delete_object(key)
        logger.info("OSS 已删除: %s", key)

    def presigned_url(self, key: str, ttl_seconds: int = 3600) -> str:
        if not 1 <= ttl_seconds <= MAX_PRESIGN_TTL:
            raise ValidationError(f"预签名有效期超出范围: {ttl_seconds}")
        check_credentials(self._access_key_id, self._access_key_secret)
        try:
            return self.oss.sign_url("GET", key, ttl_seconds, slash_safe=True)
        except (OssError, ValueError, TypeError) as e:
            raise SigningError(f"生成 OSS 预签名 URL 失败: {e}") from e

    def ping(self) -> None:
        with _translate_errors("访问存储桶"):
            self.oss.get_bucket_info()
