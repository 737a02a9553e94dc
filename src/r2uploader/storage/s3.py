"""S3 兼容存储（Cloudflare R2 / 通用 S3）"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any, BinaryIO

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    HTTPClientError,
    ParamValidationError,
)
from botocore.exceptions import ConnectionError as BotoConnectionError

from ..errors import (
    ProviderError,
    SigningError,
    TransientNetworkError,
    ValidationError,
)
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

# 视为可重试的服务端错误码
_TRANSIENT_CODES = frozenset(
    {
        "InternalError",
        "RequestTimeout",
        "ServiceUnavailable",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "TooManyRequests",
    }
)

# 预签名 URL 最长有效期（7 天）
MAX_PRESIGN_TTL = 7 * 24 * 3600


def _epoch(value: datetime | None) -> int:
    return int(value.timestamp()) if value else 0


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    """botocore 异常 → 引擎错误分类"""
    try:
        yield
    except ClientError as e:
        error = e.response.get("Error", {})
        code = error.get("Code") or "Unknown"
        status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = f"{action} 失败: {error.get('Message') or code}"
        if code in _TRANSIENT_CODES or (status is not None and status >= 500):
            raise TransientNetworkError(message, code=code) from e
        raise ProviderError(message, code=code, status=status) from e
    except (BotoConnectionError, HTTPClientError) as e:
        raise TransientNetworkError(
            f"{action} 网络错误: {e}", code=e.__class__.__name__
        ) from e
    except ParamValidationError as e:
        raise ValidationError(f"{action} 参数错误: {e}") from e
    except BotoCoreError as e:
        raise ProviderError(f"{action} 失败: {e}", code=e.__class__.__name__) from e


class S3CompatibleStorage(StorageProvider):
    """基于 boto3 的 S3 协议实现"""

    provider_name = "s3"

    def __init__(
        self,
        *,
        access_key_id: str,
        access_key_secret: str,
        endpoint: str,
        bucket: str,
        region: str = "us-east-1",
        settings: TransferSettings | None = None,
        proxies: dict[str, str] | None = None,
    ):
        settings = settings or TransferSettings()
        self.bucket = bucket
        self.endpoint = endpoint.rstrip("/")
        self.region = region
        self._access_key_id = access_key_id
        self._access_key_secret = access_key_secret
        self.s3 = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=access_key_secret,
            region_name=region,
            config=Config(
                signature_version="s3v4",
                connect_timeout=settings.connect_timeout,
                read_timeout=settings.read_timeout,
                # 重试由传输引擎按分片处理
                retries={"max_attempts": 1, "mode": "standard"},
                # R2 不支持 SDK 默认附加的 CRC 校验头
                request_checksum_calculation="when_required",
                response_checksum_validation="when_required",
                proxies=proxies,
            ),
        )
        logger.info(
            "创建 %s 客户端: endpoint=%s, bucket=%s", self.name, self.endpoint, bucket
        )

    @property
    def name(self) -> str:
        return self.provider_name

    def put_object(
        self,
        key: str,
        data: bytes | BinaryIO,
        *,
        content_type: str | None = None,
    ) -> None:
        with _translate_errors("上传对象"):
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or guess_content_type(key),
            )
        logger.info("%s 上传完成: %s", self.name, key)

    def initiate_multipart(self, key: str, *, content_type: str | None = None) -> str:
        with _translate_errors("创建分片上传"):
            resp = self.s3.create_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                ContentType=content_type or guess_content_type(key),
            )
        upload_id = resp.get("UploadId")
        if not upload_id:
            raise ProviderError("创建分片上传未返回 UploadId", code="MissingUploadId")
        return upload_id

    def upload_part(
        self, key: str, upload_id: str, part_number: int, data: bytes
    ) -> CompletedPart:
        with _translate_errors(f"上传分片 {part_number}"):
            resp = self.s3.upload_part(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data,
            )
        etag = resp.get("ETag")
        if not etag:
            raise ProviderError(f"分片 {part_number} 未返回 ETag", code="MissingETag")
        return CompletedPart(part_number=part_number, etag=etag, size=len(data))

    def complete_multipart(
        self, key: str, upload_id: str, parts: Sequence[CompletedPart]
    ) -> None:
        ordered = ensure_ascending(parts)
        with _translate_errors("合并分片"):
            self.s3.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    "Parts": [
                        {"ETag": p.etag, "PartNumber": p.part_number} for p in ordered
                    ]
                },
            )
        logger.info("%s 分片合并完成: %s (%d parts)", self.name, key, len(ordered))

    def abort_multipart(self, key: str, upload_id: str) -> None:
        with _translate_errors("取消分片上传"):
            self.s3.abort_multipart_upload(
                Bucket=self.bucket, Key=key, UploadId=upload_id
            )
        logger.info("%s 已取消分片上传: %s (%s)", self.name, key, upload_id)

    def list_objects(
        self,
        prefix: str = "",
        continuation_token: str | None = None,
        page_size: int = 50,
    ) -> ListingPage[RemoteObject]:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "MaxKeys": min(page_size, MAX_PAGE_SIZE),
        }
        if prefix:
            kwargs["Prefix"] = prefix
        if continuation_token:
            kwargs["ContinuationToken"] = continuation_token
        with _translate_errors("列出对象"):
            resp = self.s3.list_objects_v2(**kwargs)

        objects = [
            RemoteObject(
                key=obj.get("Key", ""),
                size=obj.get("Size", 0),
                last_modified=_epoch(obj.get("LastModified")),
                etag=obj.get("ETag", ""),
            )
            for obj in resp.get("Contents", [])
        ]
        truncated = bool(resp.get("IsTruncated"))
        return ListingPage(
            items=objects,
            is_truncated=truncated,
            continuation_token=resp.get("NextContinuationToken") if truncated else None,
            key_count=resp.get("KeyCount", len(objects)),
        )

    def list_multipart_uploads(
        self,
        continuation_token: str | None = None,
        page_size: int = MAX_PAGE_SIZE,
    ) -> ListingPage[MultipartUploadHandle]:
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "MaxUploads": min(page_size, MAX_PAGE_SIZE),
        }
        if continuation_token:
            markers = decode_token(continuation_token)
            kwargs["KeyMarker"] = markers.get("key", "")
            if markers.get("upload_id"):
                kwargs["UploadIdMarker"] = markers["upload_id"]
        with _translate_errors("列出分片上传"):
            resp = self.s3.list_multipart_uploads(**kwargs)

        uploads = [
            MultipartUploadHandle(
                key=u.get("Key", ""),
                upload_id=u.get("UploadId", ""),
                initiated=_epoch(u.get("Initiated")),
            )
            for u in resp.get("Uploads", [])
        ]
        truncated = bool(resp.get("IsTruncated"))
        token = None
        if truncated:
            token = encode_token(
                {
                    "key": resp.get("NextKeyMarker", ""),
                    "upload_id": resp.get("NextUploadIdMarker", ""),
                }
            )
        return ListingPage(items=uploads, is_truncated=truncated, continuation_token=token)

    def delete_object(self, key: str) -> None:
        with _translate_errors("删除对象"):
            self.s3.delete_object(Bucket=self.bucket, Key=key)
        logger.info("%s 已删除: %s", self.name, key)

    def presigned_url(self, key: str, ttl_seconds: int = 3600) -> str:
        if not 1 <= ttl_seconds <= MAX_PRESIGN_TTL:
            raise ValidationError(f"预签名有效期超出范围: {ttl_seconds}")
        check_credentials(self._access_key_id, self._access_key_secret)
        try:
            return self.s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ValueError, TypeError) as e:
            raise SigningError(f"生成预签名 URL 失败: {e}") from e

    def ping(self) -> None:
        with _translate_errors("访问存储桶"):
            self.s3.head_bucket(Bucket=self.bucket)

    def close(self) -> None:
        self.s3.close()


class R2Storage(S3CompatibleStorage):
    """Cloudflare R2 (S3 兼容)"""

    provider_name = "r2"

    def __init__(
        self,
        *,
        access_key_id: str,
        access_key_secret: str,
        account_id: str,
        bucket: str,
        endpoint: str = "",
        settings: TransferSettings | None = None,
        proxies: dict[str, str] | None = None,
    ):
        self.account_id = account_id
        super().__init__(
            access_key_id=access_key_id,
            access_key_secret=access_key_secret,
            endpoint=endpoint or f"https://{account_id}.r2.cloudflarestorage.com",
            bucket=bucket,
            region="auto",
            settings=settings,
            proxies=proxies,
        )


class S3Storage(S3CompatibleStorage):
    """通用 S3 兼容服务（需显式 endpoint）"""

    provider_name = "s3"

