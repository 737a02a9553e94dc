"""远端对象浏览与管理

按页列出对象与未完成的分片上传。对外的翻页 token 绑定签发时的
bucket + prefix，换 bucket 或 prefix 使用会被拒绝；页面不做缓存。
删除与取消分片是显式的破坏性操作，确认交互由调用方负责。
"""

import logging

from .buckets import BucketRegistry
from .errors import ValidationError
from .models import ListingPage, MultipartUploadHandle, RemoteObject
from .storage._tokens import decode_token, encode_token
from .storage.base import MAX_PAGE_SIZE

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


def _check_page_size(page_size: int) -> None:
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError(
            f"page_size 必须在 1..{MAX_PAGE_SIZE} 之间: {page_size}",
            code="InvalidPageSize",
        )


def _wrap_token(
    token: str | None, *, bucket_id: int | str, prefix: str, scope: str
) -> str | None:
    if token is None:
        return None
    return encode_token({"b": str(bucket_id), "p": prefix, "s": scope, "t": token})


def _unwrap_token(
    token: str | None, *, bucket_id: int | str, prefix: str, scope: str
) -> str | None:
    if token is None:
        return None
    payload = decode_token(token)
    if (payload.get("b"), payload.get("p"), payload.get("s")) != (
        str(bucket_id),
        prefix,
        scope,
    ):
        raise ValidationError(
            "翻页 token 不属于当前存储桶或前缀", code="TokenScopeMismatch"
        )
    raw = payload.get("t")
    if not isinstance(raw, str) or not raw:
        raise ValidationError("分页 token 无效", code="InvalidToken")
    return raw


class RemoteCatalog:
    """存储桶浏览：对象列表、分片上传列表、删除、取消分片"""

    def __init__(self, buckets: BucketRegistry):
        self._buckets = buckets

    def list_objects(
        self,
        bucket_id: int | str,
        prefix: str = "",
        page_token: str | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> ListingPage[RemoteObject]:
        _check_page_size(page_size)
        raw = _unwrap_token(page_token, bucket_id=bucket_id, prefix=prefix, scope="objects")
        storage = self._buckets.adapter_for(bucket_id)
        page = storage.list_objects(prefix, raw, page_size)
        logger.debug(
            "列出对象: bucket=%s, prefix=%r, count=%d, truncated=%s",
            bucket_id,
            prefix,
            len(page.items),
            page.is_truncated,
        )
        return ListingPage(
            items=page.items[:page_size],
            is_truncated=page.is_truncated,
            continuation_token=_wrap_token(
                page.continuation_token,
                bucket_id=bucket_id,
                prefix=prefix,
                scope="objects",
            ),
            key_count=page.key_count,
        )

    def list_multipart_uploads(
        self,
        bucket_id: int | str,
        page_token: str | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> ListingPage[MultipartUploadHandle]:
        _check_page_size(page_size)
        raw = _unwrap_token(page_token, bucket_id=bucket_id, prefix="", scope="uploads")
        storage = self._buckets.adapter_for(bucket_id)
        page = storage.list_multipart_uploads(raw, page_size)
        return ListingPage(
            items=page.items[:page_size],
            is_truncated=page.is_truncated,
            continuation_token=_wrap_token(
                page.continuation_token, bucket_id=bucket_id, prefix="", scope="uploads"
            ),
        )

    def delete_object(self, bucket_id: int | str, key: str) -> None:
        if not key:
            raise ValidationError("删除对象需要 key")
        self._buckets.adapter_for(bucket_id).delete_object(key)
        logger.info("已删除对象: bucket=%s, key=%s", bucket_id, key)

    def abort_multipart(self, bucket_id: int | str, key: str, upload_id: str) -> None:
        if not key or not upload_id:
            raise ValidationError("取消分片上传需要 key 与 upload_id")
        self._buckets.adapter_for(bucket_id).abort_multipart(key, upload_id)
        logger.info(
            "已取消分片上传: bucket=%s, key=%s, upload_id=%s", bucket_id, key, upload_id
        )
