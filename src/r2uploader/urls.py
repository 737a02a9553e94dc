"""对象访问链接

配置了自定义域名时直接拼接公开链接（假定存储桶公开读），
否则使用 Provider 的预签名 URL。只取决于存储桶配置。
"""

import logging
from urllib.parse import quote

from .buckets import BucketRegistry
from .models import Bucket

logger = logging.getLogger(__name__)


def public_url(bucket: Bucket, key: str) -> str | None:
    """自定义域名 + key，未配置域名时返回 None"""
    domain = (bucket.custom_domain or "").strip().rstrip("/")
    if not domain:
        return None
    if "://" not in domain:
        domain = f"https://{domain}"
    return f"{domain}/{quote(key.lstrip('/'), safe='/')}"


class URLService:
    """按存储桶配置生成分享链接"""

    def __init__(self, buckets: BucketRegistry, *, default_ttl: int = 3600):
        self._buckets = buckets
        self._default_ttl = default_ttl

    def url_for(
        self, bucket_id: int | str, key: str, *, ttl_seconds: int | None = None
    ) -> str:
        bucket = self._buckets.get(bucket_id)
        url = public_url(bucket, key)
        if url is not None:
            return url
        storage = self._buckets.adapter_for(bucket_id)
        return storage.presigned_url(key, ttl_seconds or self._default_ttl)

    def public_url(self, bucket_id: int | str, key: str) -> str | None:
        return public_url(self._buckets.get(bucket_id), key)
