"""统一存储入口"""

from .base import StorageProvider
from .oss import OSSStorage
from .resolver import (
    classify,
    compose_s3_api_url,
    extract_oss_region,
    parse_s3_api_url,
    resolve,
)
from .s3 import R2Storage, S3Storage

__all__ = [
    "OSSStorage",
    "R2Storage",
    "S3Storage",
    "StorageProvider",
    "classify",
    "compose_s3_api_url",
    "extract_oss_region",
    "parse_s3_api_url",
    "resolve",
]
