"""R2 Uploader - R2 / S3 / 阿里云 OSS 统一上传引擎"""

from .buckets import BucketRegistry
from .catalog import RemoteCatalog
from .errors import (
    ConfigError,
    ProviderError,
    R2UploaderError,
    SigningError,
    TransientNetworkError,
    ValidationError,
)
from .models import Bucket, ListingPage, ProviderKind, TransferSource
from .settings import AppSettings, TransferSettings
from .transfer import TransferEngine, TransferFilter, TransferRegistry
from .urls import URLService

__all__ = [
    "AppSettings",
    "Bucket",
    "BucketRegistry",
    "ConfigError",
    "ListingPage",
    "ProviderError",
    "ProviderKind",
    "R2UploaderError",
    "RemoteCatalog",
    "SigningError",
    "TransferEngine",
    "TransferFilter",
    "TransferRegistry",
    "TransferSettings",
    "TransferSource",
    "TransientNetworkError",
    "URLService",
    "ValidationError",
]
