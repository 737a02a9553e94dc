"""存储桶配置 → Provider 实例

endpoint / region / account 的推导全部是纯函数，签名前不需要任何探测请求。
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlparse

from ..errors import ConfigError
from ..models import Bucket, ProviderKind
from ..settings import TransferSettings
from .base import StorageProvider

logger = logging.getLogger(__name__)

R2_HOST_SUFFIX = ".r2.cloudflarestorage.com"
OSS_HOST_SUFFIX = ".aliyuncs.com"

_AWS_REGION_HOST = re.compile(r"^s3[.-]([a-z0-9-]+)\.amazonaws\.com$")


@dataclass(frozen=True)
class S3ApiUrl:
    """S3 API 地址，如 https://<account>.r2.cloudflarestorage.com/<bucket>"""

    scheme: str
    host: str
    bucket_name: str

    @property
    def account_id(self) -> str:
        return self.host.split(".", 1)[0]

    @property
    def endpoint(self) -> str:
        return f"{self.scheme}://{self.host}"

    @property
    def url(self) -> str:
        return f"{self.endpoint}/{self.bucket_name}"


def parse_s3_api_url(url: str) -> S3ApiUrl:
    """解析 S3 API 地址，提取 account id（首个域名标签）与 bucket 名（首段路径）"""
    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or "." not in host:
        raise ConfigError(f"无法解析 S3 API 地址: {url}", code="MissingField")
    if parsed.port:
        host = f"{host}:{parsed.port}"
    bucket_name = parsed.path.strip("/").split("/", 1)[0]
    if not bucket_name:
        raise ConfigError(f"S3 API 地址缺少 bucket 名: {url}", code="MissingField")
    return S3ApiUrl(scheme=parsed.scheme, host=host, bucket_name=bucket_name)


def compose_s3_api_url(account_id: str, bucket_name: str) -> str:
    """parse_s3_api_url 的逆运算（R2）"""
    return f"https://{account_id}{R2_HOST_SUFFIX}/{bucket_name}"


def _host_of(endpoint: str) -> str:
    if "://" not in endpoint:
        endpoint = f"https://{endpoint}"
    return (urlparse(endpoint).hostname or "").lower()


def extract_oss_region(endpoint: str) -> str:
    """从 OSS endpoint 提取 region，如 https://oss-cn-shanghai.aliyuncs.com → oss-cn-shanghai"""
    host = _host_of(endpoint)
    label = host.split(".", 1)[0]
    if not host.endswith(OSS_HOST_SUFFIX) or not label.startswith("oss-"):
        raise ConfigError(
            f"无法从 endpoint 提取 OSS region: {endpoint}", code="MissingField"
        )
    return label.removesuffix("-internal")


def oss_signing_region(endpoint: str) -> str:
    """V4 签名使用的 region，去掉 oss- 前缀：cn-shanghai"""
    return extract_oss_region(endpoint).removeprefix("oss-")


def classify(bucket: Bucket) -> ProviderKind:
    """按配置字段判定服务类型，显式 kind 优先"""
    if bucket.kind:
        try:
            return ProviderKind(bucket.kind)
        except ValueError as e:
            raise ConfigError(
                f"未知的服务类型: {bucket.kind}", code="UnrecognizedProvider"
            ) from e
    endpoint_host = _host_of(bucket.endpoint) if bucket.endpoint else ""
    api_host = _host_of(bucket.s3_api) if bucket.s3_api else ""
    if endpoint_host.endswith(OSS_HOST_SUFFIX):
        return ProviderKind.OSS
    if any(h.endswith(R2_HOST_SUFFIX) for h in (endpoint_host, api_host) if h):
        return ProviderKind.R2
    if endpoint_host or api_host:
        return ProviderKind.S3
    if bucket.account_id:
        return ProviderKind.R2
    raise ConfigError(
        f"无法识别存储桶 {bucket.id} 的服务类型", code="UnrecognizedProvider"
    )


def _require(bucket: Bucket, **values: str) -> None:
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigError(
            f"存储桶 {bucket.id} 缺少字段: {', '.join(missing)}",
            code="MissingField",
            details={"missing": missing},
        )


def _build_r2(bucket: Bucket, settings: TransferSettings, proxies) -> StorageProvider:
    from .s3 import R2Storage

    api = parse_s3_api_url(bucket.s3_api) if bucket.s3_api else None
    account_id = bucket.account_id or (api.account_id if api else "")
    bucket_name = bucket.bucket_name or (api.bucket_name if api else "")
    endpoint = bucket.endpoint or (api.endpoint if api else "")
    _require(bucket, bucket_name=bucket_name, account_id=account_id or endpoint)
    return R2Storage(
        access_key_id=bucket.access_key,
        access_key_secret=bucket.secret_key,
        account_id=account_id,
        bucket=bucket_name,
        endpoint=endpoint,
        settings=settings,
        proxies=proxies,
    )


def _build_s3(bucket: Bucket, settings: TransferSettings, proxies) -> StorageProvider:
    from .s3 import S3Storage

    api = parse_s3_api_url(bucket.s3_api) if bucket.s3_api else None
    endpoint = bucket.endpoint or (api.endpoint if api else "")
    bucket_name = bucket.bucket_name or (api.bucket_name if api else "")
    _require(bucket, endpoint=endpoint, bucket_name=bucket_name)
    region = bucket.region
    if not region:
        match = _AWS_REGION_HOST.match(_host_of(endpoint))
        region = match.group(1) if match else "us-east-1"
    return S3Storage(
        access_key_id=bucket.access_key,
        access_key_secret=bucket.secret_key,
        endpoint=endpoint,
        bucket=bucket_name,
        region=region,
        settings=settings,
        proxies=proxies,
    )


def _build_oss(bucket: Bucket, settings: TransferSettings, proxies) -> StorageProvider:
    from .oss import OSSStorage

    _require(bucket, endpoint=bucket.endpoint, bucket_name=bucket.bucket_name)
    endpoint = bucket.endpoint if "://" in bucket.endpoint else f"https://{bucket.endpoint}"
    return OSSStorage(
        access_key_id=bucket.access_key,
        access_key_secret=bucket.secret_key,
        endpoint=endpoint,
        bucket=bucket.bucket_name,
        region=oss_signing_region(endpoint),
        settings=settings,
        proxies=proxies,
    )


_PROVIDER_FACTORIES: dict[ProviderKind, Callable[..., StorageProvider]] = {
    ProviderKind.R2: _build_r2,
    ProviderKind.S3: _build_s3,
    ProviderKind.OSS: _build_oss,
}


def resolve(
    bucket: Bucket,
    *,
    settings: TransferSettings | None = None,
    proxies: dict[str, str] | None = None,
) -> StorageProvider:
    """校验配置并创建对应 Provider，配置不完整时抛 ConfigError"""
    kind = classify(bucket)
    _require(bucket, access_key=bucket.access_key, secret_key=bucket.secret_key)
    factory = _PROVIDER_FACTORIES[kind]
    provider = factory(bucket, settings or TransferSettings(), proxies)
    logger.debug("存储桶 %s 解析为 %s", bucket.id, provider.name)
    return provider
