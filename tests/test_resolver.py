import pytest

from r2uploader.errors import ConfigError
from r2uploader.models import Bucket, ProviderKind
from r2uploader.storage import (
    OSSStorage,
    R2Storage,
    S3Storage,
    classify,
    compose_s3_api_url,
    extract_oss_region,
    parse_s3_api_url,
    resolve,
)
from r2uploader.storage.resolver import oss_signing_region


def _bucket(**kwargs):
    values = {"id": 1, "bucket_name": "", "access_key": "ak", "secret_key": "sk"}
    values.update(kwargs)
    return Bucket(**values)


def test_parse_s3_api_url():
    api = parse_s3_api_url("https://abc123.r2.cloudflarestorage.com/mybucket")
    assert api.account_id == "abc123"
    assert api.bucket_name == "mybucket"
    assert api.endpoint == "https://abc123.r2.cloudflarestorage.com"
    assert compose_s3_api_url(api.account_id, api.bucket_name) == api.url


@pytest.mark.parametrize(
    "url", ["", "abc123.r2.cloudflarestorage.com/b", "https://abc123.r2.cloudflarestorage.com/"]
)
def test_parse_s3_api_url_rejects_incomplete(url):
    with pytest.raises(ConfigError) as exc:
        parse_s3_api_url(url)
    assert exc.value.code == "MissingField"


@pytest.mark.parametrize(
    "endpoint",
    [
        "https://oss-cn-shanghai.aliyuncs.com",
        "oss-cn-shanghai.aliyuncs.com",
        "https://oss-cn-shanghai-internal.aliyuncs.com/",
    ],
)
def test_extract_oss_region(endpoint):
    assert extract_oss_region(endpoint) == "oss-cn-shanghai"
    assert oss_signing_region(endpoint) == "cn-shanghai"


def test_extract_oss_region_rejects_foreign_host():
    with pytest.raises(ConfigError):
        extract_oss_region("https://s3.example.com")


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"kind": ProviderKind.OSS, "endpoint": "https://s3.example.com"}, ProviderKind.OSS),
        ({"endpoint": "https://oss-cn-hangzhou.aliyuncs.com"}, ProviderKind.OSS),
        ({"s3_api": "https://abc.r2.cloudflarestorage.com/b"}, ProviderKind.R2),
        ({"account_id": "abc"}, ProviderKind.R2),
        ({"endpoint": "https://s3.us-west-2.amazonaws.com"}, ProviderKind.S3),
    ],
)
def test_classify(fields, expected):
    assert classify(_bucket(**fields)) == expected


def test_classify_unrecognized():
    with pytest.raises(ConfigError) as exc:
        classify(_bucket())
    assert exc.value.code == "UnrecognizedProvider"


def test_resolve_r2_from_api_url():
    storage = resolve(
        _bucket(s3_api="https://abc123.r2.cloudflarestorage.com/mybucket")
    )
    assert isinstance(storage, R2Storage)
    assert storage.name == "r2"
    assert storage.bucket == "mybucket"
    assert storage.account_id == "abc123"
    assert storage.endpoint == "https://abc123.r2.cloudflarestorage.com"


def test_resolve_r2_from_account_id():
    storage = resolve(_bucket(bucket_name="media", account_id="abc123"))
    assert storage.endpoint == "https://abc123.r2.cloudflarestorage.com"
    assert storage.region == "auto"


def test_resolve_s3_region_from_host():
    storage = resolve(
        _bucket(bucket_name="b", endpoint="https://s3.eu-west-1.amazonaws.com")
    )
    assert isinstance(storage, S3Storage)
    assert storage.region == "eu-west-1"


def test_resolve_oss():
    storage = resolve(
        _bucket(bucket_name="mybucket", endpoint="oss-cn-shanghai.aliyuncs.com")
    )
    assert isinstance(storage, OSSStorage)
    assert storage.endpoint == "https://oss-cn-shanghai.aliyuncs.com"
    assert storage.region == "cn-shanghai"


def test_resolve_oss_kind_with_foreign_endpoint_fails():
    with pytest.raises(ConfigError):
        resolve(
            _bucket(
                kind=ProviderKind.OSS,
                bucket_name="b",
                endpoint="https://s3.example.com",
            )
        )


def test_resolve_requires_credentials():
    with pytest.raises(ConfigError) as exc:
        resolve(_bucket(secret_key="", bucket_name="b", account_id="abc"))
    assert exc.value.code == "MissingField"
    assert exc.value.details == {"missing": ["secret_key"]}


def test_resolve_s3_requires_bucket_name():
    with pytest.raises(ConfigError) as exc:
        resolve(_bucket(endpoint="https://minio.local:9000"))
    assert exc.value.details == {"missing": ["bucket_name"]}


def test_bucket_from_dict_camel_case():
    bucket = Bucket.from_dict(
        {
            "id": 3,
            "type": "oss",
            "bucketName": "b",
            "accessKey": "ak",
            "secretKey": "sk",
            "endpoint": "https://oss-cn-beijing.aliyuncs.com",
            "customDomain": "cdn.example.com",
        }
    )
    assert bucket.kind is ProviderKind.OSS
    assert bucket.custom_domain == "cdn.example.com"


def test_bucket_from_dict_rejects_unknown_type():
    with pytest.raises(ConfigError) as exc:
        Bucket.from_dict({"id": 1, "type": "gcs"})
    assert exc.value.code == "UnrecognizedProvider"
