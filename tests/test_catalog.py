import pytest

from r2uploader.buckets import BucketRegistry
from r2uploader.catalog import RemoteCatalog
from r2uploader.errors import ValidationError
from r2uploader.models import Bucket, ListingPage

from .conftest import FakeStorage


@pytest.fixture
def catalog(buckets, fake):
    for i in range(5):
        fake.objects[f"docs/{i}.txt"] = b"x" * i
    fake.objects["img/a.png"] = b"png"
    return RemoteCatalog(buckets)


def test_paginates_until_not_truncated(catalog):
    first = catalog.list_objects(1, prefix="docs/", page_size=2)
    assert [o.key for o in first.items] == ["docs/0.txt", "docs/1.txt"]
    assert first.is_truncated
    assert first.continuation_token

    second = catalog.list_objects(
        1, prefix="docs/", page_token=first.continuation_token, page_size=2
    )
    third = catalog.list_objects(
        1, prefix="docs/", page_token=second.continuation_token, page_size=2
    )
    assert [o.key for o in third.items] == ["docs/4.txt"]
    assert not third.is_truncated
    assert third.continuation_token is None


@pytest.mark.parametrize("page_size", [0, 1001])
def test_page_size_bounds(catalog, page_size):
    with pytest.raises(ValidationError) as exc:
        catalog.list_objects(1, page_size=page_size)
    assert exc.value.code == "InvalidPageSize"


def test_token_is_scoped_to_prefix(catalog):
    page = catalog.list_objects(1, prefix="docs/", page_size=2)
    with pytest.raises(ValidationError) as exc:
        catalog.list_objects(1, prefix="img/", page_token=page.continuation_token)
    assert exc.value.code == "TokenScopeMismatch"


def test_token_is_scoped_to_bucket(fake, r2_bucket):
    other = Bucket(
        id=2, bucket_name="other", access_key="ak", secret_key="sk", account_id="abc123"
    )
    adapters = {1: fake, 2: FakeStorage(bucket="other")}
    registry = BucketRegistry(
        [r2_bucket, other], adapter_factory=lambda b, **kw: adapters[b.id]
    )
    for i in range(3):
        fake.objects[f"k{i}"] = b""
    catalog = RemoteCatalog(registry)

    page = catalog.list_objects(1, page_size=1)
    with pytest.raises(ValidationError):
        catalog.list_objects(2, page_token=page.continuation_token, page_size=1)


def test_garbage_token_rejected(catalog):
    with pytest.raises(ValidationError) as exc:
        catalog.list_objects(1, page_token="%%%%")
    assert exc.value.code == "InvalidToken"


def test_multipart_uploads_listing_and_abort(catalog, fake):
    first = fake.initiate_multipart("big/a.bin")
    fake.initiate_multipart("big/b.bin")

    page = catalog.list_multipart_uploads(1, page_size=1)
    assert [u.key for u in page.items] == ["big/a.bin"]
    rest = catalog.list_multipart_uploads(1, page_token=page.continuation_token)
    assert [u.key for u in rest.items] == ["big/b.bin"]
    assert rest.continuation_token is None

    catalog.abort_multipart(1, "big/a.bin", first)
    assert fake.aborted == [("big/a.bin", first)]
    assert [u.key for u in catalog.list_multipart_uploads(1).items] == ["big/b.bin"]


def test_object_token_not_accepted_for_uploads(catalog):
    page = catalog.list_objects(1, page_size=1)
    with pytest.raises(ValidationError):
        catalog.list_multipart_uploads(1, page_token=page.continuation_token)


def test_delete_object(catalog, fake):
    catalog.delete_object(1, "img/a.png")
    assert "img/a.png" not in fake.objects
    with pytest.raises(ValidationError):
        catalog.delete_object(1, "")


def test_listing_page_token_follows_truncation():
    page = ListingPage(items=[1], is_truncated=False, continuation_token="x")
    assert page.continuation_token is None
    assert page.key_count == 1
    with pytest.raises(ValidationError):
        ListingPage(items=[1], is_truncated=True)
