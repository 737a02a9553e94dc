import threading
import time
from collections import defaultdict

import pytest

from r2uploader.buckets import BucketRegistry
from r2uploader.models import (
    Bucket,
    CompletedPart,
    ListingPage,
    MultipartUploadHandle,
    RemoteObject,
)
from r2uploader.settings import MiB, TransferSettings
from r2uploader.storage.base import StorageProvider, ensure_ascending
from r2uploader.transfer import TransferEngine


class FakeStorage(StorageProvider):
    """内存存储，记录调用并支持按分片注入失败"""

    def __init__(self, *, bucket: str = "mybucket", delay: float = 0.0) -> None:
        self.bucket = bucket
        self.delay = delay
        self.objects: dict[str, bytes] = {}
        self.uploads: dict[str, dict] = {}
        self.completed: dict[str, list[int]] = {}
        self.aborted: list[tuple[str, str]] = []
        self.calls: list[tuple] = []
        self.part_failures: dict[int, list[Exception]] = defaultdict(list)
        self.put_failures: list[Exception] = []
        self.on_part = None
        self.on_put = None
        self.closed = False
        self.max_active = 0
        self._active = 0
        self._lock = threading.Lock()
        self._ids = 0

    @property
    def name(self) -> str:
        return "fake"

    def _enter(self) -> None:
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)

    def _leave(self) -> None:
        with self._lock:
            self._active -= 1

    def part_calls(self, part_number: int) -> int:
        return sum(
            1 for c in self.calls if c[0] == "upload_part" and c[3] == part_number
        )

    def put_object(self, key, data, *, content_type=None):
        self._enter()
        try:
            with self._lock:
                self.calls.append(("put_object", key))
                failure = self.put_failures.pop(0) if self.put_failures else None
            if self.on_put:
                self.on_put(key)
            if self.delay:
                time.sleep(self.delay)
            if failure:
                raise failure
            with self._lock:
                self.objects[key] = bytes(data)
        finally:
            self._leave()

    def initiate_multipart(self, key, *, content_type=None):
        with self._lock:
            self._ids += 1
            upload_id = f"upload-{self._ids}"
            self.calls.append(("initiate_multipart", key))
            self.uploads[upload_id] = {"key": key, "parts": {}}
        return upload_id

    def upload_part(self, key, upload_id, part_number, data):
        self._enter()
        try:
            with self._lock:
                self.calls.append(("upload_part", key, upload_id, part_number))
                failures = self.part_failures.get(part_number)
                failure = failures.pop(0) if failures else None
            if self.delay:
                time.sleep(self.delay)
            if failure:
                raise failure
            if self.on_part:
                self.on_part(part_number)
            with self._lock:
                self.uploads[upload_id]["parts"][part_number] = bytes(data)
                self.calls.append(("part_done", key, upload_id, part_number))
            return CompletedPart(
                part_number=part_number, etag=f'"etag-{part_number}"', size=len(data)
            )
        finally:
            self._leave()

    def complete_multipart(self, key, upload_id, parts):
        ordered = ensure_ascending(parts)
        with self._lock:
            self.calls.append(("complete_multipart", key, upload_id))
            upload = self.uploads.pop(upload_id)
            self.completed[key] = [p.part_number for p in ordered]
            self.objects[key] = b"".join(
                upload["parts"][p.part_number] for p in ordered
            )

    def abort_multipart(self, key, upload_id):
        with self._lock:
            self.calls.append(("abort_multipart", key, upload_id))
            self.aborted.append((key, upload_id))
            self.uploads.pop(upload_id, None)

    def list_objects(self, prefix="", continuation_token=None, page_size=50):
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        start = int(continuation_token) if continuation_token else 0
        end = start + page_size
        truncated = end < len(keys)
        return ListingPage(
            items=[
                RemoteObject(key=k, size=len(self.objects[k]), last_modified=0, etag="")
                for k in keys[start:end]
            ],
            is_truncated=truncated,
            continuation_token=str(end) if truncated else None,
        )

    def list_multipart_uploads(self, continuation_token=None, page_size=1000):
        handles = sorted(
            (u["key"], upload_id) for upload_id, u in self.uploads.items()
        )
        start = int(continuation_token) if continuation_token else 0
        end = start + page_size
        truncated = end < len(handles)
        return ListingPage(
            items=[
                MultipartUploadHandle(key=k, upload_id=u, initiated=0)
                for k, u in handles[start:end]
            ],
            is_truncated=truncated,
            continuation_token=str(end) if truncated else None,
        )

    def delete_object(self, key):
        with self._lock:
            self.calls.append(("delete_object", key))
            self.objects.pop(key, None)

    def presigned_url(self, key, ttl_seconds=3600):
        return f"https://fake.example.com/{self.bucket}/{key}?ttl={ttl_seconds}"

    def ping(self):
        pass

    def close(self):
        self.closed = True


@pytest.fixture
def fake():
    return FakeStorage()


@pytest.fixture
def r2_bucket():
    return Bucket(
        id=1,
        bucket_name="mybucket",
        access_key="AKIDEXAMPLE",
        secret_key="secretexample",
        account_id="abc123",
    )


@pytest.fixture
def buckets(fake, r2_bucket):
    return BucketRegistry([r2_bucket], adapter_factory=lambda bucket, **kw: fake)


@pytest.fixture
def settings():
    return TransferSettings(
        multipart_threshold=8 * MiB,
        part_size=5 * MiB,
        part_concurrency=4,
        max_active_uploads=8,
        max_attempts=4,
        retry_base_delay=0,
    )


@pytest.fixture
def engine(buckets, settings):
    engine = TransferEngine(buckets, settings=settings)
    yield engine
    engine.shutdown(cancel=True)


@pytest.fixture
def big_file(tmp_path):
    """20 MiB 文件，按 5 MiB 切成 4 片"""
    path = tmp_path / "big.bin"
    path.write_bytes(bytes(range(256)) * (20 * MiB // 256))
    return path
