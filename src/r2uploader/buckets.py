"""存储桶注册表

持有全部存储桶配置、当前选中的存储桶，并按 bucket id 缓存 Provider 实例。
配置变更时 refresh_signal 自增，观察者据此刷新，而不直接获得写权限。
"""

import logging
import threading
from collections.abc import Callable, Iterable

from .errors import ConfigError
from .models import Bucket
from .settings import AppSettings, TransferSettings
from .storage import StorageProvider, resolve

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., StorageProvider]


class BucketRegistry:
    """存储桶配置与 Provider 缓存

    用法:
        registry = BucketRegistry(buckets, app_settings=AppSettings(default_bucket_id=1))
        storage = registry.adapter_for(1)
    """

    def __init__(
        self,
        buckets: Iterable[Bucket] = (),
        *,
        app_settings: AppSettings | None = None,
        settings: TransferSettings | None = None,
        adapter_factory: AdapterFactory = resolve,
    ):
        self._app_settings = app_settings or AppSettings()
        self._settings = settings or TransferSettings()
        self._adapter_factory = adapter_factory
        self._lock = threading.RLock()
        self._buckets: dict[int | str, Bucket] = {}
        self._adapters: dict[int | str, StorageProvider] = {}
        self._listeners: list[Callable[[int], None]] = []
        self._refresh_signal = 0
        for bucket in buckets:
            self._buckets[bucket.id] = bucket
        self._active_id = self._initial_active_id()

    def _initial_active_id(self) -> int | str | None:
        for candidate in (
            self._app_settings.last_active_bucket_id,
            self._app_settings.default_bucket_id,
        ):
            if candidate is not None and candidate in self._buckets:
                return candidate
        return next(iter(self._buckets), None)

    # ── 查询 ──────────────────────────────────────────────

    @property
    def refresh_signal(self) -> int:
        return self._refresh_signal

    @property
    def default_bucket_id(self) -> int | str | None:
        return self._app_settings.default_bucket_id

    @property
    def active(self) -> Bucket | None:
        with self._lock:
            if self._active_id is None:
                return None
            return self._buckets.get(self._active_id)

    def get(self, bucket_id: int | str) -> Bucket:
        with self._lock:
            bucket = self._buckets.get(bucket_id)
        if bucket is None:
            raise ConfigError(f"存储桶不存在: {bucket_id}", code="BucketNotFound")
        return bucket

    def buckets(self) -> list[Bucket]:
        with self._lock:
            return list(self._buckets.values())

    def adapter_for(self, bucket_id: int | str) -> StorageProvider:
        """返回该存储桶的 Provider，同一 id 复用同一实例"""
        with self._lock:
            adapter = self._adapters.get(bucket_id)
            if adapter is not None:
                return adapter
            bucket = self.get(bucket_id)
            adapter = self._adapter_factory(
                bucket,
                settings=self._settings,
                proxies=self._app_settings.proxies(),
            )
            self._adapters[bucket_id] = adapter
            return adapter

    # ── 变更 ──────────────────────────────────────────────

    def set_active(self, bucket_id: int | str) -> None:
        with self._lock:
            self.get(bucket_id)
            self._active_id = bucket_id

    def add(self, bucket: Bucket) -> None:
        with self._lock:
            if bucket.id in self._buckets:
                raise ConfigError(f"存储桶已存在: {bucket.id}", code="BucketExists")
            self._buckets[bucket.id] = bucket
            if self._active_id is None:
                self._active_id = bucket.id
        self._bump()

    def update(self, bucket: Bucket) -> None:
        """替换配置并使缓存的 Provider 失效"""
        with self._lock:
            self.get(bucket.id)
            self._buckets[bucket.id] = bucket
            self._invalidate(bucket.id)
        self._bump()

    def remove(
        self, bucket_id: int | str, *, active_transfers: Iterable[int | str] = ()
    ) -> None:
        """删除存储桶；active_transfers 为仍在进行中的传输所引用的 bucket id"""
        with self._lock:
            self.get(bucket_id)
            if bucket_id in set(active_transfers):
                raise ConfigError(
                    f"存储桶 {bucket_id} 仍有进行中的传输", code="BucketInUse"
                )
            del self._buckets[bucket_id]
            self._invalidate(bucket_id)
            if self._active_id == bucket_id:
                self._active_id = self._initial_active_id()
        self._bump()

    def subscribe(self, listener: Callable[[int], None]) -> Callable[[], None]:
        """订阅配置变更，回调参数为新的 refresh_signal；返回取消订阅函数"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        with self._lock:
            for bucket_id in list(self._adapters):
                self._invalidate(bucket_id)

    # ── 内部方法 ──────────────────────────────────────────────

    def _invalidate(self, bucket_id: int | str) -> None:
        adapter = self._adapters.pop(bucket_id, None)
        if adapter is not None:
            adapter.close()

    def _bump(self) -> None:
        with self._lock:
            self._refresh_signal += 1
            signal = self._refresh_signal
            listeners = list(self._listeners)
        logger.debug("存储桶列表已变更: refresh_signal=%d", signal)
        for listener in listeners:
            try:
                listener(signal)
            except Exception:
                logger.exception("存储桶变更回调异常")
