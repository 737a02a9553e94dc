"""传输引擎

把上传来源拆成逐文件任务并驱动到终态：小对象单次上传，大对象分片上传。

并发模型:
    - 任务线程池按提交顺序执行任务（FIFO）
    - 分片线程池执行单个分片，每个文件同时在途的分片数不超过 part_concurrency
    - 全局信号量 max_active_uploads 限制所有任务同时进行的分片/对象上传数

用法:
    engine = TransferEngine(buckets, registry)
    ids = engine.submit([TransferSource.from_path("/tmp/a.zip")], bucket_id=1, remote_prefix="backup")
    engine.cancel(ids[0])
"""

import io
import logging
import threading
import uuid
from collections.abc import Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import BinaryIO

from ..buckets import BucketRegistry
from ..errors import R2UploaderError, TransientNetworkError, ValidationError, error_status
from ..models import CompletedPart, TransferSource, TransferTask
from ..settings import TransferSettings
from ..storage import StorageProvider
from ..urls import URLService
from .planner import PartSpec, plan_parts
from .registry import TransferRegistry
from .sources import expand_sources, source_size
from .speed import SpeedMeter
from .status import Cancelled, Success, Uploading

logger = logging.getLogger(__name__)


class _Cancelled(Exception):
    """任务被取消，内部控制流使用"""


class _TaskContext:
    """单个任务的执行期状态"""

    def __init__(self, task: TransferTask) -> None:
        self.task = task
        self.lock = threading.Lock()
        self.stop = threading.Event()
        self.cancelled = False
        self.started = False
        self.upload_id: str | None = None
        self.bytes_uploaded = 0
        self.total_bytes = 0

    def request_cancel(self) -> bool:
        """标记取消；返回任务是否尚未开始"""
        with self.lock:
            self.cancelled = True
            self.stop.set()
            return not self.started

    def start(self) -> bool:
        """开始执行；已取消时返回 False"""
        with self.lock:
            if self.cancelled:
                return False
            self.started = True
            return True

    def check(self) -> None:
        if self.cancelled:
            raise _Cancelled()


class TransferEngine:
    """多文件并发上传引擎"""

    def __init__(
        self,
        buckets: BucketRegistry,
        registry: TransferRegistry | None = None,
        *,
        settings: TransferSettings | None = None,
        url_service: URLService | None = None,
    ):
        self._settings = settings or TransferSettings()
        self._buckets = buckets
        self.registry = registry or TransferRegistry()
        self._urls = url_service or URLService(
            buckets, default_ttl=self._settings.presign_ttl
        )
        workers = self._settings.max_active_uploads
        self._task_pool = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="r2u-task"
        )
        self._part_pool = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="r2u-part"
        )
        self._slots = threading.BoundedSemaphore(workers)
        self._lock = threading.Lock()
        self._contexts: dict[str, _TaskContext] = {}
        self._futures: dict[str, Future] = {}

    # ── 对外接口 ──────────────────────────────────────────────

    def submit(
        self,
        sources: Iterable[TransferSource],
        *,
        bucket_id: int | str,
        remote_prefix: str = "",
    ) -> list[str]:
        """提交上传，返回每个文件的 transfer id（文件夹会展开为多个）

        存储桶配置错误在此处直接抛出 ConfigError，不创建任务。
        """
        storage = self._buckets.adapter_for(bucket_id)
        tasks = [
            TransferTask(
                transfer_id=uuid.uuid4().hex,
                source=source,
                bucket_id=bucket_id,
                remote_filename=source.filename,
                remote_prefix=remote_prefix,
            )
            for source in expand_sources(sources)
        ]
        for task in tasks:
            ctx = _TaskContext(task)
            self.registry.register(task.transfer_id, task.key, bucket_id)
            with self._lock:
                self._contexts[task.transfer_id] = ctx
                self._futures[task.transfer_id] = self._task_pool.submit(
                    self._run, ctx, storage
                )
        logger.info(
            "提交 %d 个上传任务到存储桶 %s (%s)", len(tasks), bucket_id, storage.name
        )
        return [t.transfer_id for t in tasks]

    def cancel(self, transfer_id: str) -> bool:
        """协作式取消；任务不存在或已结束时返回 False"""
        with self._lock:
            ctx = self._contexts.get(transfer_id)
        if ctx is None:
            return False
        if ctx.request_cancel():
            # 尚未开始的任务直接结束
            self._settle(ctx, Cancelled())
        logger.info("请求取消上传: %s", ctx.task.key)
        return True

    def wait(self, transfer_ids: Iterable[str] | None = None, timeout: float | None = None) -> bool:
        """等待任务结束，全部结束返回 True"""
        with self._lock:
            if transfer_ids is None:
                futures = list(self._futures.values())
            else:
                futures = [self._futures[t] for t in transfer_ids if t in self._futures]
        _, pending = wait_futures(futures, timeout=timeout)
        return not pending

    def shutdown(self, *, wait: bool = True, cancel: bool = False) -> None:
        if cancel:
            with self._lock:
                live = list(self._contexts)
            for transfer_id in live:
                self.cancel(transfer_id)
        self._task_pool.shutdown(wait=wait)
        self._part_pool.shutdown(wait=wait)

    # ── 任务执行 ──────────────────────────────────────────────

    def _run(self, ctx: _TaskContext, storage: StorageProvider) -> None:
        if not ctx.start():
            return
        task = ctx.task
        try:
            ctx.total_bytes = source_size(task.source)
            self._report(ctx)
            if ctx.total_bytes <= self._settings.multipart_threshold:
                self._put_single(ctx, storage)
            else:
                self._put_multipart(ctx, storage)
            ctx.check()
        except _Cancelled:
            logger.info("上传已取消: %s", task.key)
            self._settle(ctx, Cancelled())
            return
        except Exception as e:
            if isinstance(e, R2UploaderError):
                logger.error("上传失败: %s [%s] %s", task.key, e.code, e.message)
            else:
                logger.exception("上传失败: %s", task.key)
            self._settle(ctx, error_status(e))
            return
        self._settle(ctx, Success(), url=self._result_url(task))
        logger.info("上传完成: %s (%d bytes)", task.key, ctx.total_bytes)

    def _put_single(self, ctx: _TaskContext, storage: StorageProvider) -> None:
        task = ctx.task
        if task.source.is_inline:
            data = task.source.inline_bytes()
        else:
            with open(task.source.file_path or "", "rb") as fh:
                data = fh.read()
        meter = SpeedMeter(self._settings.speed_window)
        self._with_retry(ctx, f"上传 {task.key}", storage.put_object, task.key, data)
        ctx.bytes_uploaded = len(data)
        self._report(ctx, meter.record(ctx.bytes_uploaded))

    def _put_multipart(self, ctx: _TaskContext, storage: StorageProvider) -> None:
        task = ctx.task
        plan = plan_parts(ctx.total_bytes, self._settings.part_size)
        ctx.check()
        upload_id = self._with_retry(
            ctx, f"创建分片上传 {task.key}", storage.initiate_multipart, task.key
        )
        ctx.upload_id = upload_id
        logger.info(
            "创建分片上传: %s, upload_id=%s, parts=%d", task.key, upload_id, len(plan)
        )
        try:
            parts = self._upload_parts(ctx, storage, plan)
            ctx.check()
            ordered = _verify_parts(parts, plan)
            self._with_retry(
                ctx,
                f"合并分片 {task.key}",
                storage.complete_multipart,
                task.key,
                upload_id,
                ordered,
            )
        except Exception:
            self._abort(storage, task.key, upload_id)
            raise

    def _upload_parts(
        self, ctx: _TaskContext, storage: StorageProvider, plan: list[PartSpec]
    ) -> list[CompletedPart]:
        """按 part_concurrency 限流调度分片，失败或取消后不再调度新分片"""
        completed: list[CompletedPart] = []
        in_flight: dict[Future, PartSpec] = {}
        failures: list[BaseException] = []
        meter = SpeedMeter(self._settings.speed_window)

        def collect(done: Iterable[Future]) -> None:
            for fut in done:
                in_flight.pop(fut)
                try:
                    part = fut.result()
                except _Cancelled:
                    continue
                except Exception as e:
                    if not failures:
                        ctx.stop.set()
                    failures.append(e)
                    continue
                completed.append(part)
                ctx.bytes_uploaded += part.size
                self._report(ctx, meter.record(ctx.bytes_uploaded))
                logger.debug(
                    "分片完成: %s #%d (%d/%d)",
                    ctx.task.key,
                    part.part_number,
                    ctx.bytes_uploaded,
                    ctx.total_bytes,
                )

        with self._open(ctx.task.source) as reader:
            for spec in plan:
                while len(in_flight) >= self._settings.part_concurrency:
                    done, _ = wait_futures(in_flight, return_when=FIRST_COMPLETED)
                    collect(done)
                if ctx.stop.is_set():
                    break
                reader.seek(spec.offset)
                data = reader.read(spec.size)
                if len(data) != spec.size:
                    # 源文件在上传期间被修改
                    failures.append(
                        ValidationError(
                            f"读取分片 {spec.part_number} 字节数不符: {len(data)}/{spec.size}"
                        )
                    )
                    ctx.stop.set()
                    break
                fut = self._part_pool.submit(self._upload_part, ctx, storage, spec, data)
                in_flight[fut] = spec
            # 在途分片允许完成
            while in_flight:
                done, _ = wait_futures(in_flight, return_when=FIRST_COMPLETED)
                collect(done)

        if failures:
            raise failures[0]
        ctx.check()
        return completed

    def _upload_part(
        self,
        ctx: _TaskContext,
        storage: StorageProvider,
        spec: PartSpec,
        data: bytes,
    ) -> CompletedPart:
        part = self._with_retry(
            ctx,
            f"分片 {ctx.task.key} #{spec.part_number}",
            storage.upload_part,
            ctx.task.key,
            ctx.upload_id,
            spec.part_number,
            data,
        )
        if part.size != spec.size:
            part = CompletedPart(part_number=part.part_number, etag=part.etag, size=spec.size)
        return part

    def _with_retry(self, ctx: _TaskContext, label: str, func, *args):
        """TransientNetworkError 指数退避重试；其余错误直接抛出"""
        attempts = self._settings.max_attempts
        attempt = 0
        while True:
            if ctx.stop.is_set():
                raise _Cancelled()
            try:
                with self._slots:
                    # 排队等待期间可能已被取消
                    if ctx.stop.is_set():
                        raise _Cancelled()
                    return func(*args)
            except TransientNetworkError as e:
                attempt += 1
                if attempt >= attempts:
                    logger.error("%s 重试 %d 次后仍失败: %s", label, attempts, e.message)
                    raise
                delay = min(
                    self._settings.retry_base_delay * 2 ** (attempt - 1),
                    self._settings.retry_max_delay,
                )
                logger.warning(
                    "%s 网络错误，%.1fs 后重试 (%d/%d): %s",
                    label,
                    delay,
                    attempt,
                    attempts,
                    e.message,
                )
                if ctx.stop.wait(delay):
                    raise _Cancelled() from e

    # ── 内部方法 ──────────────────────────────────────────────

    @staticmethod
    def _open(source: TransferSource) -> BinaryIO:
        if source.is_inline:
            return io.BytesIO(source.inline_bytes())
        return open(source.file_path or "", "rb")

    def _abort(self, storage: StorageProvider, key: str, upload_id: str) -> None:
        """尽力取消远端分片上传，失败只记录日志"""
        try:
            storage.abort_multipart(key, upload_id)
        except Exception as e:
            logger.warning("取消分片上传失败: %s (%s): %s", key, upload_id, e)

    def _report(self, ctx: _TaskContext, speed: float = 0.0) -> None:
        self.registry.update(
            ctx.task.transfer_id,
            Uploading(
                bytes_uploaded=min(ctx.bytes_uploaded, ctx.total_bytes),
                total_bytes=ctx.total_bytes,
                speed=speed,
            ),
        )

    def _result_url(self, task: TransferTask) -> str:
        try:
            return self._urls.url_for(task.bucket_id, task.key)
        except R2UploaderError as e:
            logger.warning("生成访问链接失败: %s: %s", task.key, e.message)
            return ""

    def _settle(self, ctx: _TaskContext, status, *, url: str | None = None) -> None:
        self.registry.update(ctx.task.transfer_id, status, url=url)
        with self._lock:
            self._contexts.pop(ctx.task.transfer_id, None)
            self._futures.pop(ctx.task.transfer_id, None)


def _verify_parts(
    parts: list[CompletedPart], plan: list[PartSpec]
) -> list[CompletedPart]:
    """按分片号排序，且必须恰好覆盖规划的全部分片"""
    ordered = sorted(parts, key=lambda p: p.part_number)
    expected = [spec.part_number for spec in plan]
    actual = [p.part_number for p in ordered]
    if actual != expected:
        raise ValidationError(
            "已上传分片与规划不一致",
            details={"expected": expected, "actual": actual},
        )
    return ordered
