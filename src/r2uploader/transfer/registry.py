"""传输状态注册表

transfer id → 当前状态的唯一可信来源。同一 id 后写覆盖先写，
但终态之后的更新、以及 bytes_uploaded 回退的更新会被丢弃。
"""

import itertools
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ..errors import ValidationError
from .status import TransferStatus, Uploading, Waiting

logger = logging.getLogger(__name__)

Listener = Callable[["TransferRecord"], None]


class TransferFilter(str, Enum):
    ALL = "all"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TransferRecord:
    """单个传输的状态快照（上传历史条目）"""

    transfer_id: str
    filename: str
    bucket_id: int | str
    status: TransferStatus = field(default_factory=Waiting)
    url: str = ""
    timestamp: int = 0
    seq: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileId": self.transfer_id,
            "filename": self.filename,
            "url": self.url,
            "status": self.status.to_dict(),
            "timestamp": self.timestamp,
        }


@dataclass
class TransferPage:
    items: list[TransferRecord]
    page: int
    page_size: int
    total: int

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total


class TransferRegistry:
    """内存中的传输状态表，线程安全"""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, TransferRecord] = {}
        self._listeners: list[Listener] = []
        self._seq = itertools.count(1)

    def register(
        self, transfer_id: str, filename: str, bucket_id: int | str
    ) -> TransferRecord:
        """新建 Waiting 记录"""
        with self._lock:
            if transfer_id in self._records:
                raise ValidationError(f"传输 id 重复: {transfer_id}")
            record = TransferRecord(
                transfer_id=transfer_id,
                filename=filename,
                bucket_id=bucket_id,
                timestamp=int(self._clock()),
                seq=next(self._seq),
            )
            self._records[transfer_id] = record
        self._notify(record)
        return record

    def update(
        self, transfer_id: str, status: TransferStatus, *, url: str | None = None
    ) -> bool:
        """写入新状态，被拒绝时返回 False"""
        with self._lock:
            current = self._records.get(transfer_id)
            if current is None:
                logger.debug("忽略未知传输的状态更新: %s", transfer_id)
                return False
            if current.is_terminal:
                logger.debug(
                    "传输 %s 已是终态 %s，忽略更新", transfer_id, current.status
                )
                return False
            if (
                isinstance(status, Uploading)
                and isinstance(current.status, Uploading)
                and status.bytes_uploaded < current.status.bytes_uploaded
            ):
                return False
            record = replace(
                current,
                status=status,
                url=current.url if url is None else url,
                timestamp=int(self._clock()),
            )
            self._records[transfer_id] = record
        self._notify(record)
        return True

    def get(self, transfer_id: str) -> TransferRecord | None:
        with self._lock:
            return self._records.get(transfer_id)

    def snapshot(self) -> list[TransferRecord]:
        """全部记录，最新提交在前"""
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.seq, reverse=True)

    def view(
        self,
        status_filter: TransferFilter = TransferFilter.ALL,
        *,
        page: int = 1,
        page_size: int = 20,
    ) -> TransferPage:
        if page < 1 or page_size < 1:
            raise ValidationError(f"分页参数无效: page={page}, page_size={page_size}")
        status_filter = TransferFilter(status_filter)
        records = self.snapshot()
        if status_filter is TransferFilter.IN_PROGRESS:
            records = [r for r in records if not r.is_terminal]
        elif status_filter is TransferFilter.COMPLETED:
            records = [r for r in records if r.is_terminal]
        start = (page - 1) * page_size
        return TransferPage(
            items=records[start : start + page_size],
            page=page,
            page_size=page_size,
            total=len(records),
        )

    def active_bucket_ids(self) -> set[int | str]:
        """仍有未结束传输的存储桶"""
        with self._lock:
            return {r.bucket_id for r in self._records.values() if not r.is_terminal}

    def remove(self, transfer_id: str) -> bool:
        """删除一条已结束的记录，进行中的记录不删除"""
        with self._lock:
            record = self._records.get(transfer_id)
            if record is None or not record.is_terminal:
                return False
            del self._records[transfer_id]
        return True

    def clear_completed(self) -> int:
        """清除全部已结束记录，返回清除条数"""
        with self._lock:
            done = [tid for tid, r in self._records.items() if r.is_terminal]
            for tid in done:
                del self._records[tid]
        return len(done)

    def export(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.snapshot()]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """订阅状态变更，返回取消订阅函数"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, record: TransferRecord) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(record)
            except Exception:
                logger.exception("传输状态回调异常: %s", record.transfer_id)
