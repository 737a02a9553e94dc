"""传输引擎与传输状态"""

from .engine import TransferEngine
from .registry import TransferFilter, TransferPage, TransferRecord, TransferRegistry
from .status import Cancelled, Error, Success, TransferStatus, Uploading, Waiting

__all__ = [
    "Cancelled",
    "Error",
    "Success",
    "TransferEngine",
    "TransferFilter",
    "TransferPage",
    "TransferRecord",
    "TransferRegistry",
    "TransferStatus",
    "Uploading",
    "Waiting",
]
