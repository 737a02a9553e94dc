"""分片规划"""

import math
from dataclasses import dataclass

from ..errors import ValidationError
from ..settings import MAX_PARTS, MIN_PART_SIZE, MiB

# 单个分片上限 5 GiB
MAX_PART_SIZE = 5 * 1024 * MiB


@dataclass(frozen=True)
class PartSpec:
    """分片在源数据中的位置"""

    part_number: int
    offset: int
    size: int


def effective_part_size(total_size: int, part_size: int, *, max_parts: int = MAX_PARTS) -> int:
    """分片数超过上限时按 MiB 对齐放大分片"""
    if part_size < MIN_PART_SIZE:
        raise ValidationError(f"分片大小不能小于 {MIN_PART_SIZE} 字节: {part_size}")
    if math.ceil(total_size / part_size) <= max_parts:
        return part_size
    grown = math.ceil(total_size / max_parts)
    return math.ceil(grown / MiB) * MiB


def plan_parts(
    total_size: int, part_size: int, *, max_parts: int = MAX_PARTS
) -> list[PartSpec]:
    """按固定大小切分，最后一片为余数；分片号从 1 开始"""
    if total_size <= 0:
        raise ValidationError("分片上传的对象大小必须大于 0")
    size = effective_part_size(total_size, part_size, max_parts=max_parts)
    if size > MAX_PART_SIZE:
        raise ValidationError(
            f"对象过大，无法在 {max_parts} 个分片内完成: {total_size} 字节"
        )
    parts = []
    offset = 0
    number = 1
    while offset < total_size:
        chunk = min(size, total_size - offset)
        parts.append(PartSpec(part_number=number, offset=offset, size=chunk))
        offset += chunk
        number += 1
    return parts
