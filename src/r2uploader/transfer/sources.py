"""上传来源展开：文件夹 → 逐个文件，内联内容校验"""

import logging
import os
import posixpath
from collections.abc import Iterable

from ..errors import ValidationError
from ..models import TransferSource

logger = logging.getLogger(__name__)


def _walk_folder(root: str) -> list[TransferSource]:
    """递归列出文件夹内文件，远端文件名保留 <文件夹名>/<相对路径>"""
    base = os.path.basename(os.path.normpath(root))
    found: list[TransferSource] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            full = os.path.join(dirpath, name)
            rel = os.path.relpath(full, root).replace(os.sep, "/")
            found.append(
                TransferSource.from_path(full, filename=posixpath.join(base, rel))
            )
    return found


def expand_sources(sources: Iterable[TransferSource]) -> list[TransferSource]:
    """展开文件夹来源并补全远端文件名"""
    expanded: list[TransferSource] = []
    for source in sources:
        if source.is_inline:
            if not source.filename:
                raise ValidationError(f"{source.kind.value} 内容缺少文件名")
            expanded.append(source)
            continue
        path = source.file_path or ""
        if os.path.isdir(path):
            files = _walk_folder(path)
            if source.filename:
                # 显式指定的名字替换文件夹名
                files = [
                    TransferSource.from_path(
                        f.file_path or "",
                        filename=posixpath.join(
                            source.filename, f.filename.split("/", 1)[1]
                        ),
                    )
                    for f in files
                ]
            logger.debug("文件夹 %s 展开为 %d 个文件", path, len(files))
            expanded.extend(files)
            continue
        expanded.append(
            TransferSource(
                kind=source.kind,
                file_path=path,
                filename=source.filename or os.path.basename(path),
            )
        )
    return expanded


def source_size(source: TransferSource) -> int:
    if source.is_inline:
        return len(source.inline_bytes())
    return os.path.getsize(source.file_path or "")
