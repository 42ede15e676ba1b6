from __future__ import annotations

import asyncio
import logging
import os
import re
import time
import zipfile
from functools import lru_cache
from pathlib import Path
from typing import BinaryIO, Iterable

from app.core.config import StorageConfig
from app.core.errors import ArchiveIOError, NotFoundError
from app.schemas.archive import ArchiveFileRef
from app.services.attachment_store import AttachmentStore

logger = logging.getLogger("articledesk.archive")

# 打包文件的固定保留时长（秒），不开放配置
ARCHIVE_GRACE_SECONDS = 60.0

_ARCHIVE_NAME_RE = re.compile(r"^\d+\.zip$")


class ArchivePackager:
    """
    按需把若干附件打成一个 zip，供编辑一次性下载。

    中文注释:
    1) 全有或全无：任一附件读取失败，删除半成品并抛 ArchiveIOError。
    2) zip 完整落盘（flush + fsync）之后才返回文件名。
    3) 每个 zip 注册一个 60 秒的过期定时器；下载完成后立即删除并取消定时器。
    4) 删除一律 delete-if-exists，定时器与下载路径重复删除不会报错。
    """

    def __init__(
        self,
        attachments: AttachmentStore,
        archive_dir: Path,
        *,
        grace_seconds: float = ARCHIVE_GRACE_SECONDS,
    ) -> None:
        self.attachments = attachments
        self.archive_dir = Path(archive_dir)
        self.grace_seconds = grace_seconds
        self._timers: dict[str, asyncio.TimerHandle] = {}

    # === 打包 ===

    async def create(self, refs: Iterable[ArchiveFileRef]) -> str:
        refs = list(refs)
        if not refs:
            raise ArchiveIOError(error="no files to archive")
        name = await asyncio.to_thread(self._build, refs)
        self._schedule_expiry(name)
        logger.info("[Archive] created %s with %s file(s)", name, len(refs))
        return name

    def _entries(self, refs: list[ArchiveFileRef]) -> dict[str, Path]:
        """
        zip 内条目名 -> 源文件。

        中文注释: 同一 (类别, 文件名) 只打一次；不同类别出现同名文件时，
        条目名加上类别目录前缀（如 manuscript/x.pdf），避免互相覆盖。
        """
        unique = list(dict.fromkeys((ref.category, ref.filename) for ref in refs))
        counts: dict[str, int] = {}
        for _category, filename in unique:
            counts[filename] = counts.get(filename, 0) + 1

        entries: dict[str, Path] = {}
        for category, filename in unique:
            arcname = filename if counts[filename] == 1 else f"{category.directory}/{filename}"
            entries[arcname] = self.attachments.path_for(category, filename)
        return entries

    def _build(self, refs: list[ArchiveFileRef]) -> str:
        sources = self._entries(refs)

        try:
            self.archive_dir.mkdir(parents=True, exist_ok=True)
            fh, name = self._reserve_name()
        except OSError as e:
            raise ArchiveIOError(error=e)

        path = self.archive_dir / name
        try:
            with fh:
                with zipfile.ZipFile(fh, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                    for arcname, source in sources.items():
                        zf.write(source, arcname=arcname)
                fh.flush()
                os.fsync(fh.fileno())
        except OSError as e:
            self._delete(name)
            logger.warning("[Archive] build %s failed: %s", path, e)
            raise ArchiveIOError(error=e)
        return name

    def _reserve_name(self) -> tuple[BinaryIO, str]:
        """
        以毫秒时间戳命名；同一毫秒已被占用时顺延到下一个空闲时间戳。
        """
        stamp = int(time.time() * 1000)
        while True:
            name = f"{stamp}.zip"
            try:
                return open(self.archive_dir / name, "xb"), name
            except FileExistsError:
                stamp += 1

    # === 过期 & 下载 ===

    def _schedule_expiry(self, name: str) -> None:
        loop = asyncio.get_running_loop()
        self._timers[name] = loop.call_later(self.grace_seconds, self._expire, name)

    def _expire(self, name: str) -> None:
        self._timers.pop(name, None)
        self._delete(name)
        logger.info("[Archive] expired %s", name)

    def _delete(self, name: str) -> None:
        try:
            (self.archive_dir / name).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("[Archive] delete %s failed (ignored): %s", name, e)

    def resolve_download(self, name: str) -> Path:
        if not _ARCHIVE_NAME_RE.match(name or ""):
            raise NotFoundError("Zip file not found")
        path = self.archive_dir / name
        if not path.is_file():
            raise NotFoundError("Zip file not found")
        return path

    async def discard(self, name: str) -> None:
        """
        下载完成后调用：取消过期定时器并立即删除。
        """
        handle = self._timers.pop(name, None)
        if handle is not None:
            handle.cancel()
        self._delete(name)
        logger.info("[Archive] downloaded and removed %s", name)

    # === 进程生命周期 ===

    def purge_stale(self) -> int:
        """
        启动时清理上一个进程遗留的 zip（旧进程的定时器已经丢失）。
        """
        if not self.archive_dir.is_dir():
            return 0
        removed = 0
        for path in self.archive_dir.glob("*.zip"):
            if path.name in self._timers:
                continue
            self._delete(path.name)
            removed += 1
        if removed:
            logger.info("[Archive] purged %s stale archive(s)", removed)
        return removed

    def shutdown(self) -> None:
        for name, handle in list(self._timers.items()):
            handle.cancel()
            self._delete(name)
        self._timers.clear()


@lru_cache(maxsize=1)
def get_archive_packager() -> ArchivePackager:
    cfg = StorageConfig.from_env()
    return ArchivePackager(AttachmentStore(cfg.root), cfg.archive_dir)
