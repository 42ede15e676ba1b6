from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from app.models.article import AttachmentCategory, ensure_plain_filename

logger = logging.getLogger("articledesk.attachments")

# 只保留形如 .pdf / .docx 的扩展名，其余一律丢弃
_SAFE_SUFFIX_RE = re.compile(r"\.[a-z0-9]{1,10}")


@dataclass(frozen=True)
class AttachmentStore:
    """
    本地附件存储：按类别分目录，文件只创建不修改。

    中文注释:
    - 文件名由服务端生成（类别 + 毫秒时间戳 + 随机后缀 + 原扩展名），不信任上传文件名；
    - 以 "xb" 模式写入，撞名时直接报错而不是覆盖已有附件。
    """

    root: Path

    def directory(self, category: AttachmentCategory) -> Path:
        return self.root / category.directory

    def path_for(self, category: AttachmentCategory, filename: str) -> Path:
        return self.directory(category) / ensure_plain_filename(filename)

    def save(self, category: AttachmentCategory, original_name: str, content: bytes) -> str:
        suffix = Path(original_name or "").suffix.lower()
        if not _SAFE_SUFFIX_RE.fullmatch(suffix):
            suffix = ""
        filename = f"{category.value}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{suffix}"
        target = self.path_for(category, filename)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "xb") as fh:
            fh.write(content)
        return filename

    def remove(self, category: AttachmentCategory, filename: str) -> None:
        try:
            self.path_for(category, filename).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("[Attachments] remove %s/%s failed (ignored): %s", category.value, filename, e)
