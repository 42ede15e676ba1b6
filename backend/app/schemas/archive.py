from __future__ import annotations

from typing import List, Union

from pydantic import BaseModel, Field, field_validator

from app.models.article import AttachmentCategory, ensure_plain_filename


class ArchiveFileRef(BaseModel):
    category: AttachmentCategory
    filename: str

    @field_validator("filename", mode="after")
    @classmethod
    def _plain(cls, value: str) -> str:
        return ensure_plain_filename(value)


class CreateArchiveRequest(BaseModel):
    """
    打包请求：推荐传 {category, filename}；旧客户端传纯文件名时按子串推断类别。
    """

    files: List[Union[ArchiveFileRef, str]] = Field(min_length=1)

    @field_validator("files", mode="after")
    @classmethod
    def _plain_legacy_names(cls, value: List[Union[ArchiveFileRef, str]]) -> List[Union[ArchiveFileRef, str]]:
        return [item if isinstance(item, ArchiveFileRef) else ensure_plain_filename(item) for item in value]

    def refs(self) -> List[ArchiveFileRef]:
        out: List[ArchiveFileRef] = []
        for item in self.files:
            if isinstance(item, ArchiveFileRef):
                out.append(item)
                continue
            out.append(
                ArchiveFileRef(
                    category=AttachmentCategory.from_legacy_filename(item),
                    filename=item,
                )
            )
        return out
