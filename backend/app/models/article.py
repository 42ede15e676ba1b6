from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePath
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_ARTICLE_STATUS = "submitted"
DEFAULT_REVIEW_STATUS = "Null"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def ensure_plain_filename(value: str) -> str:
    """
    附件文件名只能是单层文件名，禁止路径穿越。
    """
    name = str(value or "").strip()
    if not name or name in {".", ".."} or PurePath(name).name != name or "\\" in name:
        raise ValueError("filename must be a plain file name")
    return name


class AttachmentCategory(str, Enum):
    """
    附件类别（决定落盘目录）。
    """

    MANUSCRIPT = "manuscript"
    COVER_LETTER = "cover_letter"
    SUPPLEMENTARY = "supplementary"
    MERGED = "merged"

    @property
    def directory(self) -> str:
        return _CATEGORY_DIRECTORIES[self]

    @classmethod
    def from_legacy_filename(cls, filename: str) -> "AttachmentCategory":
        """
        旧客户端只传文件名：按子串推断类别。

        中文注释:
        - 匹配不区分大小写；历史拼写 "menuscript" 与 "manuscript" 都认；
        - "supplementary" 单独归类，打包时从 supplementary-file/ 取；
        - 无法识别的一律视为 merged script（与旧行为一致）。
        """
        lowered = (filename or "").lower()
        if "menuscript" in lowered or "manuscript" in lowered:
            return cls.MANUSCRIPT
        if "coverletter" in lowered or "cover_letter" in lowered:
            return cls.COVER_LETTER
        if "supplementary" in lowered:
            return cls.SUPPLEMENTARY
        return cls.MERGED


_CATEGORY_DIRECTORIES = {
    AttachmentCategory.MANUSCRIPT: "manuscript",
    AttachmentCategory.COVER_LETTER: "cover-letter",
    AttachmentCategory.SUPPLEMENTARY: "supplementary-file",
    AttachmentCategory.MERGED: "merged-script",
}


class _CamelModel(BaseModel):
    # 入参同时接受 camelCase（旧前端）与 snake_case；存储/输出统一 snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Author(_CamelModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr
    affiliation: str = Field(min_length=1)
    corresponding_author: bool
    first_author: bool
    other_author: bool

    @field_validator("email", mode="after")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return normalize_email(value)


def validate_author_flags(authors: List[Author]) -> List[Author]:
    """
    中文注释: 作者列表必须恰好有一位第一作者、一位通讯作者（other_author 不做约束）。
    """
    if not authors:
        raise ValueError("at least one author is required")
    first = sum(1 for a in authors if a.first_author)
    corresponding = sum(1 for a in authors if a.corresponding_author)
    if first != 1:
        raise ValueError(f"exactly one first author is required, got {first}")
    if corresponding != 1:
        raise ValueError(f"exactly one corresponding author is required, got {corresponding}")
    return authors


class ReviewerAssignment(_CamelModel):
    """
    稿件内嵌的审稿跟踪记录（按 email 匹配，不引用审稿人名册）。
    """

    email: EmailStr
    status: str = DEFAULT_REVIEW_STATUS
    comments: str = ""
    review_date: datetime = Field(default_factory=utc_now)
    reviewed: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("email", mode="after")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return normalize_email(value)


class ArticleDraft(_CamelModel):
    """
    投稿时由作者提供的内容（附件由 AttachmentStore 单独落盘）。
    """

    title: str = Field(min_length=1)
    abstract: str = Field(min_length=1)
    keywords: List[str] = Field(min_length=1)
    authors: List[Author]
    journal_id: Optional[UUID] = None

    @field_validator("keywords", mode="after")
    @classmethod
    def _clean_keywords(cls, value: List[str]) -> List[str]:
        cleaned = [k.strip() for k in value if k and k.strip()]
        if not cleaned:
            raise ValueError("at least one keyword is required")
        return list(dict.fromkeys(cleaned))

    @field_validator("authors", mode="after")
    @classmethod
    def _check_authors(cls, value: List[Author]) -> List[Author]:
        return validate_author_flags(value)


class Article(_CamelModel):
    """
    Document model for the `articles` table.
    """

    id: str
    owner_id: str
    journal_id: Optional[UUID] = None
    title: str
    abstract: str
    keywords: List[str] = Field(default_factory=list)
    manuscript: str
    cover_letter: str
    supplementary_file: Optional[str] = None
    merged_script: str
    authors: List[Author] = Field(default_factory=list)
    status: str = DEFAULT_ARTICLE_STATUS
    final_status: Optional[str] = None
    remarks: str = ""
    editor_comments: str = ""
    reviewers: List[ReviewerAssignment] = Field(default_factory=list)
    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
