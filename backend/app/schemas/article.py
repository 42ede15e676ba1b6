from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from pydantic import ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models.article import (
    Author,
    ReviewerAssignment,
    _CamelModel,
    normalize_email,
    validate_author_flags,
)


class ArticleUpdateRequest(_CamelModel):
    """
    编辑的通用字段覆盖（present 即覆盖）。

    中文注释:
    - 调用方是受信任的 editor，这里不做字段白名单，只保证字段能落到 articles 表上；
    - 身份类字段（id / owner_id / version / created_at）不可通过 patch 修改；
    - 未知字段直接忽略，避免 PostgREST 因未知列报错。
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id", min_length=1)
    journal_id: Optional[UUID] = None
    title: Optional[str] = Field(default=None, min_length=1)
    abstract: Optional[str] = Field(default=None, min_length=1)
    keywords: Optional[List[str]] = None
    manuscript: Optional[str] = None
    cover_letter: Optional[str] = None
    supplementary_file: Optional[str] = None
    merged_script: Optional[str] = None
    authors: Optional[List[Author]] = None
    status: Optional[str] = None
    final_status: Optional[str] = None
    remarks: Optional[str] = None
    editor_comments: Optional[str] = None
    reviewers: Optional[List[ReviewerAssignment]] = None

    # 只有这三列在 articles 表上允许为 null，其余字段显式传 null 直接判为非法请求
    @field_validator(
        "title",
        "abstract",
        "keywords",
        "manuscript",
        "cover_letter",
        "merged_script",
        "authors",
        "status",
        "remarks",
        "editor_comments",
        "reviewers",
        mode="before",
    )
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("field cannot be null")
        return value

    @field_validator("authors", mode="after")
    @classmethod
    def _check_authors(cls, value: Optional[List[Author]]) -> Optional[List[Author]]:
        if value is None:
            return None
        return validate_author_flags(value)

    def patch(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True, exclude={"id"})


class AssignReviewersRequest(_CamelModel):
    id: str = Field(alias="_id", min_length=1)
    emails: List[EmailStr] = Field(min_length=1)

    @field_validator("emails", mode="after")
    @classmethod
    def _normalize(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(normalize_email(v) for v in value))
