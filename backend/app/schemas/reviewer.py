from __future__ import annotations

from typing import List, Optional

from pydantic import EmailStr, Field, field_validator

from app.models.article import _CamelModel, normalize_email


class ReviewerCreate(_CamelModel):
    first_name: str = Field(min_length=1, max_length=200)
    last_name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    affiliation: str = Field(min_length=1, max_length=300)

    @field_validator("email", mode="after")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return normalize_email(value)


class ReviewerDraft(_CamelModel):
    """
    批量导入的单行（允许缺字段，缺字段的行会被跳过而不是整体失败）。
    """

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    affiliation: Optional[str] = None

    def is_complete(self) -> bool:
        return all(
            (v or "").strip()
            for v in (self.first_name, self.last_name, self.email, self.affiliation)
        )


class BulkReviewerCreate(_CamelModel):
    reviewers: List[ReviewerDraft] = Field(min_length=1)
