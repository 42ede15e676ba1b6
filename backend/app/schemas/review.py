from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from app.models.article import _CamelModel


class ReviewFeedback(_CamelModel):
    """
    审稿人可修改的字段（email / created_at 永远以库中记录为准）。
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    status: Optional[str] = None
    comments: Optional[str] = None
    reviewed: Optional[bool] = None
    review_date: Optional[datetime] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True, exclude_none=True)


class ReviewUpdateRequest(_CamelModel):
    """
    审稿意见提交。

    中文注释:
    - 新格式：{_id, status?, comments?, reviewed?, reviewDate?}
    - 旧格式：{_id, reviewers: [entry]}，只取第一个元素；entry 里的 email 会被忽略，
      记录一律按当前登录审稿人的 email 定位。
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id", min_length=1)
    reviewers: Optional[List[ReviewFeedback]] = None
    status: Optional[str] = None
    comments: Optional[str] = None
    reviewed: Optional[bool] = None
    review_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _require_changes(self) -> "ReviewUpdateRequest":
        if not self.feedback().changes():
            raise ValueError("no review fields to update")
        return self

    def feedback(self) -> ReviewFeedback:
        if self.reviewers:
            return self.reviewers[0]
        data = self.model_dump(
            include={"status", "comments", "reviewed", "review_date"},
            exclude_unset=True,
        )
        return ReviewFeedback(**data)
