from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from app.core.config import WorkflowConfig
from app.core.errors import ConflictError, NotAssignedError, NotFoundError, ValidationFailedError
from app.models.article import (
    DEFAULT_ARTICLE_STATUS,
    Article,
    ArticleDraft,
    AttachmentCategory,
    ReviewerAssignment,
    normalize_email,
    utc_now,
)
from app.schemas.review import ReviewFeedback
from app.services.article_store import ArticleStore
from app.services.attachment_store import AttachmentStore

logger = logging.getLogger("articledesk.workflow")

# 一次写入只改这些列；读取时只取 CAS 需要的最小集合
_MUTATION_COLUMNS = "id,version,reviewers"

REQUIRED_ATTACHMENTS = (
    AttachmentCategory.MANUSCRIPT,
    AttachmentCategory.COVER_LETTER,
    AttachmentCategory.MERGED,
)

_ATTACHMENT_COLUMNS = {
    AttachmentCategory.MANUSCRIPT: "manuscript",
    AttachmentCategory.COVER_LETTER: "cover_letter",
    AttachmentCategory.SUPPLEMENTARY: "supplementary_file",
    AttachmentCategory.MERGED: "merged_script",
}


@dataclass(frozen=True)
class UploadedAttachment:
    original_name: str
    content: bytes


def _same_email(entry: dict[str, Any], email: str) -> bool:
    return normalize_email(entry.get("email")) == email


def _merge_unique(primary: list[dict[str, Any]], extra: list[dict[str, Any]]) -> list[dict[str, Any]]:
    seen = {str(row.get("id")) for row in primary}
    merged = list(primary)
    for row in extra:
        key = str(row.get("id"))
        if key in seen:
            continue
        seen.add(key)
        merged.append(row)
    return merged


@dataclass
class ReviewWorkflowService:
    """
    稿件审稿流程（投稿 → 分配审稿人 → 审稿意见 → 编辑决定）。

    中文注释:
    1) 审稿人只能读写 email 等于自己的那条 reviewer 记录，任何接口都不返回其它审稿人的记录。
    2) 所有写操作走 `_mutate`：读 version → 计算新字段 → CAS 写回，冲突时重读重试。
    3) 失败一律抛 ArticleDeskError 子类，由路由层统一转成信封。
    """

    store: ArticleStore
    attachments: Optional[AttachmentStore] = None
    config: WorkflowConfig = field(default_factory=WorkflowConfig.from_env)

    # === 投稿 ===

    def submit_article(
        self,
        *,
        owner_id: str,
        draft: ArticleDraft,
        uploads: dict[AttachmentCategory, UploadedAttachment],
    ) -> dict[str, Any]:
        missing = [c.value for c in REQUIRED_ATTACHMENTS if c not in uploads]
        if missing:
            raise ValidationFailedError(
                "Article submission failed", error=f"missing attachments: {', '.join(missing)}"
            )
        if self.attachments is None:
            raise RuntimeError("ReviewWorkflowService.attachments is required for submissions")

        saved: list[tuple[AttachmentCategory, str]] = []
        try:
            for category, upload in uploads.items():
                filename = self.attachments.save(category, upload.original_name, upload.content)
                saved.append((category, filename))
            document = self._new_document(owner_id, draft, saved)
            created = self.store.insert(document)
        except (OSError, ValueError) as e:
            self._discard_attachments(saved)
            raise ValidationFailedError("Article submission failed", error=e)
        except Exception:
            # 任何失败都回收已落盘的附件，避免孤儿文件
            self._discard_attachments(saved)
            raise
        logger.info("[Workflow] article submitted id=%s owner=%s", created.get("id"), owner_id)
        return created

    @staticmethod
    def _new_document(
        owner_id: str, draft: ArticleDraft, saved: list[tuple[AttachmentCategory, str]]
    ) -> dict[str, Any]:
        now = utc_now().isoformat()
        row: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "owner_id": owner_id,
            **draft.model_dump(mode="json"),
            "manuscript": None,
            "cover_letter": None,
            "supplementary_file": None,
            "merged_script": None,
            "status": DEFAULT_ARTICLE_STATUS,
            "final_status": None,
            "remarks": "",
            "editor_comments": "",
            "reviewers": [],
            "version": 0,
            "created_at": now,
            "updated_at": now,
        }
        for category, filename in saved:
            row[_ATTACHMENT_COLUMNS[category]] = filename
        return Article.model_validate(row).model_dump(mode="json")

    def _discard_attachments(self, saved: list[tuple[AttachmentCategory, str]]) -> None:
        if self.attachments is None:
            return
        for category, filename in saved:
            self.attachments.remove(category, filename)

    # === 查询 ===

    def list_own_articles(self, *, account_id: str, account_email: Optional[str]) -> list[dict[str, Any]]:
        """
        账号自己提交的稿件 + 作为合著者出现的稿件（按 id 去重，自己提交的在前）。
        """
        owned = self.store.list_owned(account_id)
        email = normalize_email(account_email)
        coauthored = self.store.list_coauthored(email) if email else []
        articles = _merge_unique(owned, coauthored)
        if not articles:
            raise NotFoundError("You didn't submit any journal article")
        return articles

    def list_articles_for_journal(self, journal_id: str) -> list[dict[str, Any]]:
        if self.config.journal_scoping_enabled:
            articles = self.store.list_all(journal_id=journal_id)
        else:
            # TODO: drop this branch once every article row has journal_id backfilled
            logger.warning(
                "[Workflow] journal scoping disabled, journal_id=%s ignored; returning all articles",
                journal_id,
            )
            articles = self.store.list_all()
        if not articles:
            raise NotFoundError("No journal articles found")
        return articles

    def list_review_assignments(self, reviewer_email: str) -> list[dict[str, Any]]:
        email = normalize_email(reviewer_email)
        if not email:
            raise NotFoundError("No review articles found")

        out: list[dict[str, Any]] = []
        for row in self.store.list_assigned(email):
            own = [r for r in (row.get("reviewers") or []) if _same_email(r, email)]
            if not own:
                continue
            out.append(
                {
                    "id": row.get("id"),
                    "title": row.get("title"),
                    "created_at": row.get("created_at"),
                    "merged_script": row.get("merged_script"),
                    "reviewers": own,
                }
            )
        if not out:
            raise NotFoundError("No review articles found")
        return out

    # === 写操作 ===

    def update_article(self, article_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        if not patch:
            raise ValidationFailedError("No fields to update")
        updated = self._mutate(article_id, lambda _row: dict(patch))
        logger.info("[Workflow] article updated id=%s fields=%s", article_id, sorted(patch.keys()))
        return updated

    def assign_reviewers(self, article_id: str, emails: list[str]) -> dict[str, Any]:
        wanted = [normalize_email(e) for e in emails if normalize_email(e)]
        if not wanted:
            raise ValidationFailedError("No reviewer emails given")

        def _append(row: dict[str, Any]) -> dict[str, Any]:
            reviewers = list(row.get("reviewers") or [])
            assigned = {normalize_email(r.get("email")) for r in reviewers}
            for email in wanted:
                if email in assigned:
                    continue
                assigned.add(email)
                reviewers.append(ReviewerAssignment(email=email).model_dump(mode="json"))
            return {"reviewers": reviewers}

        updated = self._mutate(article_id, _append)
        logger.info("[Workflow] reviewers assigned id=%s emails=%s", article_id, wanted)
        return updated

    def submit_review(
        self, *, article_id: str, reviewer_email: str, feedback: ReviewFeedback
    ) -> dict[str, Any]:
        """
        覆盖当前审稿人自己的那条 reviewer 记录（字段级），返回更新后的这条记录。
        """
        email = normalize_email(reviewer_email)
        changes = feedback.changes()
        if not changes:
            raise ValidationFailedError("No review fields to update")

        def _apply(row: dict[str, Any]) -> dict[str, Any]:
            reviewers = list(row.get("reviewers") or [])
            index = next((i for i, r in enumerate(reviewers) if _same_email(r, email)), None)
            if index is None:
                raise NotAssignedError()
            reviewers[index] = {**reviewers[index], **changes}
            return {"reviewers": reviewers}

        updated = self._mutate(article_id, _apply)
        own = next(r for r in updated.get("reviewers") or [] if _same_email(r, email))
        logger.info("[Workflow] review submitted id=%s reviewer=%s", article_id, email)
        return own

    def _mutate(
        self, article_id: str, compute: Callable[[dict[str, Any]], dict[str, Any]]
    ) -> dict[str, Any]:
        attempts = self.config.review_update_max_attempts
        for attempt in range(1, attempts + 1):
            row = self.store.get(article_id, _MUTATION_COLUMNS)
            if not row:
                raise NotFoundError("Journal article not found")
            fields = compute(row)
            written = self.store.swap(article_id, int(row.get("version") or 0), fields)
            if written is not None:
                return written
            logger.info(
                "[Workflow] version conflict on article %s (attempt %s/%s), retrying",
                article_id,
                attempt,
                attempts,
            )
        raise ConflictError("Journal article was modified concurrently, please retry")
