from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import ValidationError

from app.core.config import StorageConfig
from app.core.errors import ValidationFailedError
from app.core.roles import Principal, get_current_principal, require_action
from app.lib.api_client import supabase
from app.models.article import ArticleDraft, AttachmentCategory
from app.schemas.article import ArticleUpdateRequest, AssignReviewersRequest
from app.schemas.review import ReviewUpdateRequest
from app.services.article_store import ArticleStore
from app.services.attachment_store import AttachmentStore
from app.services.review_workflow_service import ReviewWorkflowService, UploadedAttachment


router = APIRouter(prefix="/article", tags=["Articles"])


def _service() -> ReviewWorkflowService:
    return ReviewWorkflowService(
        store=ArticleStore(client=supabase),
        attachments=AttachmentStore(StorageConfig.from_env().root),
    )


def _parse_json_field(name: str, raw: str):
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ValidationFailedError("Article submission failed", error=f"{name}: {e}")


async def _read_upload(upload: UploadFile) -> UploadedAttachment:
    return UploadedAttachment(original_name=upload.filename or "", content=await upload.read())


@router.post("/add-article", status_code=201)
async def add_article(
    title: str = Form(...),
    abstract: str = Form(...),
    keywords: str = Form(...),
    authors: str = Form(...),
    journal_id: Optional[str] = Form(None),
    manuscript: UploadFile = File(...),
    cover_letter: UploadFile = File(...),
    merged_script: UploadFile = File(...),
    supplementary_file: Optional[UploadFile] = File(None),
    principal: Principal = Depends(get_current_principal),
):
    """
    投稿（multipart）：keywords / authors 为 JSON 字符串，附件按类别落盘。
    """
    try:
        draft = ArticleDraft.model_validate(
            {
                "title": title,
                "abstract": abstract,
                "keywords": _parse_json_field("keywords", keywords),
                "authors": _parse_json_field("authors", authors),
                "journal_id": journal_id or None,
            }
        )
    except ValidationError as e:
        raise ValidationFailedError("Article submission failed", error=e)

    uploads = {
        AttachmentCategory.MANUSCRIPT: await _read_upload(manuscript),
        AttachmentCategory.COVER_LETTER: await _read_upload(cover_letter),
        AttachmentCategory.MERGED: await _read_upload(merged_script),
    }
    if supplementary_file is not None and supplementary_file.filename:
        uploads[AttachmentCategory.SUPPLEMENTARY] = await _read_upload(supplementary_file)

    created = _service().submit_article(owner_id=principal.id, draft=draft, uploads=uploads)
    return {"success": True, "message": "Article submitted successfully", "data": created}


@router.get("/get-article")
async def get_own_articles(principal: Principal = Depends(get_current_principal)):
    """
    当前账号提交的稿件 + 以合著者身份出现的稿件。
    """
    articles = _service().list_own_articles(account_id=principal.id, account_email=principal.email)
    return {"success": True, "message": "Journal Articles data retrieved successfully", "data": articles}


@router.get("/get-article-list/{journal_id}")
async def get_article_list(journal_id: str):
    articles = _service().list_articles_for_journal(journal_id)
    return {"success": True, "message": "Journal Articles data retrieved successfully", "data": articles}


@router.post("/update-article")
async def update_article(
    payload: ArticleUpdateRequest,
    _principal: Principal = Depends(require_action("article:update")),
):
    updated = _service().update_article(payload.id, payload.patch())
    return {"success": True, "message": "Journal article updated successfully", "data": updated}


@router.post("/assign-reviewers")
async def assign_reviewers(
    payload: AssignReviewersRequest,
    _principal: Principal = Depends(require_action("article:assign_reviewers")),
):
    updated = _service().assign_reviewers(payload.id, payload.emails)
    return {"success": True, "message": "Reviewers assigned successfully", "data": updated}


@router.post("/update-review")
async def update_review(
    payload: ReviewUpdateRequest,
    principal: Principal = Depends(require_action("review:submit")),
):
    """
    审稿人提交/修改自己的审稿记录（按登录 email 定位，不能改别人的记录）。
    """
    own = _service().submit_review(
        article_id=payload.id,
        reviewer_email=principal.email,
        feedback=payload.feedback(),
    )
    return {"success": True, "message": "Journal article updated successfully", "data": own}


@router.get("/get-review-articles")
async def get_review_articles(principal: Principal = Depends(require_action("review:list"))):
    articles = _service().list_review_assignments(principal.email)
    return {"success": True, "message": "Journal Articles data retrieved successfully", "data": articles}
