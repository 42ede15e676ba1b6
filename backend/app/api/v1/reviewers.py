from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.roles import Principal, require_action
from app.lib.api_client import supabase
from app.schemas.reviewer import BulkReviewerCreate, ReviewerCreate
from app.services.reviewer_roster_service import ReviewerRosterService


router = APIRouter(prefix="/reviewer", tags=["Reviewers"])


def _service() -> ReviewerRosterService:
    return ReviewerRosterService(client=supabase)


@router.post("/add-reviewer", status_code=201)
async def add_reviewer(
    payload: ReviewerCreate,
    _principal: Principal = Depends(require_action("roster:manage")),
):
    created = _service().add_reviewer(payload)
    return {"success": True, "message": "Reviewer added successfully", "data": created}


@router.post("/add-bulk-reviewer", status_code=201)
async def add_bulk_reviewer(
    payload: BulkReviewerCreate,
    _principal: Principal = Depends(require_action("roster:manage")),
):
    """
    批量导入：已存在或字段不全的行会被跳过。
    """
    created = _service().add_bulk(payload.reviewers)
    return {"success": True, "message": "Reviewers added successfully", "data": created}


@router.get("/get-reviewer-list")
async def get_reviewer_list(_principal: Principal = Depends(require_action("roster:manage"))):
    reviewers = _service().list_reviewers()
    return {"success": True, "message": "Reviewer data retrieved successfully", "data": reviewers}


@router.get("/delete-reviewer/{reviewer_id}")
async def delete_reviewer(
    reviewer_id: str,
    _principal: Principal = Depends(require_action("roster:manage")),
):
    _service().delete_reviewer(reviewer_id)
    return {"success": True, "message": "Reviewer deleted successfully"}
