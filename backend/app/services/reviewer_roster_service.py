from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from app.core.errors import ConflictError, NotFoundError, ValidationFailedError
from app.core.role_matrix import Role, normalize_roles
from app.models.article import normalize_email
from app.schemas.reviewer import ReviewerCreate, ReviewerDraft

logger = logging.getLogger("articledesk.roster")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _rows(resp: Any) -> list[dict[str, Any]]:
    return list(getattr(resp, "data", None) or [])


@dataclass
class ReviewerRosterService:
    """
    审稿人名册（reviewers 表）。

    中文注释:
    - 名册与稿件内嵌的 reviewer 记录相互独立，后者只按 email 匹配；
    - 加入名册时给同 email 的账号授予 reviewer 角色，移出名册时收回。
    """

    client: Any

    def list_reviewers(self) -> list[dict[str, Any]]:
        resp = self.client.table("reviewers").select("*").order("created_at").execute()
        return _rows(resp)

    def add_reviewer(self, payload: ReviewerCreate) -> dict[str, Any]:
        existing = (
            self.client.table("reviewers").select("id").eq("email", payload.email).limit(1).execute()
        )
        if _rows(existing):
            raise ConflictError("Reviewer already exists")

        row = {"id": str(uuid.uuid4()), **payload.model_dump(), "created_at": _utc_now_iso()}
        created = _rows(self.client.table("reviewers").insert(row).execute())
        self._set_reviewer_role(payload.email, enabled=True)
        logger.info("[Roster] reviewer added email=%s", payload.email)
        return created[0] if created else row

    def add_bulk(self, drafts: list[ReviewerDraft]) -> list[dict[str, Any]]:
        known = {
            normalize_email(r.get("email"))
            for r in _rows(self.client.table("reviewers").select("email").execute())
        }
        rows: list[dict[str, Any]] = []
        for draft in drafts:
            if not draft.is_complete():
                continue
            email = normalize_email(draft.email)
            if email in known:
                continue
            known.add(email)
            rows.append(
                {
                    "id": str(uuid.uuid4()),
                    "first_name": draft.first_name.strip(),
                    "last_name": draft.last_name.strip(),
                    "email": email,
                    "affiliation": draft.affiliation.strip(),
                    "created_at": _utc_now_iso(),
                }
            )
        if not rows:
            raise ValidationFailedError("All reviewers already exists")

        created = _rows(self.client.table("reviewers").insert(rows).execute())
        for row in rows:
            self._set_reviewer_role(row["email"], enabled=True)
        logger.info("[Roster] bulk added %s reviewer(s)", len(rows))
        return created or rows

    def delete_reviewer(self, reviewer_id: str) -> dict[str, Any]:
        deleted = _rows(self.client.table("reviewers").delete().eq("id", reviewer_id).execute())
        if not deleted:
            raise NotFoundError("Reviewer not found")
        reviewer = deleted[0]
        self._set_reviewer_role(reviewer.get("email"), enabled=False)
        logger.info("[Roster] reviewer removed email=%s", reviewer.get("email"))
        return reviewer

    def _set_reviewer_role(self, email: Any, *, enabled: bool) -> None:
        email = normalize_email(email)
        if not email:
            return
        accounts = _rows(
            self.client.table("accounts").select("id,roles").eq("email", email).limit(1).execute()
        )
        if not accounts:
            # 尚未注册的审稿人：注册后由编辑再次加入名册即可获得角色
            return
        account = accounts[0]
        roles = set(normalize_roles(account.get("roles")))
        if enabled:
            roles.add(Role.REVIEWER)
        else:
            roles.discard(Role.REVIEWER)
        self.client.table("accounts").update(
            {"roles": sorted(r.value for r in roles)}
        ).eq("id", account["id"]).execute()
