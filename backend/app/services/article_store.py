from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from postgrest.exceptions import APIError

ARTICLES_TABLE = "articles"

# 中文注释: owner 通过 owner_id 外键嵌入 accounts 的轻量投影，不返回 roles 等敏感字段
OWNER_PROJECTION = "owner:accounts!owner_id(first_name,middle_name,last_name,profile_picture)"
OWNER_PROJECTION_WITH_EMAIL = (
    "owner:accounts!owner_id(first_name,middle_name,last_name,email,profile_picture)"
)
REVIEW_ASSIGNMENT_COLUMNS = "id,title,created_at,merged_script,reviewers"

# Postgres: invalid_text_representation（例如非法 uuid）
_INVALID_TEXT_REPRESENTATION = "22P02"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _rows(resp: Any) -> list[dict[str, Any]]:
    return list(getattr(resp, "data", None) or [])


def _email_containment(email: str) -> str:
    # jsonb @> '[{"email": "..."}]'
    return json.dumps([{"email": email}])


@dataclass
class ArticleStore:
    """
    articles 表的薄封装（Supabase / PostgREST）。

    中文注释:
    - authors / reviewers 以 jsonb 数组存储，按 email 用 `cs`（@>）包含查询；
    - 每一行带整数 version，所有写操作通过 `swap` 做 compare-and-swap，
      保证两个审稿人并发提交时不会互相覆盖。
    """

    client: Any

    def _table(self):
        return self.client.table(ARTICLES_TABLE)

    def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        rows = _rows(self._table().insert(row).execute())
        if not rows:
            raise RuntimeError("articles insert returned no rows")
        return rows[0]

    def get(self, article_id: str, columns: str = "*") -> Optional[dict[str, Any]]:
        try:
            resp = self._table().select(columns).eq("id", article_id).limit(1).execute()
        except APIError as e:
            if getattr(e, "code", None) == _INVALID_TEXT_REPRESENTATION:
                return None
            raise
        rows = _rows(resp)
        return rows[0] if rows else None

    def list_owned(self, owner_id: str) -> list[dict[str, Any]]:
        resp = (
            self._table()
            .select(f"*,{OWNER_PROJECTION}")
            .eq("owner_id", owner_id)
            .order("created_at")
            .execute()
        )
        return _rows(resp)

    def list_coauthored(self, email: str) -> list[dict[str, Any]]:
        resp = (
            self._table()
            .select(f"*,{OWNER_PROJECTION}")
            .filter("authors", "cs", _email_containment(email))
            .order("created_at")
            .execute()
        )
        return _rows(resp)

    def list_all(self, *, journal_id: Optional[str] = None) -> list[dict[str, Any]]:
        query = self._table().select(f"*,{OWNER_PROJECTION_WITH_EMAIL}")
        if journal_id is not None:
            query = query.eq("journal_id", journal_id)
        # id 作为次序键，保证同一时间戳下的输出顺序稳定
        try:
            resp = query.order("created_at").order("id").execute()
        except APIError as e:
            # journal_id 不是合法 uuid 时视为没有匹配的稿件
            if getattr(e, "code", None) == _INVALID_TEXT_REPRESENTATION:
                return []
            raise
        return _rows(resp)

    def list_assigned(self, reviewer_email: str) -> list[dict[str, Any]]:
        resp = (
            self._table()
            .select(REVIEW_ASSIGNMENT_COLUMNS)
            .filter("reviewers", "cs", _email_containment(reviewer_email))
            .order("created_at")
            .execute()
        )
        return _rows(resp)

    def swap(
        self, article_id: str, expected_version: int, fields: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        """
        仅当库中 version == expected_version 时写入 fields，并把 version +1。

        返回写入后的行；版本已变化（并发写）时返回 None。
        """
        payload = {**fields, "version": int(expected_version) + 1, "updated_at": _utc_now_iso()}
        resp = (
            self._table()
            .update(payload)
            .eq("id", article_id)
            .eq("version", int(expected_version))
            .execute()
        )
        rows = _rows(resp)
        return rows[0] if rows else None
