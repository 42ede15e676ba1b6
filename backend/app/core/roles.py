from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import Depends, Request

from app.core.auth_utils import get_current_user
from app.core.errors import ForbiddenError, UnauthorizedError
from app.core.role_matrix import Role, can_perform_action, normalize_roles
from app.lib.api_client import supabase

logger = logging.getLogger("articledesk.auth")

_ACCOUNT_COLUMNS = "id,email,first_name,middle_name,last_name,profile_picture,roles"


@dataclass(frozen=True)
class Principal:
    """
    当前请求的身份主体（每个请求只解析一次，请求内不可变）。
    """

    id: str
    email: str
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    profile_picture: Optional[str] = None
    roles: frozenset[Role] = frozenset()

    def can(self, action: str) -> bool:
        return can_perform_action(action=action, roles=self.roles)


def _load_account(user_id: str) -> Optional[dict[str, Any]]:
    resp = supabase.table("accounts").select(_ACCOUNT_COLUMNS).eq("id", user_id).limit(1).execute()
    rows = getattr(resp, "data", None) or []
    return rows[0] if rows else None


def principal_from_account(account: dict[str, Any]) -> Principal:
    return Principal(
        id=str(account.get("id")),
        email=str(account.get("email") or "").strip().lower(),
        first_name=account.get("first_name") or "",
        middle_name=account.get("middle_name") or "",
        last_name=account.get("last_name") or "",
        profile_picture=account.get("profile_picture"),
        roles=normalize_roles(account.get("roles")),
    )


async def get_current_principal(
    request: Request,
    current_user: dict = Depends(get_current_user),
) -> Principal:
    """
    解析当前账号的 Principal（含角色集合）。

    中文注释:
    1) Token 只携带账号 id，角色以 accounts 表为准。
    2) 结果缓存在 request.state 上，同一请求内多个依赖共享同一个不可变对象。
    """
    cached = getattr(request.state, "principal", None)
    if isinstance(cached, Principal):
        return cached

    try:
        account = _load_account(current_user["id"])
    except Exception as e:
        logger.error("Failed to load account %s: %s", current_user.get("id"), e)
        raise UnauthorizedError(error=e)
    if not account:
        raise UnauthorizedError()

    principal = principal_from_account(account)
    request.state.principal = principal
    return principal


def require_action(action: str) -> Callable[..., Any]:
    async def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.can(action):
            raise ForbiddenError()
        return principal

    return _dep
