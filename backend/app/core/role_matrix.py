from __future__ import annotations

from enum import Enum
from typing import Iterable


class Role(str, Enum):
    EDITOR = "editor"
    REVIEWER = "reviewer"
    SUPER_ADMIN = "super_admin"


# 中文注释：
# - 这里集中定义“角色 -> 动作”权限矩阵，避免权限逻辑散落在各路由。
# - 角色之间不存在隐式继承：editor 不会自动拥有 reviewer 的动作，super_admin 也不是通配。
# - 任何已登录账号都可以投稿/查看自己的稿件，这两个动作不挂在角色上。
ROLE_ACTIONS: dict[Role, set[str]] = {
    Role.EDITOR: {
        "article:update",
        "article:assign_reviewers",
        "archive:create",
        "roster:manage",
    },
    Role.REVIEWER: {
        "review:list",
        "review:submit",
    },
    Role.SUPER_ADMIN: {
        "roster:manage",
    },
}


def normalize_roles(roles: Iterable[str] | None) -> frozenset[Role]:
    """
    将输入角色归一化（小写、去空、丢弃未知角色）。
    """
    out: set[Role] = set()
    for raw in roles or []:
        value = str(raw.value if isinstance(raw, Role) else raw or "").strip().lower()
        if not value:
            continue
        try:
            out.add(Role(value))
        except ValueError:
            continue
    return frozenset(out)


def can_perform_action(*, action: str, roles: Iterable[str] | None) -> bool:
    for role in normalize_roles(roles):
        if action in ROLE_ACTIONS.get(role, set()):
            return True
    return False
