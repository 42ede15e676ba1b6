import os
import sys
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Callable, Iterable, Optional

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Import app from the correct location
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from main import app

from app.core import roles as roles_module
from utils.fake_store import InMemoryArticleStore

# === 全局测试配置 ===
# 中文注释:
# 1. 显式使用 pytest_asyncio.fixture，兼容 STRICT 模式。
# 2. JWT 令牌用 PyJWT 生成，与后端 python-jose 的 HS256 校验互通。
# 3. 账号/角色通过替换 roles 模块里的 supabase 客户端控制，不连真实数据库。

TEST_USER_ID = "00000000-0000-0000-0000-000000000000"
TEST_EMAIL = "test@example.com"


@pytest_asyncio.fixture
async def client() -> AsyncGenerator:
    """
    提供一个模拟的异步测试客户端
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver"
    ) as ac:
        yield ac


def generate_test_token(user_id: str = TEST_USER_ID, email: str = TEST_EMAIL, *, expires_in: timedelta = timedelta(hours=1)):
    secret = os.environ.get("AUTH_JWT_SECRET", "mock-secret-replace-later")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "exp": now + expires_in,
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def auth_token():
    return generate_test_token()


@pytest.fixture
def expired_token():
    return generate_test_token(expires_in=timedelta(hours=-1))


class _AccountQuery:
    def __init__(self, account: Optional[dict[str, Any]]):
        self._account = account

    def select(self, *_args: Any, **_kwargs: Any):
        return self

    def eq(self, *_args: Any, **_kwargs: Any):
        return self

    def limit(self, *_args: Any, **_kwargs: Any):
        return self

    def execute(self):
        return SimpleNamespace(data=[self._account] if self._account else [])


class _AccountSupabase:
    def __init__(self, account: Optional[dict[str, Any]]):
        self._account = account

    def table(self, _name: str):
        return _AccountQuery(self._account)


@pytest.fixture
def set_account(monkeypatch: pytest.MonkeyPatch) -> Callable[..., None]:
    """
    设置当前 token 对应的账号（roles 决定权限）；account=None 表示账号不存在。
    """

    def _set(roles: Iterable[str] = (), *, email: str = TEST_EMAIL, exists: bool = True) -> None:
        account = None
        if exists:
            account = {
                "id": TEST_USER_ID,
                "email": email,
                "first_name": "Test",
                "middle_name": None,
                "last_name": "User",
                "profile_picture": None,
                "roles": list(roles),
            }
        monkeypatch.setattr(roles_module, "supabase", _AccountSupabase(account))

    return _set


@pytest.fixture
def article_store() -> InMemoryArticleStore:
    return InMemoryArticleStore(
        accounts={
            "owner-1": {
                "first_name": "Ada",
                "middle_name": None,
                "last_name": "Owner",
                "email": "owner@example.com",
                "profile_picture": None,
            }
        }
    )
