import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.core.config import get_jwt_secret
from app.core.errors import UnauthorizedError

logger = logging.getLogger("articledesk.auth")

# === Auth 核心配置 ===
# 中文注释:
# 1. Token 由身份服务签发（HS256），这里只负责校验，不负责签发/续期。
# 2. auto_error=False：缺少 Authorization 头时由我们自己返回统一的 401 信封。
ALGORITHM = "HS256"

security = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> dict:
    """
    解码并验证 Bearer Token，返回 {"id", "email"}。

    中文注释: 兼容旧 token 载荷里的 `_id` 字段（历史上用它存账号 id）。
    """
    try:
        payload = jwt.decode(token, get_jwt_secret(), algorithms=[ALGORITHM], options={"verify_aud": False})
    except JWTError as e:
        logger.info("JWT 验证失败: %s", e)
        raise UnauthorizedError(error=e)

    user_id = payload.get("sub") or payload.get("_id")
    if not user_id:
        raise UnauthorizedError("Unauthorized: Invalid token payload")
    return {"id": str(user_id), "email": payload.get("email")}


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    if credentials is None or not (credentials.credentials or "").strip():
        raise UnauthorizedError("Unauthorized: No token provided")
    return decode_access_token(credentials.credentials.strip())
