from __future__ import annotations

from typing import Any, Optional


class ArticleDeskError(Exception):
    """
    业务异常基类。

    中文注释:
    - 服务层只抛出本类及其子类，由 app 级 exception handler 统一转成
      {success: false, message, error} 信封。
    - error 字段保留底层异常（字符串化），方便前端按 message 分支处理。
    """

    status_code: int = 400
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None, *, error: Any = None):
        self.message = message or self.default_message
        self.error = error
        super().__init__(self.message)

    def envelope(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "message": self.message}
        if self.error is not None:
            body["error"] = str(self.error)
        return body


class NotFoundError(ArticleDeskError):
    status_code = 404
    default_message = "Not found"


class NotAssignedError(NotFoundError):
    default_message = "You are not assigned as a reviewer on this article"


class ValidationFailedError(ArticleDeskError):
    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(ArticleDeskError):
    status_code = 401
    default_message = "Unauthorized: Invalid token"


class ForbiddenError(ArticleDeskError):
    status_code = 403
    default_message = "Forbidden: Access denied"


class ConflictError(ArticleDeskError):
    status_code = 409
    default_message = "Conflict"


class ArchiveIOError(ArticleDeskError):
    # 与旧接口保持一致：打包失败返回 404 + 底层 IO 错误
    status_code = 404
    default_message = "Zip file creation failed"
