import time
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.errors import ArticleDeskError

# === 结构化日志配置 ===
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("articledesk")


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """
    统一异常捕获中间件：记录请求耗时，兜底未处理异常为 500 信封。
    """
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            logger.info(f"Method: {request.method} Path: {request.url.path} Status: {response.status_code} Time: {process_time:.4f}s")
            return response
        except Exception as e:
            logger.error(f"Unhandled Exception: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"success": False, "message": "Internal server error", "error": str(e)}
            )


def register_exception_handlers(app: FastAPI) -> None:
    """
    中文注释:
    - 所有失败都返回 {success: false, message, error?}，前端按 message 分支。
    - 请求体校验失败同样走信封，而不是 FastAPI 默认的 {detail: [...]}。
    """

    @app.exception_handler(ArticleDeskError)
    async def _articledesk_error(_request: Request, exc: ArticleDeskError):
        return JSONResponse(status_code=exc.status_code, content=exc.envelope())

    @app.exception_handler(HTTPException)
    async def _http_error(_request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc") or []), "msg": str(err.get("msg") or "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={"success": False, "message": "Invalid request body", "error": errors},
        )
