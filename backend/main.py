import logging
import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from dotenv import load_dotenv

# 在应用启动前加载环境变量
load_dotenv()

logger = logging.getLogger("articledesk")

_SENTRY_ENABLED = False
try:
    from app.core.sentry_init import init_sentry

    _SENTRY_ENABLED = init_sentry()
    if _SENTRY_ENABLED:
        logger.info("[sentry] enabled")
except Exception as e:
    # 中文注释: 零崩溃原则，Sentry 任何异常不得阻塞启动
    logger.warning(f"[sentry] init failed (ignored): {e}")

from app.api.v1 import archives, articles, reviewers
from app.core.middleware import ExceptionHandlerMiddleware, register_exception_handlers
from app.core.rate_limit import RateLimitMiddleware
from app.services.archive_service import get_archive_packager


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 中文注释: 旧进程遗留的 zip 已经没有定时器，启动时统一清理
    packager = get_archive_packager()
    try:
        packager.purge_stale()
    except OSError as e:
        logger.warning(f"[archive] purge stale archives failed (ignored): {e}")
    yield
    packager.shutdown()


app = FastAPI(
    title="ArticleDesk API",
    description="Journal article submission and review backend",
    version="1.0.0",
    lifespan=lifespan,
)


def _parse_frontend_origins() -> list[str]:
    """
    允许跨域的前端 Origins：FRONTEND_ORIGIN 与 FRONTEND_ORIGINS（逗号分隔）合并去重，
    都未配置时只放行本地开发地址。
    """
    raw = ",".join(os.environ.get(k) or "" for k in ("FRONTEND_ORIGIN", "FRONTEND_ORIGINS"))
    origins = [o.strip().rstrip("/") for o in raw.split(",") if o.strip()]
    return list(dict.fromkeys(origins)) or ["http://localhost:3000"]


# === 中间件配置 ===
# 1. 跨域资源共享 (CORS) - 允许前端访问
app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_frontend_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

# 2. 限流（测试环境自动关闭）
app.add_middleware(RateLimitMiddleware)

# 3. 统一异常处理
app.add_middleware(ExceptionHandlerMiddleware)
register_exception_handlers(app)

# === 路由注册 ===
app.include_router(articles.router, prefix="/api/v1")
app.include_router(archives.router, prefix="/api/v1")
app.include_router(reviewers.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"success": True, "message": "ArticleDesk API is running", "docs": "/docs"}
