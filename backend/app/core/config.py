import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


def _env_int(key: str, default: int, *, minimum: int = 1) -> int:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(value, minimum)


@dataclass(frozen=True)
class AppConfig:
    """
    Application Environment Config
    """
    env: str  # 'development', 'staging', 'production'
    is_staging: bool
    supabase_url: str
    supabase_key: str

    @staticmethod
    def from_env() -> "AppConfig":
        env = (os.environ.get("APP_ENV") or "development").strip().lower()
        is_staging = env == "staging"

        supabase_url = (os.environ.get("SUPABASE_URL") or "").strip()
        supabase_key = (os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip()

        return AppConfig(
            env=env,
            is_staging=is_staging,
            supabase_url=supabase_url,
            supabase_key=supabase_key
        )

# Global Config Instance
app_config = AppConfig.from_env()


@dataclass(frozen=True)
class StorageConfig:
    """
    附件存储配置（本地文件系统）

    中文注释:
    1) 所有附件按类别落在 ATTACHMENTS_ROOT 下的子目录中。
    2) zip-files 目录只存放临时打包文件，60 秒后自动清理。
    """

    root: Path

    @property
    def archive_dir(self) -> Path:
        return self.root / "zip-files"

    @staticmethod
    def from_env() -> "StorageConfig":
        raw = (os.environ.get("ATTACHMENTS_ROOT") or "public/articles").strip()
        return StorageConfig(root=Path(raw))


@dataclass(frozen=True)
class WorkflowConfig:
    """
    审稿流程配置

    中文注释:
    - journal_scoping_enabled: 历史版本里 journalId 被注释掉，默认保持“返回全部稿件”的旧行为。
    - review_update_max_attempts: 乐观锁（version CAS）冲突时的最大重试次数。
    """

    journal_scoping_enabled: bool
    review_update_max_attempts: int

    @staticmethod
    def from_env() -> "WorkflowConfig":
        return WorkflowConfig(
            journal_scoping_enabled=_env_bool("JOURNAL_SCOPING_ENABLED", False),
            review_update_max_attempts=_env_int("REVIEW_UPDATE_MAX_ATTEMPTS", 5),
        )


@dataclass(frozen=True)
class SentryConfig:
    enabled: bool
    dsn: Optional[str]
    environment: str
    traces_sample_rate: float

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip() or None
        environment = (
            os.environ.get("SENTRY_ENVIRONMENT") or os.environ.get("APP_ENV") or "development"
        ).strip()

        rate_raw = (os.environ.get("SENTRY_TRACES_SAMPLE_RATE") or "0").strip()
        try:
            traces_sample_rate = min(max(float(rate_raw), 0.0), 1.0)
        except ValueError:
            traces_sample_rate = 0.0

        return SentryConfig(
            enabled=_env_bool("SENTRY_ENABLED", dsn is not None),
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
        )


def get_jwt_secret() -> str:
    """
    Bearer token 签名密钥（HS256）。

    中文注释: 本地/测试环境缺省时使用固定占位值，生产环境必须通过 AUTH_JWT_SECRET 注入。
    """

    return os.environ.get("AUTH_JWT_SECRET", "mock-secret-replace-later")
