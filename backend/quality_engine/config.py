import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, model_validator

# Load environment variables
load_dotenv()

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_DATABASE_URL = "sqlite:///./quality.db"


class QualityPolicy(BaseModel):
    """Tunable constants for caching, scoring and trend detection."""

    message_weight: float = Field(default=0.4, ge=0, le=1)
    code_weight: float = Field(default=0.6, ge=0, le=1)
    cache_ttl_hours: float = Field(default=4, gt=0)
    commit_bucket_size: int = Field(default=10, gt=0)
    trend_window: int = Field(default=7, gt=0)
    trend_threshold: float = Field(default=0.05, ge=0)
    max_concurrent_diffs: int = Field(default=4, gt=0)
    analysis_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    default_model: str = DEFAULT_MODEL

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _weights_sum_to_one(self):
        if abs(self.message_weight + self.code_weight - 1.0) > 1e-9:
            raise ValueError("message_weight and code_weight must sum to 1")
        return self


class Settings(BaseModel):
    database_url: str = DEFAULT_DATABASE_URL
    openai_api_key: Optional[SecretStr] = None
    github_token: Optional[str] = None
    log_level: str = "INFO"
    policy: QualityPolicy = Field(default_factory=QualityPolicy)


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def load_policy() -> QualityPolicy:
    """Build the policy from QUALITY_* environment variables."""
    return QualityPolicy(
        message_weight=_env_float("QUALITY_MESSAGE_WEIGHT", 0.4),
        code_weight=_env_float("QUALITY_CODE_WEIGHT", 0.6),
        cache_ttl_hours=_env_float("QUALITY_CACHE_TTL_HOURS", 4),
        commit_bucket_size=_env_int("QUALITY_COMMIT_BUCKET_SIZE", 10),
        trend_window=_env_int("QUALITY_TREND_WINDOW", 7),
        trend_threshold=_env_float("QUALITY_TREND_THRESHOLD", 0.05),
        max_concurrent_diffs=_env_int("QUALITY_MAX_CONCURRENT_DIFFS", 4),
        analysis_timeout_seconds=_env_float("QUALITY_ANALYSIS_TIMEOUT", None),
        default_model=os.getenv("OPENAI_MODEL", DEFAULT_MODEL),
    )


def database_url_from_env() -> str:
    """DATABASE_URL wins; otherwise MYSQL_* variables; otherwise local SQLite."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    mysql_host = os.getenv("MYSQL_HOST")
    if mysql_host:
        mysql_port = os.getenv("MYSQL_PORT", "3306")
        mysql_user = os.getenv("MYSQL_USER", "codeanalysis")
        mysql_password = os.getenv("MYSQL_PASSWORD", "secret")
        mysql_database = os.getenv("MYSQL_DATABASE", "codeanalysis")
        return f"mysql+mysqlconnector://{mysql_user}:{mysql_password}@{mysql_host}:{mysql_port}/{mysql_database}"

    return DEFAULT_DATABASE_URL


def get_settings() -> Settings:
    api_key = os.getenv("OPENAI_API_KEY")
    return Settings(
        database_url=database_url_from_env(),
        openai_api_key=SecretStr(api_key) if api_key else None,
        github_token=os.getenv("GITHUB_TOKEN") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        policy=load_policy(),
    )
