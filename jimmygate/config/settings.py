"""Runtime settings."""

from __future__ import annotations

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def parse_positive_int(value: object) -> int | None:
    """Leading-integer parse; returns None for blanks, garbage and values < 1."""
    if value is None or isinstance(value, bool):
        return None
    matched = _LEADING_INT_RE.match(str(value))
    if not matched:
        return None
    parsed = int(matched.group(1))
    if parsed < 1:
        return None
    return parsed


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="JIMMYGATE_", extra="ignore")

    app_name: str = "JimmyGate"
    log_level: str = "info"
    log_to_file: bool = True
    log_dir: str = "logs"
    host: str = "0.0.0.0"
    port: int = 3000
    max_request_body_bytes: int = 2_000_000

    upstream_base_url: str = "https://chatjimmy.ai"
    upstream_models_path: str = "/api/models"
    upstream_chat_path: str = "/api/chat"
    upstream_timeout_seconds: float = 120.0
    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20

    # 为空时不校验 Authorization 头
    proxy_api_key: str = ""
    default_system_prompt: str = ""
    default_top_k: int | None = None
    default_model: str = "llama3.1-8B"
    # 0 表示不缓存模型列表，每次都回源
    models_cache_ttl_seconds: float = Field(default=30.0, ge=0.0)

    @field_validator("upstream_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("default_top_k", mode="before")
    @classmethod
    def _coerce_top_k(cls, value: object) -> int | None:
        return parse_positive_int(value)


settings = Settings()
