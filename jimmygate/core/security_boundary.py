"""Static bearer-token gate for the proxy API."""

from __future__ import annotations

import hmac
import re

from fastapi import Request

from jimmygate.config.settings import settings
from jimmygate.core.errors import AuthenticationError
from jimmygate.util.logger import logger

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def extract_bearer_token(authorization: str | None) -> str | None:
    if not isinstance(authorization, str):
        return None
    matched = _BEARER_RE.match(authorization)
    return matched.group(1) if matched else None


def verify_api_key(presented: str | None, expected: str) -> bool:
    if not expected:
        return True
    if presented is None:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


async def require_api_key(request: Request) -> None:
    """FastAPI dependency; no-op when no proxy key is configured."""
    token = extract_bearer_token(request.headers.get("authorization"))
    if not verify_api_key(token, settings.proxy_api_key):
        logger.warning(
            "auth rejected path=%s token_present=%s",
            request.url.path,
            token is not None,
        )
        raise AuthenticationError("Invalid API key", status_code=401)
