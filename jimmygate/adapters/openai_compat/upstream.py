"""
Upstream HTTP client: shared httpx.AsyncClient, timeouts and error mapping.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx

from jimmygate.config.settings import settings
from jimmygate.core.errors import UpstreamError, UpstreamTimeoutError
from jimmygate.util.logger import logger

_ERROR_DETAIL_MAX_CHARS = 600

_upstream_async_client: httpx.AsyncClient | None = None
_upstream_client_lock: asyncio.Lock | None = None


def _upstream_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _upstream_http_timeout() -> httpx.Timeout:
    timeout = float(settings.upstream_timeout_seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


async def _get_upstream_async_client() -> httpx.AsyncClient:
    global _upstream_async_client, _upstream_client_lock
    if _upstream_async_client is not None:
        return _upstream_async_client
    if _upstream_client_lock is None:
        _upstream_client_lock = asyncio.Lock()
    async with _upstream_client_lock:
        if _upstream_async_client is None:
            _upstream_async_client = httpx.AsyncClient(
                http2=False,
                timeout=_upstream_http_timeout(),
                limits=_upstream_http_limits(),
            )
    return _upstream_async_client


async def close_upstream_async_client() -> None:
    global _upstream_async_client
    if _upstream_async_client is not None:
        await _upstream_async_client.aclose()
        _upstream_async_client = None


def _reject_non_finite(token: str) -> Any:
    # 只接受标准 JSON，拒绝 NaN / Infinity
    raise ValueError(f"non-standard JSON constant: {token}")


def _upstream_url(path: str) -> str:
    route_path = path if path.startswith("/") else f"/{path}"
    return f"{settings.upstream_base_url}{route_path}"


def _error_message(raw: str, status_code: int) -> str:
    """Pick a readable message out of an upstream error body."""
    message = raw.strip() or f"Upstream returned {status_code}"
    try:
        parsed = json.loads(raw)
    except ValueError:
        return message[:_ERROR_DETAIL_MAX_CHARS]
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, str) and error:
            return error[:_ERROR_DETAIL_MAX_CHARS]
        if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
            return error["message"][:_ERROR_DETAIL_MAX_CHARS]
        if isinstance(parsed.get("message"), str) and parsed["message"]:
            return parsed["message"][:_ERROR_DETAIL_MAX_CHARS]
    return message[:_ERROR_DETAIL_MAX_CHARS]


def _translate_http_error(exc: httpx.HTTPError, url: str) -> UpstreamError:
    if isinstance(exc, httpx.TimeoutException):
        logger.warning("upstream timeout url=%s timeout=%s", url, settings.upstream_timeout_seconds)
        return UpstreamTimeoutError("Upstream request timed out")
    detail = (str(exc) or "").strip() or "connection_failed"
    logger.warning("upstream http_error url=%s error=%s", url, detail)
    return UpstreamError(f"upstream_unreachable: {detail}", status_code=502, code="upstream_unreachable")


async def fetch_models_payload() -> Any:
    url = _upstream_url(settings.upstream_models_path)
    logger.debug("fetch_models start url=%s", url)
    client = await _get_upstream_async_client()
    try:
        response = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        raise _translate_http_error(exc, url) from exc

    raw = response.text
    logger.debug("fetch_models done url=%s status=%s", url, response.status_code)
    if not response.is_success:
        raise UpstreamError(_error_message(raw, response.status_code), status_code=response.status_code)
    try:
        return json.loads(raw, parse_constant=_reject_non_finite)
    except ValueError as exc:
        logger.warning("upstream models response is not json url=%s", url)
        raise UpstreamError("Upstream models response is not valid JSON", status_code=502) from exc


async def open_chat_stream(payload: dict[str, Any]) -> httpx.Response:
    """POST the chat payload and return the response with its body still unread.

    The caller owns the response and must ``aclose()`` it.
    """
    url = _upstream_url(settings.upstream_chat_path)
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    logger.debug("open_chat_stream start url=%s payload_bytes=%d", url, len(body))
    client = await _get_upstream_async_client()
    request = client.build_request(
        "POST",
        url,
        content=body,
        headers={"Content-Type": "application/json", "Accept": "text/event-stream"},
    )
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as exc:
        raise _translate_http_error(exc, url) from exc

    logger.debug("open_chat_stream connected url=%s status=%s", url, response.status_code)
    if not response.is_success:
        try:
            raw = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError as exc:
            raise _translate_http_error(exc, url) from exc
        finally:
            await response.aclose()
        message = _error_message(raw, response.status_code)
        logger.warning("upstream chat http error status=%s detail=%s", response.status_code, message)
        raise UpstreamError(message, status_code=response.status_code)
    return response


async def read_text(response: httpx.Response) -> str:
    """Read a streamed response body to the end as UTF-8 text."""
    try:
        raw = await response.aread()
    except httpx.HTTPError as exc:
        raise _translate_http_error(exc, str(response.request.url)) from exc
    finally:
        await response.aclose()
    return raw.decode("utf-8", errors="replace")
