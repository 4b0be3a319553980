"""OpenAI-compatible routes."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from jimmygate.adapters.openai_compat.mapper import (
    build_upstream_payload,
    make_id,
    resolve_model,
    to_chat_response,
)
from jimmygate.adapters.openai_compat.stream_utils import (
    _build_streaming_response,
    iter_upstream_bytes,
    translate_chat_stream,
)
from jimmygate.adapters.openai_compat.upstream import (
    fetch_models_payload,
    open_chat_stream,
    read_text,
)
from jimmygate.config.settings import settings
from jimmygate.core.errors import InvalidRequestError
from jimmygate.core.model_cache import ModelDirectoryCache
from jimmygate.core.security_boundary import require_api_key
from jimmygate.util.logger import logger


router = APIRouter()
models_cache = ModelDirectoryCache(
    fetcher=fetch_models_payload,
    ttl_seconds=settings.models_cache_ttl_seconds,
)
_CHAT_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]
# 调试时请求体日志最大长度，避免日志过长
_DEBUG_REQUEST_BODY_MAX_CHARS = 4000


def _should_stream(payload: dict[str, Any]) -> bool:
    return bool(payload.get("stream") is True)


def _should_include_usage(payload: dict[str, Any]) -> bool:
    options = payload.get("stream_options")
    return isinstance(options, dict) and bool(options.get("include_usage"))


def _log_request_if_debug(payload: dict[str, Any], route: str) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    try:
        body_str = json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        body_str = str(payload)
    logger.debug(
        "incoming request route=%s body_size=%d body=%s",
        route,
        len(body_str),
        body_str[:_DEBUG_REQUEST_BODY_MAX_CHARS],
    )


async def _read_json_body(request: Request) -> Any:
    limit = int(settings.max_request_body_bytes)
    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if limit > 0 and size > limit:
            logger.warning("request body too large size>%s max=%s path=%s", size, limit, request.url.path)
            raise InvalidRequestError(
                f"Request body exceeds {limit} bytes",
                status_code=413,
                code="request_body_too_large",
            )
        chunks.append(chunk)

    raw = b"".join(chunks).decode("utf-8", errors="replace").strip()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise InvalidRequestError("Request body must be valid JSON") from exc


def _validate_chat_payload(payload: Any) -> dict[str, Any]:
    body = payload if isinstance(payload, dict) else {}
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidRequestError("`messages` must be a non-empty array", param="messages")
    tools = body.get("tools")
    if isinstance(tools, list) and tools:
        raise InvalidRequestError(
            "This proxy does not support tool calling yet. Remove `tools` and retry.",
            param="tools",
        )
    return body


@router.get("/models", dependencies=[Depends(require_api_key)])
async def list_models() -> JSONResponse:
    payload = await models_cache.get()
    return JSONResponse(content=payload)


@router.get("/models/{model_id:path}", dependencies=[Depends(require_api_key)])
async def retrieve_model(model_id: str) -> JSONResponse:
    if not model_id:
        raise InvalidRequestError("Model id is required", param="model")
    model = await models_cache.get_by_id(model_id)
    if model is None:
        raise InvalidRequestError(
            f"Model '{model_id}' not found",
            status_code=404,
            code="model_not_found",
            param="model",
        )
    return JSONResponse(content=model)


@router.api_route(
    "/chat/completions",
    methods=_CHAT_METHODS,
    dependencies=[Depends(require_api_key)],
    response_model=None,
)
async def chat_completions(request: Request) -> JSONResponse | StreamingResponse:
    if request.method != "POST":
        raise InvalidRequestError("Method not allowed", status_code=405)

    body = _validate_chat_payload(await _read_json_body(request))
    _log_request_if_debug(body, "/v1/chat/completions")

    model = resolve_model(body)
    upstream_payload = build_upstream_payload(body, model)
    if not upstream_payload.messages:
        raise InvalidRequestError("No usable non-system messages found in request", param="messages")

    upstream = await open_chat_stream(upstream_payload.to_wire())

    completion_id = make_id("chatcmpl")
    created = int(time.time())

    if _should_stream(body):
        logger.info("chat stream started id=%s model=%s messages=%d", completion_id, model, len(upstream_payload.messages))
        generator = translate_chat_stream(
            iter_upstream_bytes(upstream),
            completion_id=completion_id,
            model=model,
            created=created,
            include_usage=_should_include_usage(body),
        )
        return _build_streaming_response(generator)

    upstream_text = await read_text(upstream)
    output = to_chat_response(upstream_text, completion_id=completion_id, model=model, created=created)
    logger.info(
        "chat completion completed id=%s model=%s finish_reason=%s",
        completion_id,
        model,
        output["choices"][0]["finish_reason"],
    )
    return JSONResponse(content=output)
