"""
SSE chunk building and the upstream text stream -> OpenAI chunk translator.
"""

from __future__ import annotations

import codecs
import json
from typing import Any, AsyncGenerator, AsyncIterable

import httpx
from fastapi.responses import StreamingResponse

from jimmygate.adapters.openai_compat.mapper import map_finish_reason, usage_from_stats
from jimmygate.core.stats_sentinel import StatsStreamDecoder
from jimmygate.util.logger import logger


def _sse_frame(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def _stream_chunk(
    *,
    completion_id: str,
    model: str,
    created: int,
    choices: list[dict[str, Any]],
) -> dict[str, Any]:
    return {
        "id": completion_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": choices,
    }


def _stream_delta_sse_chunk(completion_id: str, model: str, created: int, delta: dict[str, Any]) -> bytes:
    chunk = _stream_chunk(
        completion_id=completion_id,
        model=model,
        created=created,
        choices=[{"index": 0, "delta": delta, "finish_reason": None}],
    )
    return _sse_frame(chunk)


def _stream_finish_sse_chunk(completion_id: str, model: str, created: int, finish_reason: str) -> bytes:
    chunk = _stream_chunk(
        completion_id=completion_id,
        model=model,
        created=created,
        choices=[{"index": 0, "delta": {}, "finish_reason": finish_reason}],
    )
    return _sse_frame(chunk)


def _stream_usage_sse_chunk(completion_id: str, model: str, created: int, usage: dict[str, Any] | None) -> bytes:
    chunk = _stream_chunk(completion_id=completion_id, model=model, created=created, choices=[])
    if usage is not None:
        chunk["usage"] = usage
    return _sse_frame(chunk)


def _stream_done_sse_chunk() -> bytes:
    return b"data: [DONE]\n\n"


async def translate_chat_stream(
    chunks: AsyncIterable[bytes],
    *,
    completion_id: str,
    model: str,
    created: int,
    include_usage: bool,
) -> AsyncGenerator[bytes, None]:
    """Re-frame the upstream raw text stream as OpenAI ``chat.completion.chunk`` frames."""
    byte_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    stats_decoder = StatsStreamDecoder()
    role_sent = False
    delta_count = 0

    def emit(text: str) -> bytes:
        nonlocal role_sent, delta_count
        delta = {"content": text} if role_sent else {"role": "assistant", "content": text}
        role_sent = True
        delta_count += 1
        return _stream_delta_sse_chunk(completion_id, model, created, delta)

    async for raw in chunks:
        for piece in stats_decoder.feed(byte_decoder.decode(raw)):
            yield emit(piece)

    for piece in stats_decoder.finish(byte_decoder.decode(b"", final=True)):
        yield emit(piece)

    stats = stats_decoder.stats
    finish_reason = map_finish_reason(stats)
    yield _stream_finish_sse_chunk(completion_id, model, created, finish_reason)
    if include_usage:
        yield _stream_usage_sse_chunk(completion_id, model, created, usage_from_stats(stats))
    yield _stream_done_sse_chunk()
    logger.info(
        "chat stream completed id=%s deltas=%d finish_reason=%s stats_found=%s",
        completion_id,
        delta_count,
        finish_reason,
        stats is not None,
    )


async def iter_upstream_bytes(response: httpx.Response) -> AsyncGenerator[bytes, None]:
    """Yield the upstream body and always release the connection."""
    try:
        async for raw in response.aiter_bytes():
            yield raw
    except httpx.HTTPError as exc:
        # 已开始推流，无法再改成 JSON 错误，只能断开连接
        logger.error("chat stream upstream failure url=%s error=%s", response.request.url, exc)
        raise
    finally:
        await response.aclose()


def _build_streaming_response(generator: AsyncIterable[bytes]) -> StreamingResponse:
    return StreamingResponse(
        generator,
        media_type="text/event-stream; charset=utf-8",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "X-Accel-Buffering": "no",
        },
    )
