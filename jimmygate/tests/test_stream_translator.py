import asyncio
import json
from collections.abc import AsyncGenerator

import httpx
import pytest

from jimmygate.adapters.openai_compat.stream_utils import iter_upstream_bytes, translate_chat_stream

STATS_JSON = '{"done_reason":"length","prefill_tokens":10,"decode_tokens":5,"total_tokens":15}'


async def _chunks(parts: list[bytes]) -> AsyncGenerator[bytes, None]:
    for part in parts:
        yield part


def _run(parts: list[bytes], include_usage: bool = False) -> list[str]:
    async def run_case() -> list[bytes]:
        frames = []
        async for frame in translate_chat_stream(
            _chunks(parts),
            completion_id="chatcmpl-test",
            model="m1",
            created=1700000000,
            include_usage=include_usage,
        ):
            frames.append(frame)
        return frames

    return [frame.decode("utf-8") for frame in asyncio.run(run_case())]


def _payloads(frames: list[str]) -> list[dict]:
    payloads = []
    for frame in frames:
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        body = frame[len("data: "):-2]
        if body == "[DONE]":
            continue
        payloads.append(json.loads(body))
    return payloads


def _content(payloads: list[dict]) -> str:
    return "".join(
        p["choices"][0]["delta"].get("content", "") for p in payloads if p["choices"] and p["choices"][0]["finish_reason"] is None
    )


def test_stream_emits_role_once_then_content_finish_and_done():
    body = f"Hello there, this is a longer answer.<|stats|>{STATS_JSON}<|/stats|>".encode("utf-8")
    frames = _run([body[i:i + 5] for i in range(0, len(body), 5)])
    payloads = _payloads(frames)

    assert frames[-1] == "data: [DONE]\n\n"
    deltas = [p for p in payloads if p["choices"][0]["finish_reason"] is None]
    assert deltas[0]["choices"][0]["delta"]["role"] == "assistant"
    assert all("role" not in p["choices"][0]["delta"] for p in deltas[1:])
    assert _content(payloads) == "Hello there, this is a longer answer."

    finish = payloads[-1]
    assert finish["object"] == "chat.completion.chunk"
    assert finish["id"] == "chatcmpl-test"
    assert finish["choices"][0]["delta"] == {}
    assert finish["choices"][0]["finish_reason"] == "length"


def test_stream_usage_chunk_when_requested():
    body = f"Hi<|stats|>{STATS_JSON}<|/stats|>".encode("utf-8")
    payloads = _payloads(_run([body], include_usage=True))
    usage_chunk = payloads[-1]
    assert usage_chunk["choices"] == []
    assert usage_chunk["usage"] == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}
    assert payloads[-2]["choices"][0]["finish_reason"] == "length"


def test_stream_usage_chunk_without_stats_has_no_usage_key():
    payloads = _payloads(_run([b"no stats at all"], include_usage=True))
    assert payloads[-1]["choices"] == []
    assert "usage" not in payloads[-1]
    assert payloads[-2]["choices"][0]["finish_reason"] == "stop"
    assert _content(payloads) == "no stats at all"


def test_stream_handles_multibyte_split_across_reads():
    text = "héllo wörld ✓ done"
    raw = text.encode("utf-8")
    split = raw.index("✓".encode("utf-8")) + 1
    payloads = _payloads(_run([raw[:split], raw[split:]]))
    assert _content(payloads) == text


def test_stream_empty_upstream_still_terminates():
    frames = _run([])
    payloads = _payloads(frames)
    assert len(payloads) == 1
    assert payloads[0]["choices"][0]["finish_reason"] == "stop"
    assert frames[-1] == "data: [DONE]\n\n"


@pytest.mark.asyncio
async def test_iter_upstream_bytes_closes_response():
    transport = httpx.MockTransport(lambda _request: httpx.Response(200, content=b"abc"))
    async with httpx.AsyncClient(transport=transport) as client:
        response = await client.send(client.build_request("POST", "https://upstream.example.com/api/chat"), stream=True)
        collected = b"".join([chunk async for chunk in iter_upstream_bytes(response)])
    assert collected == b"abc"
    assert response.is_closed


def test_stream_emits_stray_end_marker_as_prose():
    payloads = _payloads(_run([b"before <|/stats|> after"]))
    assert _content(payloads) == "before <|/stats|> after"
    assert payloads[-1]["choices"][0]["finish_reason"] == "stop"


class _ResetAfterFirstChunk(httpx.AsyncByteStream):
    def __init__(self) -> None:
        self.closed = False

    async def __aiter__(self):
        yield b"partial answer before reset "
        raise httpx.ReadError("connection reset by peer")

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_mid_stream_upstream_failure_propagates_and_closes():
    stream = _ResetAfterFirstChunk()
    transport = httpx.MockTransport(lambda _request: httpx.Response(200, stream=stream))
    frames: list[bytes] = []
    async with httpx.AsyncClient(transport=transport) as client:
        response = await client.send(client.build_request("POST", "https://upstream.example.com/api/chat"), stream=True)
        with pytest.raises(httpx.ReadError):
            async for frame in translate_chat_stream(
                iter_upstream_bytes(response),
                completion_id="chatcmpl-test",
                model="m1",
                created=1700000000,
                include_usage=True,
            ):
                frames.append(frame)

    assert response.is_closed
    assert stream.closed
    assert frames
    assert b"partial answer" in frames[0]
    assert all(b"[DONE]" not in frame for frame in frames)
    assert all(b'"error"' not in frame for frame in frames)
