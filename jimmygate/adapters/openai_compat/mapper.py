"""OpenAI <-> upstream chat schema mapping."""

from __future__ import annotations

import math
import uuid
from typing import Any

from jimmygate.config.settings import parse_positive_int, settings
from jimmygate.core.content import extract_text_content
from jimmygate.core.models import InboundMessage, NormalizedRequest, UpstreamPayload
from jimmygate.core.stats_sentinel import parse_stats_sentinel


def make_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:24]}"


def normalize_messages(raw_messages: Any) -> NormalizedRequest:
    system_prompts: list[str] = []
    messages: list[InboundMessage] = []
    if not isinstance(raw_messages, list):
        return NormalizedRequest()

    for raw in raw_messages:
        if not isinstance(raw, dict):
            continue
        role = raw.get("role") if isinstance(raw.get("role"), str) else "user"
        content = extract_text_content(raw.get("content"))
        if not content:
            continue

        if role == "system":
            system_prompts.append(content)
            continue

        message_id = raw["id"] if isinstance(raw.get("id"), str) else make_id("msg")
        if role in {"user", "assistant"}:
            messages.append(InboundMessage(id=message_id, role=role, content=content))
        else:
            messages.append(InboundMessage(id=message_id, role="user", content=f"[{role}] {content}"))

    return NormalizedRequest(system_prompt="\n\n".join(system_prompts), messages=messages)


def resolve_model(body: dict[str, Any]) -> str:
    model = body.get("model")
    if isinstance(model, str) and model.strip():
        return model
    return settings.default_model


def _merge_system_prompt(*candidates: Any) -> str:
    return "\n\n".join(value for value in candidates if isinstance(value, str) and value.strip())


def build_upstream_payload(body: dict[str, Any], model: str) -> UpstreamPayload:
    normalized = normalize_messages(body.get("messages"))
    passthrough = body.get("chatOptions") if isinstance(body.get("chatOptions"), dict) else {}

    chat_options = dict(passthrough)
    chat_options["selectedModel"] = model
    chat_options["systemPrompt"] = _merge_system_prompt(
        settings.default_system_prompt,
        passthrough.get("systemPrompt"),
        normalized.system_prompt,
    )
    top_k = parse_positive_int(passthrough.get("topK"))
    if top_k is None:
        top_k = settings.default_top_k
    if top_k is not None:
        chat_options["topK"] = top_k
    else:
        chat_options.pop("topK", None)

    attachment = body.get("attachment")
    return UpstreamPayload(
        messages=normalized.messages,
        chat_options=chat_options,
        attachment=attachment if isinstance(attachment, dict) else None,
    )


def map_finish_reason(stats: Any) -> str:
    reason = "stop"
    if isinstance(stats, dict):
        for key in ("done_reason", "reason"):
            value = stats.get(key)
            if isinstance(value, str) and value:
                reason = value
                break

    normalized = reason.lower()
    if "length" in normalized or "max" in normalized:
        return "length"
    if "content_filter" in normalized:
        return "content_filter"
    return "stop"


def _token_count(value: Any) -> int | float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def usage_from_stats(stats: Any) -> dict[str, Any] | None:
    if not isinstance(stats, dict):
        return None
    prompt_tokens = _token_count(stats.get("prefill_tokens"))
    completion_tokens = _token_count(stats.get("decode_tokens"))
    total_tokens = _token_count(stats.get("total_tokens"))
    if prompt_tokens is None or completion_tokens is None or total_tokens is None:
        return None
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens,
    }


def to_chat_response(upstream_text: str, *, completion_id: str, model: str, created: int) -> dict[str, Any]:
    text, stats = parse_stats_sentinel(upstream_text)
    output: dict[str, Any] = {
        "id": completion_id,
        "object": "chat.completion",
        "created": created,
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": text},
                "finish_reason": map_finish_reason(stats),
            }
        ],
    }
    usage = usage_from_stats(stats)
    if usage is not None:
        output["usage"] = usage
    return output
