"""Inbound message content shapes reduced to plain text."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class TextContent:
    text: str


@dataclass(frozen=True, slots=True)
class PartsContent:
    parts: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ObjectContent:
    text: str


@dataclass(frozen=True, slots=True)
class EmptyContent:
    pass


MessageContent = Union[TextContent, PartsContent, ObjectContent, EmptyContent]


def _decode_part(part: Any) -> str:
    if isinstance(part, str):
        return part
    if not isinstance(part, dict):
        return ""
    text = part.get("text")
    if isinstance(text, str):
        return text
    if isinstance(text, dict) and isinstance(text.get("value"), str):
        return text["value"]
    input_text = part.get("input_text")
    if isinstance(input_text, str):
        return input_text
    return ""


def decode_content(raw: Any) -> MessageContent:
    if isinstance(raw, str):
        return TextContent(raw)
    if isinstance(raw, list):
        return PartsContent(tuple(_decode_part(part) for part in raw))
    if isinstance(raw, dict):
        for key in ("text", "value"):
            if isinstance(raw.get(key), str):
                return ObjectContent(raw[key])
    return EmptyContent()


def render_content(content: MessageContent) -> str:
    if isinstance(content, (TextContent, ObjectContent)):
        return content.text
    if isinstance(content, PartsContent):
        return "\n".join(part for part in content.parts if part)
    return ""


def extract_text_content(raw: Any) -> str:
    return render_content(decode_content(raw))
