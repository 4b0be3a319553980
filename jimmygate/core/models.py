"""Internal transport models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class InboundMessage(BaseModel):
    id: str
    role: Literal["user", "assistant"]
    content: str


class NormalizedRequest(BaseModel):
    system_prompt: str = ""
    messages: list[InboundMessage] = Field(default_factory=list)


class UpstreamPayload(BaseModel):
    messages: list[InboundMessage] = Field(default_factory=list)
    chat_options: dict[str, Any] = Field(default_factory=dict)
    attachment: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "messages": [message.model_dump() for message in self.messages],
            "chatOptions": dict(self.chat_options),
            "attachment": self.attachment,
        }
