"""Gateway-side view of an inbound chat request."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from llm_gateway.models.openai import Attachment, ChatMessage


@dataclass(frozen=True)
class RequestMetadata:
    request_id: str
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    client_ip: str | None = None
    user_agent: str | None = None
    origin: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "request_id": self.request_id,
            "received_at": self.received_at.isoformat(),
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "origin": self.origin,
        }


@dataclass(frozen=True)
class CanonicalRequest:
    requested_model: str
    role: str
    messages: tuple[ChatMessage, ...]
    identity: str
    metadata: RequestMetadata
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False
    attachments: tuple[Attachment, ...] = ()

    def message_dicts(self) -> list[dict[str, str]]:
        return [{"role": message.role, "content": message.content} for message in self.messages]

    def all_attachments(self) -> list[Attachment]:
        collected = list(self.attachments)
        for message in self.messages:
            collected.extend(message.attachments or [])
        return collected

    def latest_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""
