"""Conversation data model and persisted document shapes."""

import time
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from common.ids import generate_id

DEFAULT_TITLE = "New Chat"
TITLE_MAX_CHARS = 30
TITLE_ELLIPSIS = "..."

DEFAULT_ENDPOINT = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-3.5-turbo"


def now_ms() -> int:
    return int(time.time() * 1000)


def make_title(content: str) -> str:
    if len(content) > TITLE_MAX_CHARS:
        return content[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS
    return content


class Role(str, Enum):
    """Role of a chat message sender."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """A single chat message. Only its content may be swapped, via a copy."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(default_factory=generate_id)
    role: Role
    content: str
    timestamp: int = Field(default_factory=now_ms)

    def with_content(self, content: str) -> "Message":
        return self.model_copy(update={"content": content})

    def to_wire(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class Session(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_id)
    title: str = DEFAULT_TITLE
    updated_at: int = Field(default_factory=now_ms, alias="updatedAt")
    messages: list[Message] = Field(default_factory=list)

    @property
    def has_default_title(self) -> bool:
        return self.title == DEFAULT_TITLE

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def touch(self, at: int | None = None) -> None:
        # updatedAt never moves backwards, even if the wall clock does
        at = now_ms() if at is None else at
        self.updated_at = max(self.updated_at, at)

    def append(self, message: Message) -> None:
        self.messages.append(message)
        self.touch()
        if message.role == Role.USER and self.has_default_title:
            self.title = make_title(message.content)

    def replace_last_content(self, content: str) -> bool:
        if not self.messages:
            return False
        self.messages[-1] = self.messages[-1].with_content(content)
        return True

    def clear(self) -> None:
        self.messages.clear()
        self.title = DEFAULT_TITLE


class ApiConfig(BaseModel):
    """Connection settings for an OpenAI-compatible chat-completions endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    endpoint: str = DEFAULT_ENDPOINT
    api_key: str = Field(default="", alias="apiKey")
    model: str = DEFAULT_MODEL
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1, alias="maxTokens")
    system_prompt: str = Field(default="", alias="systemPrompt")

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"endpoint must be an http(s) URL, got {value!r}")
        return value

    def public_view(self) -> "ExportConfig":
        return ExportConfig(
            endpoint=self.endpoint,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )


class ExportMessage(BaseModel):
    role: Role
    content: str
    timestamp: int | None = None


class ExportSession(BaseModel):
    id: str
    title: str
    messages: list[ExportMessage]


class ExportConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    endpoint: str
    model: str
    temperature: float
    max_tokens: int = Field(alias="maxTokens")


class ExportDocument(BaseModel):
    """Portable snapshot of all sessions. The API key is never included."""

    sessions: list[ExportSession]
    # informational only; import never reads it
    config: dict[str, Any] | None = None
