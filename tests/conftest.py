import json

import httpx
import pytest

from chatbox.client import ChatClient
from chatbox.models import ApiConfig
from chatbox.sessions import SessionManager
from common.events import StreamSink


def sse_body(*deltas: str, done: bool = True) -> bytes:
    lines = []
    for delta in deltas:
        chunk = {"choices": [{"delta": {"content": delta}}]}
        lines.append(f"data: {json.dumps(chunk)}")
        lines.append("")
    if done:
        lines.append("data: [DONE]")
        lines.append("")
    return ("\n".join(lines) + "\n").encode()


class RecordingSink:
    def __init__(self):
        self.chunks: list[str] = []
        self.completed: list[str] = []
        self.errors: list[str] = []

    def on_chunk(self, text: str) -> None:
        self.chunks.append(text)

    def on_complete(self, text: str) -> None:
        self.completed.append(text)

    def on_error(self, message: str) -> None:
        self.errors.append(message)

    def as_sink(self) -> StreamSink:
        return StreamSink(
            on_chunk=self.on_chunk,
            on_complete=self.on_complete,
            on_error=self.on_error,
        )


@pytest.fixture
def api_config() -> ApiConfig:
    return ApiConfig(
        endpoint="https://llm.example.com/v1/chat/completions",
        api_key="sk-test-key",
        model="test-model",
        temperature=0.5,
        max_tokens=256,
    )


@pytest.fixture
def sse():
    return sse_body


@pytest.fixture
def recorder() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_client(api_config):
    clients = []

    def _make(handler, config: ApiConfig | None = None) -> ChatClient:
        http = httpx.Client(transport=httpx.MockTransport(handler))
        client = ChatClient(config or api_config, http_client=http)
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


@pytest.fixture
def manager(tmp_path) -> SessionManager:
    return SessionManager(tmp_path)
