import json
import threading

import httpx
import pytest

from chatbox.client import (
    ChatAbortedError,
    ChatHTTPError,
    ChatParseError,
    ChatTransportError,
    build_payload,
)
from chatbox.models import Message, Role
from common.events import StreamSink


class FailingStream(httpx.SyncByteStream):
    def __init__(self, first: bytes):
        self.first = first

    def __iter__(self):
        yield self.first
        raise httpx.ReadError("connection reset")


class BlockingStream(httpx.SyncByteStream):
    """Yields one chunk, then blocks until the response is closed."""

    def __init__(self, first: bytes, rest: bytes):
        self.first = first
        self.rest = rest
        self.released = threading.Event()

    def __iter__(self):
        yield self.first
        self.released.wait(timeout=5)
        yield self.rest

    def close(self):
        self.released.set()


def _history(*pairs):
    return [Message(role=role, content=content) for role, content in pairs]


class TestRequestShape:
    def test_payload_with_system_prompt(self, api_config):
        config = api_config.model_copy(update={"system_prompt": "Be brief."})
        history = _history((Role.USER, "hi"), (Role.ASSISTANT, "hello"), (Role.USER, "2+2?"))

        payload = build_payload(config, history, stream=True)

        assert payload == {
            "model": "test-model",
            "messages": [
                {"role": "system", "content": "Be brief."},
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello"},
                {"role": "user", "content": "2+2?"},
            ],
            "temperature": 0.5,
            "max_tokens": 256,
            "stream": True,
        }

    def test_no_system_message_when_prompt_empty(self, api_config):
        payload = build_payload(api_config, _history((Role.USER, "hi")), stream=False)
        assert payload["messages"] == [{"role": "user", "content": "hi"}]
        assert payload["stream"] is False

    def test_request_headers_and_method(self, make_client, sse):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["content_type"] = request.headers["Content-Type"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=sse("ok"))

        client = make_client(handler)
        client.send(_history((Role.USER, "hi")))

        assert seen["method"] == "POST"
        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test-key"
        assert seen["content_type"] == "application/json"
        assert set(seen["body"]["messages"][0]) == {"role", "content"}

    def test_config_is_read_per_request(self, make_client, sse):
        models = []

        def handler(request: httpx.Request) -> httpx.Response:
            models.append(json.loads(request.content)["model"])
            return httpx.Response(200, content=sse("ok"))

        client = make_client(handler)
        client.send(_history((Role.USER, "a")))
        client.config = client.config.model_copy(update={"model": "other-model"})
        client.send(_history((Role.USER, "b")))

        assert models == ["test-model", "other-model"]


class TestStreaming:
    def test_chunks_in_order_and_full_text(self, make_client, sse, recorder):
        client = make_client(lambda request: httpx.Response(200, content=sse("Hel", "lo", " world")))

        result = client.send(_history((Role.USER, "hi")), stream=True, sink=recorder.as_sink())

        assert recorder.chunks == ["Hel", "lo", " world"]
        assert recorder.completed == ["Hello world"]
        assert recorder.errors == []
        assert result == "Hello world"

    def test_done_ends_stream_despite_trailing_data(self, make_client, sse, recorder):
        body = sse("a") + sse("ignored", done=False)
        client = make_client(lambda request: httpx.Response(200, content=body))

        result = client.send(_history((Role.USER, "hi")), sink=recorder.as_sink())

        assert result == "a"
        assert recorder.chunks == ["a"]

    def test_end_of_body_without_done_completes(self, make_client, sse, recorder):
        client = make_client(lambda request: httpx.Response(200, content=sse("x", "y", done=False)))

        result = client.send(_history((Role.USER, "hi")), sink=recorder.as_sink())

        assert result == "xy"
        assert recorder.completed == ["xy"]

    def test_malformed_and_foreign_lines_skipped(self, make_client, recorder):
        body = (
            b": keep-alive\n"
            b"\n"
            b'data: {"choices":[{"delta":{"content":"4"}}]}\n'
            b"data: {not json\n"
            b"event: ping\n"
            b'data: {"choices":[{"delta":{"role":"assistant"}}]}\n'
            b'data: {"choices":[{"delta":{"content":"."}}]}\n'
            b"data: [DONE]\n"
        )
        client = make_client(lambda request: httpx.Response(200, content=body))

        result = client.send(_history((Role.USER, "2+2?")), sink=recorder.as_sink())

        assert recorder.chunks == ["4", "."]
        assert recorder.errors == []
        assert result == "4."

    def test_http_error_fires_on_error_once(self, make_client, recorder):
        client = make_client(lambda request: httpx.Response(401, content=b"nope"))

        with pytest.raises(ChatHTTPError) as exc_info:
            client.send(_history((Role.USER, "hi")), sink=recorder.as_sink())

        assert exc_info.value.status_code == 401
        assert recorder.errors == ["HTTP 401: Unauthorized"]
        assert recorder.completed == []

    def test_transport_error(self, make_client, recorder):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(ChatTransportError):
            client.send(_history((Role.USER, "hi")), sink=recorder.as_sink())

        assert len(recorder.errors) == 1
        assert "connection refused" in recorder.errors[0]

    def test_mid_stream_failure_keeps_delivered_chunks(self, make_client, sse, recorder):
        first = sse("Hel", done=False)
        client = make_client(lambda request: httpx.Response(200, stream=FailingStream(first)))

        with pytest.raises(ChatTransportError):
            client.send(_history((Role.USER, "hi")), sink=recorder.as_sink())

        assert recorder.chunks == ["Hel"]
        assert recorder.completed == []
        assert len(recorder.errors) == 1

    def test_sink_exceptions_propagate_after_on_error(self, make_client, sse, recorder):
        def explode(text):
            raise ValueError("render failed")

        client = make_client(lambda request: httpx.Response(200, content=sse("a", "b")))
        sink = StreamSink(on_chunk=explode, on_complete=recorder.on_complete, on_error=recorder.on_error)

        with pytest.raises(ValueError, match="render failed"):
            client.send(_history((Role.USER, "hi")), sink=sink)

        assert recorder.completed == []
        assert recorder.errors == ["render failed"]
        assert client.busy is False

    def test_failing_on_complete_does_not_fire_on_error(self, make_client, sse, recorder):
        def explode(text):
            raise RuntimeError("save failed")

        client = make_client(lambda request: httpx.Response(200, content=sse("a")))
        sink = StreamSink(on_complete=explode, on_error=recorder.on_error)

        with pytest.raises(RuntimeError):
            client.send(_history((Role.USER, "hi")), sink=sink)

        assert recorder.errors == []

    def test_without_sink(self, make_client, sse):
        client = make_client(lambda request: httpx.Response(200, content=sse("a", "b")))
        assert client.send(_history((Role.USER, "hi"))) == "ab"


class TestNonStreaming:
    def test_returns_message_content(self, make_client, recorder):
        payload = {"choices": [{"message": {"role": "assistant", "content": "Paris"}}]}
        client = make_client(lambda request: httpx.Response(200, json=payload))

        result = client.send(_history((Role.USER, "capital?")), stream=False, sink=recorder.as_sink())

        assert result == "Paris"
        assert recorder.completed == ["Paris"]
        assert recorder.chunks == []

    def test_shape_mismatch_is_parse_error(self, make_client, recorder):
        client = make_client(lambda request: httpx.Response(200, json={"choices": []}))

        with pytest.raises(ChatParseError):
            client.send(_history((Role.USER, "hi")), stream=False, sink=recorder.as_sink())

        assert len(recorder.errors) == 1

    def test_invalid_json_is_parse_error(self, make_client):
        client = make_client(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(ChatParseError):
            client.send(_history((Role.USER, "hi")), stream=False)

    def test_http_error(self, make_client):
        client = make_client(lambda request: httpx.Response(500))

        with pytest.raises(ChatHTTPError) as exc_info:
            client.send(_history((Role.USER, "hi")), stream=False)

        assert exc_info.value.status_code == 500
        assert str(exc_info.value) == "HTTP 500: Internal Server Error"


class TestAbort:
    def test_abort_without_request_is_noop(self, make_client):
        client = make_client(lambda request: httpx.Response(200))
        client.abort()
        client.abort()
        assert client.busy is False

    def test_abort_from_callback_stops_delivery(self, make_client, sse, recorder):
        client = make_client(lambda request: httpx.Response(200, content=sse("a", "b", "c")))

        def on_chunk(text):
            recorder.on_chunk(text)
            client.abort()

        sink = StreamSink(on_chunk=on_chunk, on_complete=recorder.on_complete, on_error=recorder.on_error)
        with pytest.raises(ChatAbortedError):
            client.send(_history((Role.USER, "hi")), sink=sink)

        assert recorder.chunks == ["a"]
        assert recorder.completed == []
        assert recorder.errors == ["Request aborted"]
        assert client.busy is False

    def test_abort_from_another_thread_unblocks_reader(self, make_client, sse, recorder):
        stream = BlockingStream(sse("first", done=False), sse("second"))
        client = make_client(lambda request: httpx.Response(200, stream=stream))
        first_chunk = threading.Event()
        outcome = {}

        def on_chunk(text):
            recorder.on_chunk(text)
            first_chunk.set()

        sink = StreamSink(on_chunk=on_chunk, on_complete=recorder.on_complete, on_error=recorder.on_error)

        def run():
            try:
                outcome["result"] = client.send(_history((Role.USER, "hi")), sink=sink)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=run)
        worker.start()
        assert first_chunk.wait(timeout=5)
        client.abort()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert isinstance(outcome.get("error"), ChatAbortedError)
        assert recorder.chunks == ["first"]
        assert recorder.completed == []
        assert len(recorder.errors) == 1
