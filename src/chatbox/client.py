"""HTTP client for OpenAI-compatible chat-completion endpoints."""

import json
import logging
import threading
from typing import Iterable

import httpx

from chatbox.config import CONNECT_TIMEOUT, READ_TIMEOUT, WRITE_TIMEOUT
from chatbox.models import ApiConfig, Message
from chatbox.sse import DONE, extract_message_content, parse_sse_line
from common.events import StreamSink

logger = logging.getLogger(__name__)


class ChatClientError(Exception):
    pass


class ChatTransportError(ChatClientError):
    pass


class ChatHTTPError(ChatClientError):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")


class ChatParseError(ChatClientError):
    pass


class ChatAbortedError(ChatClientError):
    def __init__(self, message: str = "Request aborted"):
        super().__init__(message)


def build_messages(config: ApiConfig, history: Iterable[Message]) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if config.system_prompt:
        messages.append({"role": "system", "content": config.system_prompt})
    messages.extend(m.to_wire() for m in history)
    return messages


def build_payload(config: ApiConfig, history: Iterable[Message], stream: bool) -> dict:
    return {
        "model": config.model,
        "messages": build_messages(config, history),
        "temperature": config.temperature,
        "max_tokens": config.max_tokens,
        "stream": stream,
    }


def build_headers(config: ApiConfig) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {config.api_key}",
    }


class _Call:
    """State of one in-flight ``send``.

    All sink deliveries go through ``lock`` so that once ``cancel`` returns no
    chunk or completion can be delivered for this call.
    """

    def __init__(self, sink: StreamSink | None):
        self.sink = sink or StreamSink()
        self.lock = threading.RLock()
        self.cancelled = False
        self.finished = False
        self.response: httpx.Response | None = None

    def attach(self, response: httpx.Response) -> None:
        with self.lock:
            self.response = response
            cancelled = self.cancelled
        if cancelled:
            response.close()

    def cancel(self) -> None:
        with self.lock:
            if self.finished:
                return
            self.cancelled = True
            response = self.response
        if response is not None:
            # Unblocks a reader waiting on the socket; the reading thread
            # then resolves the call as aborted.
            response.close()

    def chunk(self, text: str) -> None:
        with self.lock:
            if self.cancelled or self.finished:
                raise ChatAbortedError()
            self.sink.chunk(text)

    def complete(self, full_text: str) -> None:
        with self.lock:
            if self.cancelled:
                raise ChatAbortedError()
            self.finished = True
            self.sink.complete(full_text)

    def fail(self, error: Exception) -> None:
        with self.lock:
            if self.finished:
                return
            self.finished = True
            self.sink.error(str(error) or type(error).__name__)


class ChatClient:
    """Sends a conversation to a chat-completions endpoint.

    The config is read on every ``send`` so callers may swap it between
    requests. One call is in flight per client; ``abort`` cancels that call
    only.
    """

    def __init__(self, config: ApiConfig, http_client: httpx.Client | None = None):
        self.config = config
        self._client = http_client
        self._lock = threading.Lock()
        self._active: _Call | None = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=httpx.Timeout(
                    connect=CONNECT_TIMEOUT,
                    read=READ_TIMEOUT,
                    write=WRITE_TIMEOUT,
                    pool=CONNECT_TIMEOUT,
                )
            )
        return self._client

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._active is not None

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def abort(self) -> None:
        with self._lock:
            call = self._active
        if call is None:
            return
        logger.info("Aborting in-flight chat request")
        call.cancel()

    def send(
        self,
        history: Iterable[Message],
        stream: bool = True,
        sink: StreamSink | None = None,
    ) -> str:
        """Send ``history`` and return the assistant's full reply.

        Raises:
            ChatTransportError: connection failure or timeout
            ChatHTTPError: non-2xx response
            ChatParseError: non-streaming body without ``choices[0].message.content``
            ChatAbortedError: ``abort`` was called while the request was in flight
        """
        config = self.config
        call = _Call(sink)
        request = self.client.build_request(
            "POST",
            config.endpoint,
            headers=build_headers(config),
            json=build_payload(config, history, stream),
        )

        with self._lock:
            self._active = call
        try:
            if stream:
                return self._stream_request(request, call)
            return self._normal_request(request, call)
        except Exception as e:
            # a failing sink callback still ends the call with on_error
            call.fail(e)
            raise
        finally:
            with self._lock:
                if self._active is call:
                    self._active = None

    def _open(self, request: httpx.Request, call: _Call) -> httpx.Response:
        try:
            response = self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            if call.cancelled:
                raise ChatAbortedError() from e
            logger.warning(f"Chat request to {request.url} failed: {e}")
            raise ChatTransportError(str(e) or type(e).__name__) from e
        call.attach(response)
        if call.cancelled:
            raise ChatAbortedError()
        if not response.is_success:
            response.close()
            error = ChatHTTPError(response.status_code, response.reason_phrase)
            logger.warning(f"Chat request to {request.url} rejected: {error}")
            raise error
        return response

    def _normal_request(self, request: httpx.Request, call: _Call) -> str:
        response = self._open(request, call)
        try:
            body = response.read()
        except (httpx.HTTPError, httpx.StreamError, OSError) as e:
            if call.cancelled:
                raise ChatAbortedError() from e
            raise ChatTransportError(str(e) or type(e).__name__) from e
        finally:
            response.close()

        try:
            content = extract_message_content(json.loads(body))
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ChatParseError(f"Unexpected response body: {e}") from e

        call.complete(content)
        return content

    def _stream_request(self, request: httpx.Request, call: _Call) -> str:
        response = self._open(request, call)
        parts: list[str] = []
        try:
            for line in response.iter_lines():
                if call.cancelled:
                    raise ChatAbortedError()
                delta = parse_sse_line(line)
                if delta is DONE:
                    break
                if delta is None:
                    continue
                parts.append(delta)
                call.chunk(delta)
        except ChatClientError:
            raise
        except (httpx.HTTPError, httpx.StreamError, OSError) as e:
            if call.cancelled:
                raise ChatAbortedError() from e
            logger.warning(f"Chat stream from {request.url} failed: {e}")
            raise ChatTransportError(str(e) or type(e).__name__) from e
        except Exception as e:
            # sink callbacks raise their own errors; only a torn-down
            # connection after abort is turned into ChatAbortedError
            if call.cancelled:
                raise ChatAbortedError() from e
            raise
        finally:
            response.close()

        full_text = "".join(parts)
        call.complete(full_text)
        return full_text
