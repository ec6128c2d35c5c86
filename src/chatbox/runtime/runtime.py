from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from chatbox.client import ChatAbortedError, ChatClient, ChatClientError
from chatbox.models import ApiConfig, Role
from chatbox.sessions import SessionManager
from common.events import StreamSink

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error: "


@dataclass(frozen=True, slots=True)
class TurnResult:
    content: str
    ok: bool
    aborted: bool = False
    error: str | None = None


def error_text(partial: str, detail: str) -> str:
    if partial:
        return f"{partial}\n\n{ERROR_PREFIX}{detail}"
    return f"{ERROR_PREFIX}{detail}"


class ChatRuntime:
    """Runs one conversation turn at a time against the current session.

    The request runs on a single worker thread; sink callbacks mutate the
    session through ``SessionManager``, which serializes them with the
    caller's own calls.
    """

    def __init__(
        self,
        manager: SessionManager,
        client: ChatClient | None = None,
        stream: bool = True,
        on_chunk: Callable[[str], None] | None = None,
        overlay: Callable[[ApiConfig], ApiConfig] | None = None,
    ):
        self.manager = manager
        self.client = client or ChatClient(manager.get_api_config())
        self.stream = stream
        self.on_chunk = on_chunk
        self.overlay = overlay
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chatbox-send")
        self._pending: Future | None = None
        self._lock = threading.Lock()

    @property
    def config(self) -> ApiConfig:
        """Config for the next request: the stored one plus any overlay."""
        config = self.manager.get_api_config()
        if self.overlay is not None:
            config = self.overlay(config)
        return config

    def update_config(self, config: ApiConfig) -> None:
        self.manager.set_api_config(config)
        self.client.config = self.config

    def submit(self, prompt: str) -> Future | None:
        """Record ``prompt`` and start the assistant reply in the background.

        Returns ``None`` for a blank prompt.
        """
        prompt = prompt.strip()
        if not prompt:
            return None
        with self._lock:
            if self._pending is not None and not self._pending.done():
                raise RuntimeError("A reply is already in progress")

            self.manager.add_message(Role.USER, prompt)
            session = self.manager.get_current_session()
            history = list(session.messages) if session else []
            self.manager.add_message(Role.ASSISTANT, "")

            self.client.config = self.config
            self._pending = self._executor.submit(self._run_turn, history)
            return self._pending

    def process_user_message(self, prompt: str) -> TurnResult | None:
        future = self.submit(prompt)
        if future is None:
            return None
        try:
            return future.result()
        except KeyboardInterrupt:
            self.abort()
            return future.result()

    def abort(self) -> None:
        self.client.abort()

    def shutdown(self) -> None:
        self.client.abort()
        self._executor.shutdown(wait=True)
        self.client.close()

    def _run_turn(self, history) -> TurnResult:
        received: list[str] = []

        def on_chunk(text: str) -> None:
            received.append(text)
            self.manager.replace_last_message_content("".join(received))
            if self.on_chunk is not None:
                self.on_chunk(text)

        sink = StreamSink(
            on_chunk=on_chunk,
            on_complete=self.manager.replace_last_message_content,
        )
        try:
            content = self.client.send(history, stream=self.stream, sink=sink)
        except ChatClientError as e:
            partial = "".join(received)
            self.manager.replace_last_message_content(error_text(partial, str(e)))
            aborted = isinstance(e, ChatAbortedError)
            if not aborted:
                logger.warning(f"Assistant reply failed: {e}")
            return TurnResult(content=partial, ok=False, aborted=aborted, error=str(e))
        return TurnResult(content=content, ok=True)
