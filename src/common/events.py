from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, TypeAlias

ChunkCallback: TypeAlias = Callable[[str], None]
CompleteCallback: TypeAlias = Callable[[str], None]
ErrorCallback: TypeAlias = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class StreamSink:
    """Receives incremental output of a single chat request.

    ``on_chunk`` gets every non-empty delta in arrival order. Exactly one of
    ``on_complete`` (full text) or ``on_error`` (error detail) fires per
    request.
    """

    on_chunk: ChunkCallback | None = None
    on_complete: CompleteCallback | None = None
    on_error: ErrorCallback | None = None

    def chunk(self, text: str) -> None:
        if self.on_chunk is not None:
            self.on_chunk(text)

    def complete(self, full_text: str) -> None:
        if self.on_complete is not None:
            self.on_complete(full_text)

    def error(self, message: str) -> None:
        if self.on_error is not None:
            self.on_error(message)
