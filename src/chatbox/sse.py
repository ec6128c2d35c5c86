"""Line-level parsing of chat-completion event streams.

Only ``data: `` lines carry payloads. Everything else, including blank
keep-alive lines and ``event:``/``id:`` fields, is ignored.
"""

import json
import logging

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_PAYLOAD = "[DONE]"


class _Done:
    def __repr__(self) -> str:
        return "DONE"


DONE = _Done()


def parse_sse_line(line: str) -> str | _Done | None:
    """Return the text delta carried by ``line``, ``DONE``, or ``None``.

    ``None`` means the line carries nothing to deliver: not a data line, a
    malformed or partial JSON chunk, or a chunk without delta content.
    """
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    if payload == DONE_PAYLOAD:
        return DONE
    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed stream chunk: {payload[:200]!r}")
        return None
    content = extract_delta_content(chunk)
    return content or None


def extract_delta_content(chunk: object) -> str | None:
    try:
        content = chunk["choices"][0]["delta"]["content"]  # type: ignore[index]
    except (KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


def extract_message_content(body: object) -> str:
    """Pull ``choices[0].message.content`` out of a non-streaming response."""
    content = body["choices"][0]["message"]["content"]  # type: ignore[index]
    if not isinstance(content, str):
        raise TypeError(f"message content is {type(content).__name__}, expected str")
    return content
