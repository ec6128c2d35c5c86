from chatbox.client import (
    ChatAbortedError,
    ChatClient,
    ChatClientError,
    ChatHTTPError,
    ChatParseError,
    ChatTransportError,
)
from chatbox.models import ApiConfig, Message, Role, Session
from chatbox.sessions import SessionManager, SnapshotError
from chatbox.store import SessionStore, StoreError

__all__ = [
    "ApiConfig",
    "ChatAbortedError",
    "ChatClient",
    "ChatClientError",
    "ChatHTTPError",
    "ChatParseError",
    "ChatTransportError",
    "Message",
    "Role",
    "Session",
    "SessionManager",
    "SessionStore",
    "SnapshotError",
    "StoreError",
]
