import logging
from pathlib import Path

from pydantic import ValidationError

from chatbox.models import ApiConfig, Session
from common.jsonio import JsonDocumentError, atomic_write_json, load_json

logger = logging.getLogger(__name__)

SESSIONS_FILE = "sessions.json"
CONFIG_FILE = "config.json"


class StoreError(Exception):
    pass


class SessionStore:
    """Durable mirror of the session list and the active config.

    Two independent JSON documents live in ``data_dir``; a broken one never
    prevents reading the other.
    """

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)

    @property
    def sessions_path(self) -> Path:
        return self.data_dir / SESSIONS_FILE

    @property
    def config_path(self) -> Path:
        return self.data_dir / CONFIG_FILE

    def load_sessions(self) -> list[Session]:
        """Return stored sessions; an absent file means none.

        Raises:
            StoreError: the document exists but is corrupt or has the wrong shape
        """
        data = self._read(self.sessions_path)
        if data is None:
            return []
        if not isinstance(data, list):
            raise StoreError(f"{self.sessions_path}: expected a list of sessions")
        try:
            sessions = [Session.model_validate(item) for item in data]
        except ValidationError as e:
            raise StoreError(f"{self.sessions_path}: {e}") from e
        logger.debug(f"Loaded {len(sessions)} session(s) from {self.sessions_path}")
        return sessions

    def save_sessions(self, sessions: list[Session]) -> None:
        data = [s.model_dump(mode="json", by_alias=True) for s in sessions]
        self._write(self.sessions_path, data)

    def load_config(self) -> ApiConfig | None:
        """Return the stored config, or ``None`` when nothing was saved yet.

        Raises:
            StoreError: the document exists but is corrupt or invalid
        """
        data = self._read(self.config_path)
        if data is None:
            return None
        try:
            return ApiConfig.model_validate(data)
        except ValidationError as e:
            raise StoreError(f"{self.config_path}: {e}") from e

    def save_config(self, config: ApiConfig) -> None:
        self._write(self.config_path, config.model_dump(mode="json", by_alias=True))

    def _read(self, path: Path):
        try:
            return load_json(path)
        except JsonDocumentError as e:
            raise StoreError(str(e)) from e
        except OSError as e:
            raise StoreError(f"{path}: {e}") from e

    def _write(self, path: Path, data) -> None:
        try:
            atomic_write_json(path, data)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}") from e
