import logging
from pathlib import Path
from typing import Any

from common.jsonio import atomic_write_json, load_json

logger = logging.getLogger(__name__)

CHAT_STORE_KEY = "chat-store"
MODEL_STORE_KEY = "model-store"


class KeyValueStore:
    """JSON blobs persisted under fixed storage keys, one file per key."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def get(self, key: str) -> Any | None:
        data = load_json(self._path(key))
        if data is None:
            logger.debug(f"No stored value for key '{key}'")
        return data

    def set(self, key: str, value: Any) -> None:
        atomic_write_json(self._path(key), value)
        logger.debug(f"Persisted key '{key}' to {self._path(key)}")

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
