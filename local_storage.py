import json
import logging
import re
from pathlib import Path
from typing import Any

from config import LOCAL_STORAGE_PATH

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class LocalStorage:
    """Browser-style key/value storage: one JSON file per key under a directory.

    Read and write failures are logged and never raised; a missing or
    corrupt value reads back as the supplied default.
    """

    def __init__(self, root=LOCAL_STORAGE_PATH):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{_SAFE_KEY.sub('_', key)}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        try:
            if path.exists():
                return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Error loading %s from local storage: %s", key, e)
        return default

    def set(self, key: str, value: Any) -> bool:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error("Error saving %s to local storage: %s", key, e)
            return False

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Error removing %s from local storage: %s", key, e)
