from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any

logger = logging.getLogger("interview_lab.db.json_store")

DATA_DIR = Path(__file__).resolve().parents[2] / "data"


class JsonDocumentStore:
    """Dict of JSON documents keyed by id, mirrored to one file. Writes go through a temp file and a replace."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = Lock()
        self._documents: dict[str, dict[str, Any]] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            self._documents = {}
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("json store unreadable | path=%s err=%s", self.path, exc)
            self._documents = {}
            return
        if isinstance(payload, dict):
            self._documents = {
                str(key): value
                for key, value in payload.items()
                if isinstance(key, str) and isinstance(value, dict)
            }
        else:
            self._documents = {}

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(self._documents, ensure_ascii=False), encoding="utf-8")
        temp_path.replace(self.path)

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._documents.get(str(key or ""))
            return json.loads(json.dumps(document)) if document is not None else None

    def put(self, key: str, document: dict[str, Any]) -> None:
        with self._lock:
            self._documents[str(key)] = document
            self._persist()
