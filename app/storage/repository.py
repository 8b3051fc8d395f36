from __future__ import annotations

import contextlib
import json
import logging
import os
import pathlib
import tempfile
from threading import Lock
from typing import List, Optional

from pydantic import ValidationError as ModelValidationError

from app.errors import ValidationError
from app.models.domain import LedgerRecord


def normalize_key(key: object) -> str:
    normalized = str(key if key is not None else "").strip().lower()
    if not normalized:
        raise ValidationError("key required")
    return normalized


class PublishLedgerRepository:
    """JSON file of published content keys, rewritten whole on every insert."""

    def __init__(self, path: str | os.PathLike, logger: Optional[logging.Logger] = None) -> None:
        self.path = pathlib.Path(path)
        self._lock = Lock()
        self.log = logger or logging.getLogger(__name__)

    def find(self, key: object) -> LedgerRecord | None:
        normalized = normalize_key(key)
        with self._lock:
            records = self._read()
        for record in records:
            if record.key == normalized:
                return record
        return None

    def record(
        self,
        key: object,
        title: str | None = None,
        url: str | None = None,
        platform: str | None = None,
    ) -> LedgerRecord:
        record = LedgerRecord(
            key=normalize_key(key),
            title=title or "",
            url=url or "",
            platform=platform or "unknown",
        )
        with self._lock:
            records = self._read()
            records.append(record)
            self._write(records)
        self.log.info("publication recorded", extra={"key": record.key, "platform": record.platform})
        return record

    def list(self) -> List[LedgerRecord]:
        with self._lock:
            return self._read()

    def _read(self) -> List[LedgerRecord]:
        if not self.path.exists():
            return []
        try:
            raw = self.path.read_text(encoding="utf-8")
            payload = json.loads(raw or "[]")
            return [LedgerRecord.model_validate(item) for item in payload]
        except (OSError, ValueError, TypeError, ModelValidationError):
            self.log.warning("ledger unreadable, treating as empty", extra={"path": str(self.path)}, exc_info=True)
            return []

    def _write(self, records: List[LedgerRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        body = json.dumps(
            [record.model_dump(mode="json", by_alias=True) for record in records],
            ensure_ascii=False,
            indent=2,
        )
        fd, tmp_name = tempfile.mkstemp(prefix=".published-", suffix=".json", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
            os.replace(tmp_name, self.path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise
