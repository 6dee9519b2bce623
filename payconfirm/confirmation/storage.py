"""Confirmation audit log storage.

The dispatcher only needs two operations: append one record, read the most
recent ones back. Both implementations keep at most ``cap`` records and drop
the oldest first.

Example:
    store = JsonFileConfirmationStore(settings.confirmation_log_path)
    store.append_confirmation(record)
    recent = store.read_recent_confirmations(limit=10)
"""

from __future__ import annotations

import json
import os
import threading
from abc import ABC, abstractmethod
from collections import deque
from pathlib import Path
from tempfile import NamedTemporaryFile

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import PersistenceError, wrap_exception
from ..utils.logging import get_logger
from .domain.models import ConfirmationRecord

logger = get_logger(__name__)

DEFAULT_HISTORY_CAP = 50

_records_adapter = TypeAdapter(list[ConfirmationRecord])


class ConfirmationStore(ABC):
    """Append-only, capped log of confirmation records."""

    @abstractmethod
    def append_confirmation(self, record: ConfirmationRecord) -> None:
        """Persist one record.

        Raises:
            PersistenceError: If the record could not be written
        """

    @abstractmethod
    def read_recent_confirmations(self, limit: int | None = None) -> list[ConfirmationRecord]:
        """Return up to ``limit`` records, most recent first."""


class InMemoryConfirmationStore(ConfirmationStore):
    """Process-local store, used by tests and the simulator."""

    def __init__(self, cap: int = DEFAULT_HISTORY_CAP) -> None:
        if cap < 1:
            raise ValueError(f"cap must be at least 1, got {cap}")
        self.cap = cap
        self._records: deque[ConfirmationRecord] = deque(maxlen=cap)
        self._lock = threading.Lock()

    def append_confirmation(self, record: ConfirmationRecord) -> None:
        with self._lock:
            self._records.appendleft(record)

    def read_recent_confirmations(self, limit: int | None = None) -> list[ConfirmationRecord]:
        with self._lock:
            records = list(self._records)
        return records if limit is None else records[: max(limit, 0)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class JsonFileConfirmationStore(ConfirmationStore):
    """JSON-array file, newest record first.

    Every append rewrites the file through a temporary file in the same
    directory followed by ``os.replace``, so readers never see a half-written
    log.
    """

    def __init__(self, path: Path | str, cap: int = DEFAULT_HISTORY_CAP) -> None:
        if cap < 1:
            raise ValueError(f"cap must be at least 1, got {cap}")
        self.path = Path(path)
        self.cap = cap
        self._lock = threading.Lock()

    def append_confirmation(self, record: ConfirmationRecord) -> None:
        with self._lock:
            records = [record, *self._load()][: self.cap]
            self._write(records)

        logger.debug(
            "confirmation_persisted",
            payment_id=record.payment_id,
            path=str(self.path),
            records=len(records),
        )

    def read_recent_confirmations(self, limit: int | None = None) -> list[ConfirmationRecord]:
        with self._lock:
            records = self._load()
        return records if limit is None else records[: max(limit, 0)]

    def _load(self) -> list[ConfirmationRecord]:
        if not self.path.exists():
            return []

        try:
            content = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceError(
                "Failed to read confirmation log", path=str(self.path), original_error=e
            ) from e

        if not content.strip():
            return []

        try:
            return _records_adapter.validate_json(content)
        except PydanticValidationError as e:
            raise PersistenceError(
                "Confirmation log is corrupt", path=str(self.path), original_error=e
            ) from e

    def _write(self, records: list[ConfirmationRecord]) -> None:
        payload = json.dumps(
            _records_adapter.dump_python(records, mode="json"), indent=2, ensure_ascii=False
        )

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as temp_file:
                temp_file.write(payload)
                temp_path = Path(temp_file.name)
            os.replace(temp_path, self.path)
        except OSError as e:
            raise wrap_exception(
                e,
                "Failed to write confirmation log",
                exception_class=PersistenceError,
                path=str(self.path),
            ) from e
