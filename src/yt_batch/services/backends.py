"""Persistence backends for the job and session tables.

A backend stores one table: a mapping of record id to a JSON-serializable dict.
Each save rewrites the whole table, so the persisted copy is always the last
complete snapshot.
"""

import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()


class PersistenceBackend(Protocol):
    """Whole-table load/save."""

    def load(self) -> dict[str, dict]:
        ...

    def save(self, records: dict[str, dict]) -> None:
        ...


class JsonFileBackend:
    """Table stored as a single JSON document on disk."""

    def __init__(self, path: Path, key_field: str = "id"):
        self.path = Path(path)
        self.key_field = key_field

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            # Unreadable table is treated as empty; the next save replaces it
            logger.error("table_unreadable", path=str(self.path), error=str(e))
            return {}

        if isinstance(data, dict):
            return data

        if isinstance(data, list):
            # Older layout: a plain array of records
            return {
                str(record[self.key_field]): record
                for record in data
                if isinstance(record, dict) and self.key_field in record
            }

        logger.error("table_unexpected_layout", path=str(self.path), type=type(data).__name__)
        return {}

    def save(self, records: dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise


class MemoryBackend:
    """In-process table, used by tests and single-process tooling."""

    def __init__(self, records: dict[str, dict] | None = None):
        self._records: dict[str, dict] = copy.deepcopy(records or {})
        self.save_count = 0

    def load(self) -> dict[str, dict]:
        return copy.deepcopy(self._records)

    def save(self, records: dict[str, dict]) -> None:
        # Round-trip through JSON so tests see exactly what a file would hold
        self._records = json.loads(json.dumps(records))
        self.save_count += 1
