"""Job manifests: CSV files with one row per video."""

import csv
from pathlib import Path
from typing import Protocol, Union

import structlog
from pydantic import ValidationError

from yt_batch.core.exceptions import ManifestError
from yt_batch.models.manifest import ManifestRow

logger = structlog.get_logger()


class ManifestSource(Protocol):
    def read_rows(self, path: Union[str, Path]) -> list[ManifestRow]:
        ...


class CsvManifestSource:
    """Reads a manifest with a header row.

    Recognised columns: ``youtube_title``, ``youtube_description``,
    ``thumbnail_path``, ``path``, ``scheduleTime``, ``privacyStatus``. Other
    columns are ignored.
    """

    def read_rows(self, path: Union[str, Path]) -> list[ManifestRow]:
        path = Path(path)
        try:
            with open(path, newline="", encoding="utf-8-sig") as f:
                reader = csv.DictReader(f)
                rows = [self._to_row(raw) for raw in reader]
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise ManifestError(f"Could not read manifest {path}: {e}") from e
        except ValidationError as e:
            raise ManifestError(f"Malformed manifest row in {path}: {e}") from e

        logger.info("manifest_parsed", path=str(path), rows=len(rows))
        return rows

    @staticmethod
    def _to_row(raw: dict) -> ManifestRow:
        # Rows longer than the header put their extra cells under a None key
        cleaned = {key.strip(): value for key, value in raw.items() if key is not None}
        return ManifestRow.model_validate(cleaned)

    def count_rows(self, path: Union[str, Path]) -> int:
        return len(self.read_rows(path))
