"""
Audit export sinks.

All writers here are append-only and single-owner: the batch aggregator
creates them, feeds them one row at a time, and closes them. Worker
threads never touch them.
"""

import csv
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Font

from .models import FileMetadata, LogEntry

logger = logging.getLogger(__name__)

METADATA_COLUMNS = [
    "F_name",
    "Study_date",
    "Modality",
    "Manufacturer",
    "Study_description",
    "Series_description",
    "Institution_name",
    "Pixel_data",
    "Im_width",
    "Im_height",
    "Pixel_spacing",
]

LOG_COLUMNS = ["file_name", "file_path", "success", "status", "message", "conversion_type"]

METADATA_ALL_CSV = "metadata_all.csv"
METADATA_ALL_XLSX = "metadata_all.xlsx"
FOLDER_METADATA_XLSX = "metadata.xlsx"
LOG_FILENAME = "logs.csv"


def _optional(value) -> str:
    return "" if value is None else str(value)


def metadata_row(metadata: FileMetadata) -> List[str]:
    """Render metadata in METADATA_COLUMNS order."""
    pixel_data = metadata.pixel_data.value if metadata.pixel_data is not None else None
    return [
        metadata.file_name,
        _optional(metadata.study_date),
        _optional(metadata.modality),
        _optional(metadata.manufacturer),
        _optional(metadata.study_description),
        _optional(metadata.series_description),
        _optional(metadata.institution_name),
        _optional(pixel_data),
        _optional(metadata.width),
        _optional(metadata.height),
        _optional(metadata.pixel_spacing),
    ]


class MetadataCsvWriter:
    """Streams one metadata row per processed file into metadata_all.csv."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._file)
        self._writer.writerow(METADATA_COLUMNS)
        self._file.flush()
        self.rows_written = 0

    def write(self, metadata: FileMetadata) -> None:
        self._writer.writerow(metadata_row(metadata))
        # Flush per row so a killed run keeps everything already processed
        self._file.flush()
        self.rows_written += 1

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class LogCsvWriter:
    """
    Appends structured log entries to logs.csv.

    The header row is written only when the target is new or empty, so
    consecutive runs into the same output root share one log.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fresh = not self.path.exists() or self.path.stat().st_size == 0
        self._file = open(self.path, "a", newline="", encoding="utf-8")
        self._writer = csv.writer(self._file)
        if fresh:
            self._writer.writerow(LOG_COLUMNS)
            self._file.flush()

    def write(self, entry: LogEntry) -> None:
        self._writer.writerow([
            entry.file_name,
            entry.file_path,
            "true" if entry.success else "false",
            entry.status,
            entry.message,
            entry.conversion_type,
        ])
        self._file.flush()

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def read_log_entries(path: Path) -> List[LogEntry]:
    """Load a logs.csv written by LogCsvWriter."""
    path = Path(path)
    if not path.exists():
        return []
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        return [
            LogEntry(
                file_name=row["file_name"],
                file_path=row["file_path"],
                success=row["success"] == "true",
                status=row["status"],
                message=row["message"],
                conversion_type=row["conversion_type"],
            )
            for row in reader
        ]


# ═══════════════════════════════════════════════════════════════════════════════
# SPREADSHEETS
# ═══════════════════════════════════════════════════════════════════════════════

def write_metadata_sheet(path: Path, rows: Iterable[FileMetadata]) -> Optional[Path]:
    rows = list(rows)
    if not rows:
        return None

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "metadata"
    sheet.append(METADATA_COLUMNS)
    for cell in sheet[1]:
        cell.font = Font(bold=True)

    for metadata in rows:
        values = metadata_row(metadata)
        # Keep dimensions numeric in the workbook
        values[8] = metadata.width
        values[9] = metadata.height
        sheet.append([value if value != "" else None for value in values])

    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(str(path))
    return path


def write_metadata_workbooks(
    all_rows: List[FileMetadata],
    folder_rows: Dict[Path, List[FileMetadata]],
    batch_root: Path,
    output_dir: Path,
) -> List[Path]:
    """
    Write metadata_all.xlsx under batch_root and one metadata.xlsx per
    source subfolder under output_dir.

    Returns:
        Paths of the workbooks written
    """
    if not all_rows:
        return []

    written = [write_metadata_sheet(batch_root / METADATA_ALL_XLSX, all_rows)]
    for relative_folder in sorted(folder_rows):
        target = output_dir / relative_folder / FOLDER_METADATA_XLSX
        written.append(write_metadata_sheet(target, folder_rows[relative_folder]))

    logger.debug("Wrote %d metadata workbooks", len(written))
    return [path for path in written if path is not None]
