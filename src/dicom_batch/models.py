"""
Data model definitions for the DICOM batch toolkit.

Everything here is plain data: tasks and progress events exchanged inside
one batch run, per-file metadata and outcomes consumed by the aggregator,
the final report, and the tag statistics results.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union


Tag = Tuple[int, int]

PIXEL_DATA_TAG: Tag = (0x7FE0, 0x0010)


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class ProgressStatus(str, Enum):
    """What a worker is about to do with a task."""
    CONVERTING = "converting"
    ANONYMIZING = "anonymizing"
    SKIPPED = "skipped"


class PixelDataStatus(str, Enum):
    """Tri-state classification of a file's pixel data element."""
    MISSING = "Missing"
    BINARY = "Binary"
    ERROR = "Error"


class OutcomeKind(str, Enum):
    CONVERTED = "converted"
    SKIPPED = "skipped"
    FAILED = "failed"


# ═══════════════════════════════════════════════════════════════════════════════
# ATTRIBUTE VALUES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class NumberList:
    values: Tuple[float, ...]


AttributeValue = Union[Number, Text, NumberList]


def attribute_value(raw) -> Optional[AttributeValue]:
    """
    Wrap a raw attribute value in the closed AttributeValue variant.

    Window center/width and pixel spacing show up as a single number, a
    multi-valued element, or a delimited string depending on how the file
    was written. Numbers stay numbers, sequences of numbers become a
    NumberList and anything else is kept as Text for the use site to parse.
    """
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("ascii", errors="replace")
    if isinstance(raw, str):
        stripped = raw.strip()
        return Text(stripped) if stripped else None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return Number(float(raw))
    if isinstance(raw, (list, tuple)) or hasattr(raw, "__iter__"):
        items = list(raw)
        if not items:
            return None
        try:
            return NumberList(tuple(float(item) for item in items))
        except (TypeError, ValueError):
            return Text("\\".join(str(item) for item in items))
    try:
        return Number(float(raw))
    except (TypeError, ValueError):
        return Text(str(raw))


# ═══════════════════════════════════════════════════════════════════════════════
# BATCH RUN TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Task:
    """One discovered input file and where its output goes."""
    source_path: Path
    destination_path: Path
    relative_folder: Path


@dataclass(frozen=True)
class ProgressEvent:
    current: int
    total: int
    filename: str
    status: ProgressStatus

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return (self.current / self.total) * 100.0


@dataclass
class FileMetadata:
    """Per-file attributes exported as one audit row."""
    file_name: str
    folder_relative: Path = field(default_factory=lambda: Path("."))
    study_date: Optional[str] = None
    modality: Optional[str] = None
    manufacturer: Optional[str] = None
    study_description: Optional[str] = None
    series_description: Optional[str] = None
    institution_name: Optional[str] = None
    pixel_data: Optional[PixelDataStatus] = None
    width: Optional[int] = None
    height: Optional[int] = None
    pixel_spacing: Optional[str] = None

    @classmethod
    def empty(cls, file_name: str) -> "FileMetadata":
        return cls(file_name=file_name)


@dataclass
class FileOutcome:
    """
    Terminal state of one task.

    Every outcome carries metadata, even a failure, so the audit export
    has a row for each discovered file.
    """
    kind: OutcomeKind
    metadata: FileMetadata
    reason: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def converted(cls, metadata: FileMetadata) -> "FileOutcome":
        return cls(OutcomeKind.CONVERTED, metadata)

    @classmethod
    def skipped(cls, metadata: FileMetadata, reason: str) -> "FileOutcome":
        return cls(OutcomeKind.SKIPPED, metadata, reason=reason)

    @classmethod
    def failed(cls, metadata: FileMetadata, error: BaseException) -> "FileOutcome":
        return cls(OutcomeKind.FAILED, metadata, error=error)

    @property
    def message(self) -> str:
        if self.kind is OutcomeKind.FAILED:
            return str(self.error) if self.error is not None else "unknown error"
        if self.kind is OutcomeKind.SKIPPED:
            return self.reason or "skipped"
        return "ok"


@dataclass(frozen=True)
class BatchReport:
    total: int
    successful: int
    skipped: int
    failed_files: List[str]
    skipped_files: List[str]
    output_folder: Path

    @property
    def failed(self) -> int:
        # Derived so the two bookkeeping paths can never drift apart
        return self.total - self.successful - self.skipped


@dataclass(frozen=True)
class LogEntry:
    file_name: str
    file_path: str
    success: bool
    status: str
    message: str
    conversion_type: str


@dataclass(frozen=True)
class AnonymizationSpec:
    """Tags to overwrite and the single replacement applied to all of them."""
    tags: Tuple[Tag, ...] = ()
    replacement: str = "ANONYMIZED"

    @classmethod
    def build(cls, tags: Sequence[Tag], replacement: str = "ANONYMIZED") -> "AnonymizationSpec":
        ordered: List[Tag] = []
        for group, element in tags:
            tag = (int(group), int(element))
            if tag not in ordered:
                ordered.append(tag)
        return cls(tuple(ordered), replacement)


# ═══════════════════════════════════════════════════════════════════════════════
# TAG STATISTICS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class TagStat:
    group: int
    element: int
    name: str
    value_counts: Dict[str, int]


@dataclass
class TagValueDetail:
    value: str
    count: int
    files: List[str]


@dataclass
class TagDetails:
    group: int
    element: int
    name: str
    values: List[TagValueDetail]


@dataclass
class DicomTag:
    """One element of a file as shown in the tag viewer."""
    group: int
    element: int
    name: str
    vr: str
    value: str
