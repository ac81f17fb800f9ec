"""
DICOM Batch Toolkit

Batch DICOM to PNG rendering, naive tag anonymization and tag value
statistics over folder trees.
"""

from .anonymize import DicomAnonymizer, anonymize, parse_tag
from .config import BatchConfig
from .engine import BatchEngine, ItemProcessor, OutputLayout
from .errors import (
    BatchSetupError,
    DicomBatchError,
    DimensionMismatchError,
    ItemError,
    MissingPixelDataError,
    PixelDecodeError,
    RenderError,
)
from .models import (
    AnonymizationSpec,
    BatchReport,
    FileMetadata,
    FileOutcome,
    PixelDataStatus,
    ProgressEvent,
    ProgressStatus,
    TagDetails,
    TagStat,
)
from .render import PngConverter, RenderAttributes, render
from .stats import StatsCache, TagStatistics
from .workflow import anonymize_folder, convert_folder

__version__ = "0.1.0"
__all__ = [
    "AnonymizationSpec",
    "BatchConfig",
    "BatchEngine",
    "BatchReport",
    "BatchSetupError",
    "DicomAnonymizer",
    "DicomBatchError",
    "DimensionMismatchError",
    "FileMetadata",
    "FileOutcome",
    "ItemError",
    "ItemProcessor",
    "MissingPixelDataError",
    "OutputLayout",
    "PixelDataStatus",
    "PixelDecodeError",
    "PngConverter",
    "ProgressEvent",
    "ProgressStatus",
    "RenderAttributes",
    "RenderError",
    "StatsCache",
    "TagDetails",
    "TagStat",
    "TagStatistics",
    "anonymize",
    "anonymize_folder",
    "convert_folder",
    "parse_tag",
    "render",
]
