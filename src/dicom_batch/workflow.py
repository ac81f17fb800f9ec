"""Folder-level entry points wiring the item processors into the engine."""

from pathlib import Path
from typing import Optional, Union

from .anonymize import DicomAnonymizer
from .config import BatchConfig
from .engine import BatchEngine, LogSink, ProgressSink
from .models import AnonymizationSpec, BatchReport
from .render import PngConverter


def convert_folder(
    input_folder: Union[str, Path],
    output_folder: Union[str, Path],
    config: Optional[BatchConfig] = None,
    progress: Optional[ProgressSink] = None,
    on_log: Optional[LogSink] = None,
) -> BatchReport:
    """Render every DICOM file below input_folder to PNG."""
    engine = BatchEngine(config, progress_sink=progress, log_sink=on_log)
    return engine.run(input_folder, output_folder, PngConverter())


def anonymize_folder(
    input_folder: Union[str, Path],
    output_folder: Union[str, Path],
    spec: AnonymizationSpec,
    config: Optional[BatchConfig] = None,
    progress: Optional[ProgressSink] = None,
    on_log: Optional[LogSink] = None,
) -> BatchReport:
    """Write an anonymized copy of every DICOM file below input_folder."""
    engine = BatchEngine(config, progress_sink=progress, log_sink=on_log)
    return engine.run(input_folder, output_folder, DicomAnonymizer(spec))
