"""
Exception taxonomy for batch processing.

Setup errors abort a whole batch before any item runs. Item errors are
raised inside a single task and are always folded into that task's
outcome by the engine; they never escape a batch run.
"""

from typing import Optional


class DicomBatchError(Exception):
    """Base class for all toolkit errors."""
    pass


class BatchSetupError(DicomBatchError):
    """Input root missing or output directories cannot be created."""
    pass


class ItemError(DicomBatchError):
    """A failure confined to one input file."""
    pass


class DicomReadError(ItemError):
    """Source file could not be parsed as DICOM."""
    pass


class MissingPixelDataError(ItemError):
    """Source file carries no pixel data element at all."""

    def __init__(self, modality: Optional[str] = None, sop_class: Optional[str] = None):
        self.modality = modality or "Unknown"
        self.sop_class = sop_class or "Unknown"
        super().__init__(
            f"no pixel data (Modality={self.modality}, SOPClass={self.sop_class})"
        )


class RenderError(ItemError):
    """Base class for pixel pipeline failures."""
    pass


class PixelDecodeError(RenderError):
    """The format layer could not decode the pixel data."""

    def __init__(self, transfer_syntax: str, cause: Exception):
        self.transfer_syntax = transfer_syntax
        self.cause = cause
        super().__init__(
            f"failed to decode pixel data (Transfer Syntax: {transfer_syntax}): {cause}"
        )


class DimensionMismatchError(RenderError):
    """Sample buffer does not fit the declared rows x columns."""
    pass


class OutputWriteError(ItemError):
    """Destination file could not be written."""
    pass
