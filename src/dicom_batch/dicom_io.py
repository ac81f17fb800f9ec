"""
Format layer adapter over pydicom.

The rest of the package only touches DICOM through the functions here:
open a dataset, look up an attribute, decode the first frame of pixel
data, write a dataset back out, and pull the audit metadata from it.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import pydicom
from dateutil import parser as date_parser
from pydicom.errors import InvalidDicomError
from pydicom.multival import MultiValue
from pydicom.tag import Tag as DicomTagType

from .errors import DicomReadError, OutputWriteError, PixelDecodeError
from .models import (
    FileMetadata,
    PixelDataStatus,
    Tag,
)

logger = logging.getLogger(__name__)

# Pixel Data, Float Pixel Data, Double Float Pixel Data
PIXEL_TAGS: Tuple[Tag, ...] = (
    (0x7FE0, 0x0010),
    (0x7FE0, 0x0008),
    (0x7FE0, 0x0009),
)

STUDY_DATE = (0x0008, 0x0020)
MODALITY = (0x0008, 0x0060)
MANUFACTURER = (0x0008, 0x0070)
INSTITUTION_NAME = (0x0008, 0x0080)
STUDY_DESCRIPTION = (0x0008, 0x1030)
SERIES_DESCRIPTION = (0x0008, 0x103E)
SOP_CLASS_UID = (0x0008, 0x0016)
ROWS = (0x0028, 0x0010)
COLUMNS = (0x0028, 0x0011)
PIXEL_SPACING = (0x0028, 0x0030)


@dataclass(frozen=True)
class DecodedPixels:
    """
    First frame of decoded pixel data as a raw sample buffer.

    Attributes:
        samples: Little-endian sample bytes, interleaved when
            samples_per_pixel is 3
        rows: Declared image height
        columns: Declared image width
        bits_allocated: 8 or 16
        samples_per_pixel: 1 for monochrome, 3 for colour
        transfer_syntax: Human readable transfer syntax name
    """
    samples: bytes
    rows: int
    columns: int
    bits_allocated: int
    samples_per_pixel: int = 1
    transfer_syntax: str = "Unknown"


# ═══════════════════════════════════════════════════════════════════════════════
# READ / WRITE
# ═══════════════════════════════════════════════════════════════════════════════

def open_dataset(path: Union[str, Path], stop_before_pixels: bool = False) -> pydicom.Dataset:
    """
    Read a DICOM file.

    Raises:
        DicomReadError: If the file is missing or not valid DICOM
    """
    try:
        return pydicom.dcmread(str(path), stop_before_pixels=stop_before_pixels)
    except (InvalidDicomError, OSError, EOFError, ValueError) as exc:
        raise DicomReadError(f"Failed to open DICOM file {path}: {exc}") from exc


def write_dataset(ds: pydicom.Dataset, path: Union[str, Path]) -> None:
    """
    Write a dataset to path, creating parent folders.

    Raises:
        OutputWriteError: On any failure, including values that cannot be
            encoded with the element's VR
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        ds.save_as(str(path))
    except Exception as exc:
        raise OutputWriteError(f"Failed to save DICOM file {path}: {exc}") from exc


def get_attribute(ds: pydicom.Dataset, tag_or_name: Union[str, Tag]):
    """Return an element's value, or None when absent or empty."""
    if isinstance(tag_or_name, str):
        value = ds.get(tag_or_name)
    else:
        element = ds.get(DicomTagType(*tag_or_name))
        value = element.value if element is not None else None
    if value is None:
        return None
    if isinstance(value, (str, bytes)) and not value.strip():
        return None
    return value


# ═══════════════════════════════════════════════════════════════════════════════
# PIXEL DATA
# ═══════════════════════════════════════════════════════════════════════════════

def has_pixel_data(ds: pydicom.Dataset) -> bool:
    return any(DicomTagType(*tag) in ds for tag in PIXEL_TAGS)


def pixel_data_status(ds: pydicom.Dataset) -> PixelDataStatus:
    """Classify pixel data as Missing, Binary or Error without decoding it."""
    present = [DicomTagType(*tag) for tag in PIXEL_TAGS if DicomTagType(*tag) in ds]
    if not present:
        return PixelDataStatus.MISSING
    try:
        value = ds[present[0]].value
    except Exception:
        logger.debug("Unreadable pixel data element", exc_info=True)
        return PixelDataStatus.ERROR
    if value is None or len(value) == 0:
        return PixelDataStatus.ERROR
    return PixelDataStatus.BINARY


def transfer_syntax_name(ds: pydicom.Dataset) -> str:
    file_meta = getattr(ds, "file_meta", None)
    uid = getattr(file_meta, "TransferSyntaxUID", None) if file_meta is not None else None
    if not uid:
        return "Unknown"
    return uid.name or str(uid)


def decode_pixel_data(ds: pydicom.Dataset) -> DecodedPixels:
    """
    Decode the first frame of pixel data into a little-endian sample buffer.

    Raises:
        PixelDecodeError: If pydicom cannot decode the pixel data; carries
            the transfer syntax name for diagnostics
    """
    ts_name = transfer_syntax_name(ds)
    try:
        array = ds.pixel_array
    except Exception as exc:
        raise PixelDecodeError(ts_name, exc) from exc

    rows = int(ds.get("Rows", 0) or 0)
    columns = int(ds.get("Columns", 0) or 0)
    samples_per_pixel = int(ds.get("SamplesPerPixel", 1) or 1)
    bits_allocated = int(ds.get("BitsAllocated", 8) or 8)
    frames = int(ds.get("NumberOfFrames", 1) or 1)

    if frames > 1:
        array = array[0]

    # Only 1-bit and 8-bit data is narrowed; wider depths keep their real
    # sample size so the renderer can reject what it cannot read.
    array = np.ascontiguousarray(array)
    if bits_allocated <= 8:
        samples = array.astype("u1").tobytes()
        bits_allocated = 8
    else:
        samples = array.astype(array.dtype.newbyteorder("<")).tobytes()

    return DecodedPixels(
        samples=samples,
        rows=rows,
        columns=columns,
        bits_allocated=bits_allocated,
        samples_per_pixel=samples_per_pixel,
        transfer_syntax=ts_name,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# METADATA
# ═══════════════════════════════════════════════════════════════════════════════

def dicom_text(ds: pydicom.Dataset, tag: Tag) -> Optional[str]:
    """Trimmed string value of an element, None when absent or blank."""
    value = get_attribute(ds, tag)
    if value is None:
        return None
    if isinstance(value, bytes):
        return None
    if isinstance(value, (list, tuple, MultiValue)):
        text = "\\".join(str(item) for item in value)
    else:
        text = str(value)
    text = text.strip()
    return text or None


def dicom_int(ds: pydicom.Dataset, tag: Tag) -> Optional[int]:
    value = get_attribute(ds, tag)
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def dicom_date(ds: pydicom.Dataset, tag: Tag) -> Optional[str]:
    """Normalize a DA value to ISO-8601, None when unparseable."""
    raw = dicom_text(ds, tag)
    if raw is None:
        return None
    digits = "".join(ch for ch in raw if ch.isdigit())
    if len(digits) < 8:
        return None
    try:
        parsed = date_parser.parse(digits[:8], yearfirst=True, dayfirst=False)
    except (ValueError, OverflowError):
        return None
    return parsed.date().isoformat()


def pixel_spacing(ds: pydicom.Dataset) -> Optional[str]:
    """Pixel spacing rendered with ", " between row and column spacing."""
    text = dicom_text(ds, PIXEL_SPACING)
    return text.replace("\\", ", ") if text else None


def extract_metadata(ds: pydicom.Dataset, path: Union[str, Path]) -> FileMetadata:
    return FileMetadata(
        file_name=Path(path).name,
        study_date=dicom_date(ds, STUDY_DATE),
        modality=dicom_text(ds, MODALITY),
        manufacturer=dicom_text(ds, MANUFACTURER),
        study_description=dicom_text(ds, STUDY_DESCRIPTION),
        series_description=dicom_text(ds, SERIES_DESCRIPTION),
        institution_name=dicom_text(ds, INSTITUTION_NAME),
        pixel_data=pixel_data_status(ds),
        width=dicom_int(ds, COLUMNS),
        height=dicom_int(ds, ROWS),
        pixel_spacing=pixel_spacing(ds),
    )


def read_metadata(path: Union[str, Path]) -> FileMetadata:
    """Open a file and extract its metadata. Raises DicomReadError."""
    return extract_metadata(open_dataset(path), path)
