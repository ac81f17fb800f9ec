"""
Pixel Rendering Pipeline
========================
Turns the first frame of a DICOM image into an 8-bit grayscale raster.

Stages, in order, each applied to the whole sample buffer:
1. Colour reduction: RGB-family pixels become 0.299R + 0.587G + 0.114B
2. Polarity: MONOCHROME1 is inverted against the buffer maximum
3. Modality rescale: v * slope + intercept
4. VOI windowing: linear window with data-driven output range
5. Normalization: min-max into [0, 255]
6. Pack into rows x columns

The stage functions are pure and operate on numpy arrays. PngConverter
wraps them as the batch engine's "convert" item processor.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pydicom
from PIL import Image

from .dicom_io import (
    DecodedPixels,
    SOP_CLASS_UID,
    decode_pixel_data,
    dicom_text,
    extract_metadata,
    get_attribute,
    has_pixel_data,
    open_dataset,
)
from .engine import ItemProcessor
from .errors import (
    DimensionMismatchError,
    ItemError,
    MissingPixelDataError,
    OutputWriteError,
    RenderError,
)
from .models import (
    AttributeValue,
    FileOutcome,
    Number,
    NumberList,
    ProgressStatus,
    Task,
    Text,
    attribute_value,
)

logger = logging.getLogger(__name__)

RGB_FAMILY = {
    "RGB",
    "YBR_FULL",
    "YBR_FULL_422",
    "YBR_PARTIAL_420",
    "YBR_PARTIAL_422",
    "YBR_ICT",
    "YBR_RCT",
}
MONOCHROME = {"MONOCHROME1", "MONOCHROME2"}

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])

_WINDOW_DELIMITERS = re.compile(r"[,\\]")


@dataclass(frozen=True)
class RenderAttributes:
    """Optional attributes steering the pipeline. None means absent."""
    photometric_interpretation: Optional[str] = None
    rescale_slope: Optional[AttributeValue] = None
    rescale_intercept: Optional[AttributeValue] = None
    window_center: Optional[AttributeValue] = None
    window_width: Optional[AttributeValue] = None

    @classmethod
    def from_dataset(cls, ds: pydicom.Dataset) -> "RenderAttributes":
        photometric = get_attribute(ds, "PhotometricInterpretation")
        return cls(
            photometric_interpretation=str(photometric).strip().upper() if photometric else None,
            rescale_slope=attribute_value(get_attribute(ds, "RescaleSlope")),
            rescale_intercept=attribute_value(get_attribute(ds, "RescaleIntercept")),
            window_center=attribute_value(get_attribute(ds, "WindowCenter")),
            window_width=attribute_value(get_attribute(ds, "WindowWidth")),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# ATTRIBUTE COERCION
# ═══════════════════════════════════════════════════════════════════════════════

def first_number(value: Optional[AttributeValue]) -> Optional[float]:
    """
    Window center/width coercion: the first value wins.

    Multi-valued elements give a NumberList; files written by some vendors
    carry a single string with comma or backslash separators instead.
    """
    if value is None:
        return None
    if isinstance(value, Number):
        number = value.value
    elif isinstance(value, NumberList):
        if not value.values:
            return None
        number = value.values[0]
    elif isinstance(value, Text):
        head = _WINDOW_DELIMITERS.split(value.value, maxsplit=1)[0].strip()
        try:
            number = float(head)
        except ValueError:
            return None
    else:
        return None
    return number if np.isfinite(number) else None


def as_float(value: Optional[AttributeValue], default: float) -> float:
    """Rescale slope/intercept coercion, falling back to default."""
    if value is None:
        return default
    if isinstance(value, Number):
        number = value.value
    elif isinstance(value, NumberList):
        number = value.values[0] if value.values else default
    elif isinstance(value, Text):
        try:
            number = float(value.value)
        except ValueError:
            return default
    else:
        return default
    return number if np.isfinite(number) else default


# ═══════════════════════════════════════════════════════════════════════════════
# PIPELINE STAGES
# ═══════════════════════════════════════════════════════════════════════════════

def read_samples(samples: bytes, bits_allocated: int) -> np.ndarray:
    """Interpret a raw buffer as unsigned samples (little-endian for 16-bit)."""
    if bits_allocated == 16:
        if len(samples) % 2:
            raise DimensionMismatchError(
                f"16-bit sample buffer has odd length {len(samples)}"
            )
        return np.frombuffer(samples, dtype="<u2").astype(np.float64)
    if bits_allocated == 8:
        return np.frombuffer(samples, dtype=np.uint8).astype(np.float64)
    raise RenderError(f"Unsupported BitsAllocated: {bits_allocated}")


def reduce_color(samples: np.ndarray, photometric: Optional[str]) -> np.ndarray:
    """Collapse interleaved colour triples to luminance; monochrome passes through."""
    if photometric in RGB_FAMILY:
        if samples.size % 3:
            raise DimensionMismatchError(
                f"{photometric} buffer of {samples.size} samples is not a whole number of pixels"
            )
        return samples.reshape(-1, 3) @ LUMA_WEIGHTS
    if photometric is not None and photometric not in MONOCHROME:
        logger.debug("Unknown photometric interpretation %r, treating as monochrome", photometric)
    return samples


def correct_polarity(values: np.ndarray, photometric: Optional[str]) -> np.ndarray:
    if photometric == "MONOCHROME1" and values.size:
        return values.max() - values
    return values


def apply_rescale(values: np.ndarray, slope: float = 1.0, intercept: float = 0.0) -> np.ndarray:
    return values * slope + intercept


def apply_window(values: np.ndarray, center: Optional[float], width: Optional[float]) -> np.ndarray:
    """
    Linear VOI window.

    The output range is the current min/max of the data, so the window only
    redistributes contrast; normalization maps it to 8 bits afterwards.
    """
    if center is None or width is None or width <= 0 or values.size == 0:
        return values

    y_min = values.min()
    y_max = values.max()
    lower = center - 0.5 - (width - 1) / 2
    upper = center - 0.5 + (width - 1) / 2

    # width == 1 leaves no interpolated band
    denominator = (width - 1) or 1.0
    linear = ((values - (center - 0.5)) / denominator + 0.5) * (y_max - y_min) + y_min

    return np.where(values <= lower, y_min, np.where(values > upper, y_max, linear))


def normalize(values: np.ndarray) -> np.ndarray:
    """Min-max scale into uint8; a flat buffer becomes all zeros."""
    if values.size == 0:
        return np.zeros(values.shape, dtype=np.uint8)
    lo = values.min()
    hi = values.max()
    if hi == lo:
        return np.zeros(values.shape, dtype=np.uint8)
    scaled = (values - lo) / (hi - lo) * 255.0
    return np.clip(np.round(scaled), 0, 255).astype(np.uint8)


def pack(values: np.ndarray, rows: int, columns: int) -> np.ndarray:
    if rows <= 0 or columns <= 0 or values.size != rows * columns:
        raise DimensionMismatchError(
            f"Buffer of {values.size} samples does not match {columns}x{rows}"
        )
    return values.reshape(rows, columns)


def render(decoded: DecodedPixels, attributes: RenderAttributes) -> np.ndarray:
    """
    Run the full pipeline.

    Args:
        decoded: First frame as a raw sample buffer
        attributes: Photometric interpretation, rescale and window values

    Returns:
        uint8 array of shape (rows, columns)

    Raises:
        RenderError: On unsupported bit depth or a buffer that does not fit
            the declared dimensions
    """
    photometric = attributes.photometric_interpretation

    values = read_samples(decoded.samples, decoded.bits_allocated)
    values = reduce_color(values, photometric)
    values = correct_polarity(values, photometric)
    values = apply_rescale(
        values,
        slope=as_float(attributes.rescale_slope, 1.0),
        intercept=as_float(attributes.rescale_intercept, 0.0),
    )
    values = apply_window(
        values,
        first_number(attributes.window_center),
        first_number(attributes.window_width),
    )
    return pack(normalize(values), decoded.rows, decoded.columns)


# ═══════════════════════════════════════════════════════════════════════════════
# ITEM PROCESSOR
# ═══════════════════════════════════════════════════════════════════════════════

def save_png(raster: np.ndarray, path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.fromarray(raster).save(str(path), format="PNG")
    except (OSError, ValueError) as exc:
        raise OutputWriteError(f"Unable to save PNG to {path}: {exc}") from exc


class PngConverter(ItemProcessor):
    """Convert one DICOM file into a grayscale PNG."""

    status = ProgressStatus.CONVERTING
    conversion_type = "dicom_to_png"
    output_dirname = "png_file"
    target_suffix = ".png"

    def process(self, task: Task) -> FileOutcome:
        ds = open_dataset(task.source_path)
        metadata = extract_metadata(ds, task.source_path)

        if not has_pixel_data(ds):
            return FileOutcome.failed(
                metadata,
                MissingPixelDataError(metadata.modality, dicom_text(ds, SOP_CLASS_UID)),
            )

        try:
            decoded = decode_pixel_data(ds)
            raster = render(decoded, RenderAttributes.from_dataset(ds))
            save_png(raster, task.destination_path)
        except ItemError as exc:
            return FileOutcome.failed(metadata, exc)

        metadata.height, metadata.width = raster.shape
        return FileOutcome.converted(metadata)
