"""
Pytest configuration and synthetic DICOM fixtures for dicom_batch tests.
"""
import os
import sys
from pathlib import Path
from typing import Optional

import numpy as np
import pydicom
import pytest
from pydicom.dataset import FileDataset, FileMetaDataset
from pydicom.uid import ExplicitVRLittleEndian, generate_uid

# Match the src/ layout without requiring an install
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


def write_dicom(
    path: Path,
    pixels: Optional[np.ndarray] = None,
    photometric: str = "MONOCHROME2",
    modality: str = "CT",
    study_date: str = "20231215",
    window_center=None,
    window_width=None,
    rescale_slope=None,
    rescale_intercept=None,
    pixel_spacing=None,
    **attributes,
) -> Path:
    """
    Write a small synthetic DICOM file.

    Args:
        path: Destination file
        pixels: uint8/uint16 array of shape (rows, cols) or (rows, cols, 3);
            None writes a file without any pixel data element
        photometric: PhotometricInterpretation
        modality: Modality
        study_date: StudyDate in YYYYMMDD form
        window_center, window_width: Optional VOI attributes
        rescale_slope, rescale_intercept: Optional modality LUT attributes
        pixel_spacing: Optional PixelSpacing, e.g. [0.5, 0.25]
        **attributes: Extra dataset keywords to set

    Returns:
        The path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    file_meta = FileMetaDataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.SecondaryCaptureImageStorage
    file_meta.MediaStorageSOPInstanceUID = generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(str(path), {}, file_meta=file_meta, preamble=b"\x00" * 128)

    ds.PatientName = "DOE^JOHN"
    ds.PatientID = "12345"
    ds.StudyInstanceUID = generate_uid()
    ds.SeriesInstanceUID = generate_uid()
    ds.SOPClassUID = file_meta.MediaStorageSOPClassUID
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.Modality = modality
    ds.StudyDate = study_date
    ds.StudyDescription = "Test Study"
    ds.SeriesDescription = "Test Series"
    ds.Manufacturer = "Test Systems"
    ds.InstitutionName = "Test Hospital"

    if pixels is not None:
        pixels = np.asarray(pixels)
        bits = 16 if pixels.dtype == np.uint16 else 8
        ds.Rows, ds.Columns = pixels.shape[:2]
        ds.SamplesPerPixel = 3 if pixels.ndim == 3 else 1
        if pixels.ndim == 3:
            ds.PlanarConfiguration = 0
        ds.PhotometricInterpretation = photometric
        ds.BitsAllocated = bits
        ds.BitsStored = bits
        ds.HighBit = bits - 1
        ds.PixelRepresentation = 0
        ds.PixelData = pixels.astype("<u2" if bits == 16 else "u1").tobytes()

    if window_center is not None:
        ds.WindowCenter = window_center
    if window_width is not None:
        ds.WindowWidth = window_width
    if rescale_slope is not None:
        ds.RescaleSlope = rescale_slope
    if rescale_intercept is not None:
        ds.RescaleIntercept = rescale_intercept
    if pixel_spacing is not None:
        ds.PixelSpacing = pixel_spacing

    for keyword, value in attributes.items():
        setattr(ds, keyword, value)

    ds.save_as(str(path), enforce_file_format=True)
    return path


def ramp(rows: int, columns: int, dtype=np.uint8, maximum: Optional[int] = None) -> np.ndarray:
    """Deterministic gradient image covering 0..maximum."""
    maximum = maximum if maximum is not None else np.iinfo(dtype).max
    values = np.linspace(0, maximum, rows * columns)
    return np.round(values).astype(dtype).reshape(rows, columns)


@pytest.fixture
def dicom_factory(tmp_path):
    """Factory fixture writing DICOM files relative to a temp input folder."""
    input_root = tmp_path / "study"
    input_root.mkdir()

    def _create(relative: str, **kwargs) -> Path:
        return write_dicom(input_root / relative, **kwargs)

    _create.root = input_root
    return _create


@pytest.fixture
def output_root(tmp_path):
    path = tmp_path / "out"
    path.mkdir()
    return path
