"""
DICOM Tag Anonymizer

Overwrites a caller-chosen set of tags with one replacement string and
regenerates the SOP identity of every output file.

This is naive tag replacement, not a confidentiality profile: tags that
are not listed are left untouched, and the replacement value is written
with each element's original VR without checking that it fits.
"""

import logging
import re
import uuid

import pydicom
from pydicom.tag import Tag as DicomTagType

from .dicom_io import extract_metadata, open_dataset, write_dataset
from .engine import ItemProcessor
from .errors import OutputWriteError
from .models import AnonymizationSpec, FileOutcome, ProgressStatus, Tag, Task

logger = logging.getLogger(__name__)

# CT Image Storage
ANONYMIZED_SOP_CLASS_UID = "1.2.840.10008.5.1.4.1.1.2"

UID_ROOT = "2.25."

SOP_CLASS_UID_TAG = (0x0008, 0x0016)
SOP_INSTANCE_UID_TAG = (0x0008, 0x0018)

# VRs where an arbitrary replacement string is unlikely to encode cleanly
NON_TEXT_VRS = {
    "AS", "AT", "DA", "DS", "DT", "FD", "FL", "IS", "OB", "OD", "OF", "OL",
    "OV", "OW", "SL", "SQ", "SS", "SV", "TM", "UI", "UL", "US", "UV",
}

_TAG_PATTERN = re.compile(r"^\(?\s*([0-9A-Fa-f]{1,4})\s*,\s*([0-9A-Fa-f]{1,4})\s*\)?$")


def generate_instance_uid() -> str:
    """Fresh random 128-bit identifier under the 2.25 OID arc."""
    return f"{UID_ROOT}{uuid.uuid4().int}"


def parse_tag(text: str) -> Tag:
    """
    Parse "GGGG,EEEE" (optionally parenthesised) hex notation.

    Raises:
        ValueError: If the text is not two comma-separated hex numbers
    """
    match = _TAG_PATTERN.match(text.strip())
    if not match:
        raise ValueError(f"Invalid tag format: {text}. Expected 'Group,Element' (hex)")
    return int(match.group(1), 16), int(match.group(2), 16)


def anonymize(ds: pydicom.Dataset, spec: AnonymizationSpec) -> pydicom.Dataset:
    """
    Apply the anonymization spec to a dataset in place.

    Args:
        ds: Parsed dataset, mutated and returned
        spec: Tags to overwrite and the replacement value

    Returns:
        The same dataset
    """
    for group, element in spec.tags:
        tag = DicomTagType(group, element)
        if tag not in ds:
            continue
        data_element = ds[tag]
        if data_element.VR in NON_TEXT_VRS:
            logger.warning(
                "Replacing (%04X,%04X) with VR %s by %r; value may not encode for this VR",
                group, element, data_element.VR, spec.replacement,
            )
        data_element.value = spec.replacement

    new_uid = generate_instance_uid()
    ds.add_new(SOP_CLASS_UID_TAG, "UI", ANONYMIZED_SOP_CLASS_UID)
    ds.add_new(SOP_INSTANCE_UID_TAG, "UI", new_uid)

    file_meta = getattr(ds, "file_meta", None)
    if file_meta is not None:
        file_meta.MediaStorageSOPClassUID = ANONYMIZED_SOP_CLASS_UID
        file_meta.MediaStorageSOPInstanceUID = new_uid

    return ds


class DicomAnonymizer(ItemProcessor):
    """Anonymize one DICOM file into the output tree."""

    status = ProgressStatus.ANONYMIZING
    conversion_type = "anonymize"
    output_dirname = "dicom_file"
    target_suffix = None

    def __init__(self, spec: AnonymizationSpec):
        self.spec = spec

    def process(self, task: Task) -> FileOutcome:
        ds = open_dataset(task.source_path)
        anonymize(ds, self.spec)
        metadata = extract_metadata(ds, task.source_path)
        try:
            write_dataset(ds, task.destination_path)
        except OutputWriteError as exc:
            return FileOutcome.failed(metadata, exc)
        return FileOutcome.converted(metadata)
