"""Flat listing of every element in one file, for the tag viewer."""

from pathlib import Path
from typing import List, Union

from pydicom.multival import MultiValue

from .dicom_io import PIXEL_TAGS, open_dataset
from .models import DicomTag
from .stats import tag_name

BINARY_PLACEHOLDER = "<binary data>"


def read_all_tags(path: Union[str, Path]) -> List[DicomTag]:
    """
    List top-level elements of a file in tag order.

    Pixel data, sequences and other binary values are shown as a
    placeholder rather than stringified.
    """
    ds = open_dataset(path)
    tags = []
    for element in ds:
        key = (element.tag.group, element.tag.element)
        value = element.value
        if key in PIXEL_TAGS or element.VR == "SQ" or isinstance(value, (bytes, bytearray)):
            text = BINARY_PLACEHOLDER
        elif isinstance(value, MultiValue):
            text = "\\".join(str(item) for item in value)
        elif value is None:
            text = ""
        else:
            text = str(value)
        tags.append(DicomTag(
            group=element.tag.group,
            element=element.tag.element,
            name=tag_name(key),
            vr=str(element.VR),
            value=text,
        ))
    return tags
