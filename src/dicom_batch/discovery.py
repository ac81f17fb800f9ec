"""Recursive discovery of DICOM candidates under a folder."""

import logging
import os
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)

DICOM_EXTENSIONS = {".dcm", ".dicom", ".ima"}

PREAMBLE_LENGTH = 128
MAGIC = b"DICM"


def looks_like_dicom(path: Path) -> bool:
    """Extension allow-list first, then the 128-byte preamble + DICM marker."""
    if path.suffix.lower() in DICOM_EXTENSIONS:
        return True
    try:
        with open(path, "rb") as f:
            header = f.read(PREAMBLE_LENGTH + len(MAGIC))
    except OSError:
        return False
    return len(header) == PREAMBLE_LENGTH + len(MAGIC) and header[PREAMBLE_LENGTH:] == MAGIC


def list_candidate_files(root: Union[str, Path]) -> List[Path]:
    """Find all DICOM files below root, sorted by path."""
    root = Path(root)
    if root.is_file():
        return [root] if looks_like_dicom(root) else []

    candidates = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            path = Path(dirpath) / name
            if looks_like_dicom(path):
                candidates.append(path)

    logger.debug("Discovered %d DICOM candidates under %s", len(candidates), root)
    return sorted(candidates)
