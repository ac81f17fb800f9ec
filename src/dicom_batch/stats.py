"""
Tag value statistics over a folder.

Files are split into one shard per worker. Each worker folds its shard
into a private tag -> Counter map, and the partial maps are merged
pairwise once every worker is done, so no lock is taken on the hot path.
Results for a (folder, tags) pair can be memoized in a StatsCache passed
in by the caller.
"""

import logging
import os
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from functools import reduce
from pathlib import Path
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple, TypeVar, Union

import pydicom
from pydicom.datadict import keyword_for_tag
from pydicom.multival import MultiValue
from pydicom.tag import Tag as DicomTagType

from .dicom_io import open_dataset, pixel_data_status
from .discovery import list_candidate_files
from .errors import DicomReadError
from .models import PIXEL_DATA_TAG, Tag, TagDetails, TagStat, TagValueDetail

logger = logging.getLogger(__name__)

MAX_EXAMPLE_FILES = 100
PROGRESS_EVERY = 10

StatsProgress = Callable[[int, int], None]
T = TypeVar("T")


class StatsCache:
    """
    Process-lifetime memo of statistics results.

    A plain dict behind one mutex. It is an optimisation only: clearing it
    or not passing one at all changes nothing but speed.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, object] = {}

    def get_or_compute(self, key: Hashable, compute_fn: Callable[[], T]) -> T:
        with self._lock:
            if key in self._entries:
                return self._entries[key]
        # Computed outside the lock so a long scan does not block other keys
        value = compute_fn()
        with self._lock:
            return self._entries.setdefault(key, value)

    def invalidate(self, folder: Union[str, Path]) -> None:
        folder_key = _folder_key(folder)
        with self._lock:
            for key in [k for k in self._entries if isinstance(k, tuple) and k and k[0] == folder_key]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _folder_key(folder: Union[str, Path]) -> str:
    return str(Path(folder).resolve())


def tag_name(tag: Tag) -> str:
    return keyword_for_tag(DicomTagType(*tag)) or "Unknown"


def tag_value(ds: pydicom.Dataset, tag: Tag) -> str:
    """String form of one tag used as a histogram bucket."""
    if tag == PIXEL_DATA_TAG:
        return pixel_data_status(ds).value
    dicom_tag = DicomTagType(*tag)
    if dicom_tag not in ds:
        return "Missing"
    element = ds[dicom_tag]
    if element.VR == "SQ" or isinstance(element.value, (bytes, bytearray)):
        return "Binary"
    if element.value is None:
        return ""
    if isinstance(element.value, MultiValue):
        return "\\".join(str(item) for item in element.value)
    return str(element.value).strip()


class _ProgressTicker:
    def __init__(self, total: int, callback: Optional[StatsProgress]):
        self.total = total
        self.callback = callback
        self._lock = threading.Lock()
        self._current = 0

    def tick(self) -> None:
        with self._lock:
            self._current += 1
            current = self._current
        if self.callback is not None and (current % PROGRESS_EVERY == 0 or current == self.total):
            self.callback(current, self.total)


def _shards(files: Sequence[Path], count: int) -> List[List[Path]]:
    return [shard for shard in (list(files[i::count]) for i in range(count)) if shard]


def _open_for(path: Path, wants_pixels: bool) -> Optional[pydicom.Dataset]:
    try:
        return open_dataset(path, stop_before_pixels=not wants_pixels)
    except DicomReadError:
        logger.debug("Skipping unreadable file %s", path, exc_info=True)
        return None


def _merge_counts(left: Dict[Tag, Counter], right: Dict[Tag, Counter]) -> Dict[Tag, Counter]:
    for tag, counts in right.items():
        left.setdefault(tag, Counter()).update(counts)
    return left


def _merge_files(left: Dict[str, List[str]], right: Dict[str, List[str]]) -> Dict[str, List[str]]:
    for value, paths in right.items():
        left.setdefault(value, []).extend(paths)
    return left


class TagStatistics:
    """
    Value-frequency histograms for a set of tags across a folder.

    Args:
        cache: Optional StatsCache memoizing aggregate() per (folder, tags)
        workers: Worker count, defaults to os.cpu_count()
        discover: Returns candidate files below a folder
    """

    def __init__(self, cache: Optional[StatsCache] = None, workers: Optional[int] = None,
                 discover: Callable[[Path], Sequence[Path]] = list_candidate_files):
        self.cache = cache
        self.workers = max(1, workers or os.cpu_count() or 1)
        self.discover = discover

    def aggregate(self, folder: Union[str, Path], tags: Sequence[Tag],
                  progress: Optional[StatsProgress] = None) -> List[TagStat]:
        tags = tuple((int(g), int(e)) for g, e in tags)
        if self.cache is None:
            return self._aggregate(Path(folder), tags, progress)
        key = (_folder_key(folder), tags)
        return self.cache.get_or_compute(key, lambda: self._aggregate(Path(folder), tags, progress))

    def detail(self, folder: Union[str, Path], tag: Tag,
               progress: Optional[StatsProgress] = None) -> TagDetails:
        tag = (int(tag[0]), int(tag[1]))
        files = list(self.discover(Path(folder)))
        ticker = _ProgressTicker(len(files), progress)
        wants_pixels = tag == PIXEL_DATA_TAG

        def fold(shard: List[Path]) -> Dict[str, List[str]]:
            local: Dict[str, List[str]] = {}
            for path in shard:
                ticker.tick()
                ds = _open_for(path, wants_pixels)
                if ds is None:
                    continue
                local.setdefault(tag_value(ds, tag), []).append(str(path))
            return local

        merged = reduce(_merge_files, self._map_shards(files, fold), {})

        values = [
            TagValueDetail(value=value, count=len(paths), files=sorted(paths)[:MAX_EXAMPLE_FILES])
            for value, paths in merged.items()
        ]
        values.sort(key=lambda detail: (-detail.count, detail.value))
        return TagDetails(group=tag[0], element=tag[1], name=tag_name(tag), values=values)

    def _aggregate(self, folder: Path, tags: Tuple[Tag, ...],
                   progress: Optional[StatsProgress]) -> List[TagStat]:
        files = list(self.discover(folder))
        ticker = _ProgressTicker(len(files), progress)
        wants_pixels = PIXEL_DATA_TAG in tags

        def fold(shard: List[Path]) -> Dict[Tag, Counter]:
            local: Dict[Tag, Counter] = {}
            for path in shard:
                ticker.tick()
                ds = _open_for(path, wants_pixels)
                if ds is None:
                    continue
                for tag in tags:
                    local.setdefault(tag, Counter())[tag_value(ds, tag)] += 1
            return local

        merged = reduce(_merge_counts, self._map_shards(files, fold), {})
        logger.debug("Computed statistics for %d tag(s) over %d file(s)", len(tags), len(files))

        return [
            TagStat(group=tag[0], element=tag[1], name=tag_name(tag), value_counts=dict(merged[tag]))
            for tag in tags
            if tag in merged
        ]

    def _map_shards(self, files: List[Path], fold: Callable[[List[Path]], T]) -> List[T]:
        shards = _shards(files, self.workers)
        if len(shards) <= 1:
            return [fold(shard) for shard in shards]
        with ThreadPoolExecutor(max_workers=len(shards), thread_name_prefix="dicom-stats") as pool:
            return list(pool.map(fold, shards))


def aggregate(folder: Union[str, Path], tags: Sequence[Tag], workers: Optional[int] = None,
              progress: Optional[StatsProgress] = None) -> List[TagStat]:
    """Uncached histogram of each tag's values below folder."""
    return TagStatistics(workers=workers).aggregate(folder, tags, progress)


def detail(folder: Union[str, Path], tag: Tag, workers: Optional[int] = None,
           progress: Optional[StatsProgress] = None) -> TagDetails:
    """Per-value counts and example files for one tag below folder."""
    return TagStatistics(workers=workers).detail(folder, tag, progress)
