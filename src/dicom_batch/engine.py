"""
Batch Orchestration Engine
==========================
Runs one item processor (PNG conversion or anonymization) over every DICOM
file below an input folder.

Concurrency model:
- Fan-out: tasks run on a fixed-size ThreadPoolExecutor. Workers share no
  mutable state except the progress sequence counter.
- Fan-in: workers post ProgressEvents and resolved outcomes onto a single
  queue.Queue. The thread that called run() is the only consumer and the
  only writer of counters, metadata_all.csv, logs.csv and the caller's
  progress/log callbacks.

Per-item failures are caught at the task boundary and folded into the
report. Only setup problems (missing input folder, output folder cannot be
created) raise out of run().
"""

import logging
import queue
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from .config import BatchConfig
from .dicom_io import read_metadata
from .discovery import list_candidate_files
from .errors import BatchSetupError
from .export import (
    LOG_FILENAME,
    METADATA_ALL_CSV,
    LogCsvWriter,
    MetadataCsvWriter,
    write_metadata_workbooks,
)
from .models import (
    BatchReport,
    FileMetadata,
    FileOutcome,
    LogEntry,
    OutcomeKind,
    ProgressEvent,
    ProgressStatus,
    Task,
)

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]
LogSink = Callable[[LogEntry], None]
Discover = Callable[[Path], Sequence[Path]]

RESULT_POLL_SECONDS = 0.5


class ItemProcessor(ABC):
    """
    One per-file transform plugged into the engine.

    Subclasses set the class attributes and implement process(). Item
    errors may either be returned as a failed outcome (keeping whatever
    metadata was already read) or raised; the engine catches the latter.
    """

    status: ProgressStatus = ProgressStatus.CONVERTING
    conversion_type: str = ""
    output_dirname: str = ""
    # Replacement extension for outputs, None keeps the source name
    target_suffix: Optional[str] = None

    @abstractmethod
    def process(self, task: Task) -> FileOutcome:
        raise NotImplementedError

    def read_metadata(self, path: Path) -> FileMetadata:
        return read_metadata(path)


# ═══════════════════════════════════════════════════════════════════════════════
# LAYOUT AND TASKS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class OutputLayout:
    """
    Where a batch writes.

    Attributes:
        output_root: Folder chosen by the caller; holds logs.csv
        batch_root: {output_root}/{input_name}_output, or output_root when
            flattened; holds metadata_all.*
        output_dir: batch_root/{png_file|dicom_file}; mirrors the input tree
    """
    output_root: Path
    batch_root: Path
    output_dir: Path

    @classmethod
    def resolve(cls, input_root: Path, output_root: Path, dirname: str,
                flatten: bool = False) -> "OutputLayout":
        output_root = Path(output_root)
        if flatten:
            batch_root = output_root
        else:
            input_name = Path(input_root).resolve().name or "dicom"
            batch_root = output_root / f"{input_name}_output"
        return cls(output_root, batch_root, batch_root / dirname)

    @property
    def log_path(self) -> Path:
        return self.output_root / LOG_FILENAME

    @property
    def metadata_path(self) -> Path:
        return self.batch_root / METADATA_ALL_CSV


def build_tasks(input_root: Path, files: Sequence[Path], layout: OutputLayout,
                target_suffix: Optional[str] = None) -> List[Task]:
    """Mirror each file's path relative to input_root beneath layout.output_dir."""
    tasks = []
    for source in files:
        source = Path(source)
        try:
            relative = source.relative_to(input_root)
        except ValueError:
            relative = Path(source.name)
        destination = layout.output_dir / relative
        if target_suffix:
            destination = destination.with_suffix(target_suffix)
        tasks.append(Task(source, destination, relative.parent))
    return tasks


class SequenceCounter:
    """Lock-protected monotonic counter handing out 1, 2, 3, ..."""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value


@dataclass(frozen=True)
class _Resolved:
    task: Task
    outcome: FileOutcome


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATOR
# ═══════════════════════════════════════════════════════════════════════════════

class BatchAggregator:
    """
    Single consumer of resolved outcomes.

    Owns the counters and every file sink of a run. Not thread-safe by
    construction: only the engine's consumer loop calls it.
    """

    def __init__(self, total: int, layout: OutputLayout, processor: ItemProcessor,
                 save_excel: bool = True, log_sink: Optional[LogSink] = None):
        self.total = total
        self.layout = layout
        self.processor = processor
        self.save_excel = save_excel
        self.log_sink = log_sink

        self.successful = 0
        self.skipped = 0
        self.failed_files: List[str] = []
        self.skipped_files: List[str] = []

        self._all_rows: List[FileMetadata] = []
        self._folder_rows: Dict[Path, List[FileMetadata]] = defaultdict(list)

        self.metadata_writer = MetadataCsvWriter(layout.metadata_path)
        try:
            self.log_writer = LogCsvWriter(layout.log_path)
        except OSError:
            self.metadata_writer.close()
            raise

    def record(self, task: Task, outcome: FileOutcome) -> None:
        metadata = outcome.metadata
        metadata.folder_relative = task.relative_folder
        name = task.source_path.name

        self.metadata_writer.write(metadata)
        if self.save_excel:
            self._all_rows.append(metadata)
            self._folder_rows[task.relative_folder].append(metadata)

        if outcome.kind is OutcomeKind.CONVERTED:
            self.successful += 1
            logger.debug("%s %s", self.processor.conversion_type, task.source_path)
        elif outcome.kind is OutcomeKind.SKIPPED:
            self.skipped += 1
            self.skipped_files.append(name)
            logger.info("Skipping %s (%s)", task.source_path, outcome.message)
        else:
            self.failed_files.append(name)
            logger.warning("Failed to process %s: %s", task.source_path, outcome.message)

        entry = LogEntry(
            file_name=name,
            file_path=str(task.source_path),
            success=outcome.kind is not OutcomeKind.FAILED,
            status=outcome.kind.value,
            message=outcome.message,
            conversion_type=self.processor.conversion_type,
        )
        self.log_writer.write(entry)
        if self.log_sink is not None:
            try:
                self.log_sink(entry)
            except Exception:
                logger.exception("Log sink raised for %s", name)

    def close(self) -> None:
        self.metadata_writer.close()
        self.log_writer.close()

    def finish(self) -> BatchReport:
        self.close()
        if self.save_excel:
            write_metadata_workbooks(
                self._all_rows, dict(self._folder_rows),
                self.layout.batch_root, self.layout.output_dir,
            )

        report = BatchReport(
            total=self.total,
            successful=self.successful,
            skipped=self.skipped,
            failed_files=list(self.failed_files),
            skipped_files=list(self.skipped_files),
            output_folder=self.layout.batch_root,
        )
        logger.info(
            "Batch complete: %d total, %d successful, %d skipped, %d failed",
            report.total, report.successful, report.skipped, report.failed,
        )
        return report


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

class BatchEngine:
    """
    Fan-out/fan-in runner shared by conversion and anonymization.

    Args:
        config: Worker count, spreadsheet export and layout options
        progress_sink: Called once per task from the consumer thread
        log_sink: Called once per resolved task from the consumer thread
        discover: Returns candidate files below a folder
    """

    def __init__(self, config: Optional[BatchConfig] = None,
                 progress_sink: Optional[ProgressSink] = None,
                 log_sink: Optional[LogSink] = None,
                 discover: Discover = list_candidate_files):
        self.config = config or BatchConfig()
        self.progress_sink = progress_sink
        self.log_sink = log_sink
        self.discover = discover

    def run(self, input_root: Union[str, Path], output_root: Union[str, Path],
            processor: ItemProcessor) -> BatchReport:
        """
        Process every file below input_root.

        Raises:
            BatchSetupError: Input folder missing or outputs not creatable
        """
        input_root = Path(input_root)
        if not input_root.exists():
            raise BatchSetupError(f"Input folder '{input_root}' does not exist")
        if not input_root.is_dir():
            raise BatchSetupError(f"Input path '{input_root}' is not a directory")

        layout = OutputLayout.resolve(
            input_root, Path(output_root), processor.output_dirname,
            flatten=self.config.flatten_output,
        )
        try:
            layout.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BatchSetupError(f"Unable to create output folder {layout.output_dir}: {exc}") from exc

        tasks = build_tasks(input_root, self.discover(input_root), layout, processor.target_suffix)
        total = len(tasks)
        logger.info("Found %d DICOM file(s) in %s", total, input_root)

        try:
            aggregator = BatchAggregator(
                total, layout, processor,
                save_excel=self.config.save_excel, log_sink=self.log_sink,
            )
        except OSError as exc:
            raise BatchSetupError(f"Unable to open audit files in {layout.batch_root}: {exc}") from exc

        channel: "queue.Queue" = queue.Queue()
        counter = SequenceCounter()

        try:
            if tasks:
                workers = min(self.config.workers, total)
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dicom-batch") as pool:
                    futures = {
                        pool.submit(self._run_task, task, processor, counter, total, channel): task
                        for task in tasks
                    }
                    self._consume(channel, aggregator, futures)
        finally:
            aggregator.close()

        return aggregator.finish()

    def _consume(self, channel: "queue.Queue", aggregator: BatchAggregator,
                 futures: Dict[Future, Task]) -> None:
        pending = set(futures.values())
        while pending:
            try:
                message = channel.get(timeout=RESULT_POLL_SECONDS)
            except queue.Empty:
                # Workers post before returning, so finished futures plus an
                # empty queue means the remaining tasks will never report.
                if all(future.done() for future in futures) and channel.empty():
                    self._resolve_lost(futures, pending, aggregator)
                continue
            if isinstance(message, ProgressEvent):
                self._emit_progress(message)
            else:
                aggregator.record(message.task, message.outcome)
                pending.discard(message.task)

    @staticmethod
    def _resolve_lost(futures: Dict[Future, Task], pending: set,
                      aggregator: BatchAggregator) -> None:
        for future, task in futures.items():
            if task not in pending:
                continue
            error = None if future.cancelled() else future.exception()
            if error is None:
                error = RuntimeError("worker finished without reporting a result")
            logger.error("No result from worker for %s: %s", task.source_path, error)
            aggregator.record(task, FileOutcome.failed(FileMetadata.empty(task.source_path.name), error))
            pending.discard(task)

    def _emit_progress(self, event: ProgressEvent) -> None:
        if self.progress_sink is None:
            return
        try:
            self.progress_sink(event)
        except Exception:
            logger.exception("Progress sink raised for %s", event.filename)

    def _run_task(self, task: Task, processor: ItemProcessor, counter: SequenceCounter,
                  total: int, channel: "queue.Queue") -> None:
        """Worker body: one progress event, then exactly one outcome.

        The outcome is posted from ``finally`` so the consumer always sees
        this task resolve, even when the existence check itself raises.
        """
        announced = False
        outcome = None
        try:
            skip = task.destination_path.exists()
            status = ProgressStatus.SKIPPED if skip else processor.status
            channel.put(ProgressEvent(counter.next(), total, task.source_path.name, status))
            announced = True

            if skip:
                outcome = FileOutcome.skipped(
                    self._best_effort_metadata(task, processor),
                    "output already exists",
                )
            else:
                outcome = processor.process(task)
        except Exception as exc:
            outcome = FileOutcome.failed(self._best_effort_metadata(task, processor), exc)
        except BaseException as exc:
            outcome = FileOutcome.failed(FileMetadata.empty(task.source_path.name), exc)
            raise
        finally:
            if not announced:
                channel.put(ProgressEvent(counter.next(), total, task.source_path.name, processor.status))
            channel.put(_Resolved(task, outcome))

    @staticmethod
    def _best_effort_metadata(task: Task, processor: ItemProcessor) -> FileMetadata:
        try:
            return processor.read_metadata(task.source_path)
        except Exception:
            logger.debug("Metadata unavailable for %s", task.source_path, exc_info=True)
            return FileMetadata.empty(task.source_path.name)
