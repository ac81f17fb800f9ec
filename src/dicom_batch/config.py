"""Runtime configuration for batch runs."""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _default_workers() -> int:
    return os.cpu_count() or 1


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


@dataclass
class BatchConfig:
    """Configuration shared by every batch engine run."""

    # Size of the worker pool
    workers: int = field(default_factory=_default_workers)

    # Write metadata_all.xlsx and per-folder metadata.xlsx at the end of a run
    save_excel: bool = True

    # Drop the "{input_name}_output" segment from the output layout
    flatten_output: bool = False

    log_level: str = "INFO"

    def __post_init__(self):
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BatchConfig":
        """
        Build a config from environment variables.

        Recognised variables: DICOM_BATCH_WORKERS, DICOM_BATCH_SAVE_EXCEL,
        DICOM_BATCH_FLATTEN and LOG_LEVEL. Unset variables keep defaults.
        """
        env = os.environ if environ is None else environ
        config = cls()
        if env.get("DICOM_BATCH_WORKERS"):
            config.workers = int(env["DICOM_BATCH_WORKERS"])
        config.save_excel = _env_bool(env.get("DICOM_BATCH_SAVE_EXCEL"), config.save_excel)
        config.flatten_output = _env_bool(env.get("DICOM_BATCH_FLATTEN"), config.flatten_output)
        if env.get("LOG_LEVEL"):
            config.log_level = env["LOG_LEVEL"].upper()
        config.__post_init__()
        return config
