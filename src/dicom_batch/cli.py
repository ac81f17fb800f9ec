#!/usr/bin/env python3
"""
DICOM Batch Toolkit CLI

Usage:
    dicom-batch convert -i input_dir/ -o output_dir/
    dicom-batch anonymize -i input_dir/ -o output_dir/ -t 0010,0010 -t 0010,0020
    dicom-batch stats -i input_dir/ -t 0008,0060 -t 7FE0,0010
    dicom-batch details -i input_dir/ -t 0008,0060
    dicom-batch tags file.dcm
"""

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from .anonymize import parse_tag
from .config import BatchConfig
from .errors import DicomBatchError
from .logging_config import configure_logging
from .models import AnonymizationSpec, BatchReport, ProgressEvent
from .stats import TagStatistics
from .tags import read_all_tags
from .workflow import anonymize_folder, convert_folder

DEFAULT_STATS_TAGS = [
    (0x0010, 0x0010),
    (0x0010, 0x0020),
    (0x0010, 0x0030),
    (0x0008, 0x0080),
    (0x0008, 0x0090),
]


def _tag_arg(text: str):
    try:
        return parse_tag(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc))


def print_progress(event: ProgressEvent) -> None:
    print(
        f"Progress: {event.current}/{event.total} ({event.percentage:.1f}%) "
        f"- {event.filename} [{event.status.value}]"
    )


def print_report(title: str, report: BatchReport) -> None:
    print(f"\n{title} completed successfully!")
    print(f"  Total: {report.total}")
    print(f"  Successful: {report.successful}")
    print(f"  Skipped: {report.skipped}")
    print(f"  Failed: {report.failed}")
    for name in report.failed_files:
        print(f"    ✗ {name}")
    print(f"  Output folder: {report.output_folder}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dicom-batch",
        description="Batch DICOM to PNG conversion, tag anonymization and tag statistics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    convert = subparsers.add_parser("convert", help="Convert DICOM files to PNG")
    convert.add_argument("-i", "--input", type=Path, required=True,
                         help="Input folder containing DICOM files")
    convert.add_argument("-o", "--output", type=Path, required=True,
                         help="Output folder for PNG files")
    convert.add_argument("--skip-excel", action="store_true",
                         help="Skip generating Excel metadata workbooks")
    convert.add_argument("--flatten-output", action="store_true",
                         help="Write directly under the output folder")
    convert.add_argument("-w", "--workers", type=int, help="Worker threads")

    anonymize = subparsers.add_parser("anonymize", help="Anonymize DICOM files")
    anonymize.add_argument("-i", "--input", type=Path, required=True,
                           help="Input folder containing DICOM files")
    anonymize.add_argument("-o", "--output", type=Path, required=True,
                           help="Output folder for anonymized DICOM files")
    anonymize.add_argument("-t", "--tags", type=_tag_arg, action="append", default=[],
                           help="Tag to anonymize as 'Group,Element' hex, e.g. 0010,0010 "
                                "(repeatable)")
    anonymize.add_argument("-r", "--replacement", default="ANONYMIZED",
                           help="Replacement value for anonymized tags (default: ANONYMIZED)")
    anonymize.add_argument("--skip-excel", action="store_true",
                           help="Skip generating Excel metadata workbooks")
    anonymize.add_argument("--flatten-output", action="store_true",
                           help="Write directly under the output folder")
    anonymize.add_argument("-w", "--workers", type=int, help="Worker threads")

    stats = subparsers.add_parser("stats", help="Value counts for tags across a folder")
    stats.add_argument("-i", "--input", type=Path, required=True)
    stats.add_argument("-t", "--tags", type=_tag_arg, action="append", default=[])
    stats.add_argument("-w", "--workers", type=int)

    details = subparsers.add_parser("details", help="Values and example files for one tag")
    details.add_argument("-i", "--input", type=Path, required=True)
    details.add_argument("-t", "--tag", type=_tag_arg, required=True)
    details.add_argument("-w", "--workers", type=int)

    tags = subparsers.add_parser("tags", help="List every tag of one file")
    tags.add_argument("path", type=Path)

    return parser


def _config(args) -> BatchConfig:
    config = BatchConfig.from_env()
    if getattr(args, "workers", None):
        config.workers = args.workers
    if getattr(args, "skip_excel", False):
        config.save_excel = False
    if getattr(args, "flatten_output", False):
        config.flatten_output = True
    if args.verbose:
        config.log_level = "DEBUG"
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = _config(args)
    except ValueError as exc:
        print(f"Error: Invalid configuration: {exc}", file=sys.stderr)
        return 1
    configure_logging(config.log_level)

    try:
        if args.command == "convert":
            print("Starting conversion...")
            print(f"Input: {args.input}")
            print(f"Output: {args.output}")
            report = convert_folder(args.input, args.output, config, progress=print_progress)
            print_report("Conversion", report)
            return 0

        if args.command == "anonymize":
            spec = AnonymizationSpec.build(args.tags, args.replacement)
            print("Starting anonymization...")
            print(f"Input: {args.input}")
            print(f"Output: {args.output}")
            print(f"Tags: {[f'({g:04X},{e:04X})' for g, e in spec.tags]}")
            report = anonymize_folder(args.input, args.output, spec, config, progress=print_progress)
            print_report("Anonymization", report)
            return 0

        if args.command == "stats":
            if not args.input.is_dir():
                print(f"Error: Input folder does not exist: {args.input}", file=sys.stderr)
                return 1
            statistics = TagStatistics(workers=config.workers)
            result = statistics.aggregate(args.input, args.tags or DEFAULT_STATS_TAGS)
            print(json.dumps([asdict(stat) for stat in result], indent=2))
            return 0

        if args.command == "details":
            if not args.input.is_dir():
                print(f"Error: Input folder does not exist: {args.input}", file=sys.stderr)
                return 1
            result = TagStatistics(workers=config.workers).detail(args.input, args.tag)
            print(json.dumps(asdict(result), indent=2))
            return 0

        if args.command == "tags":
            print(json.dumps([asdict(tag) for tag in read_all_tags(args.path)], indent=2))
            return 0
    except DicomBatchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 1


if __name__ == "__main__":
    sys.exit(main())
