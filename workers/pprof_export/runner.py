"""
Export runner — top-level orchestration: trace dump → pprof profiles.

Ties the loader, the profile builder and the writer together into a
single ``run_export`` function that can be called programmatically or
from the CLI.  One profile is built per process (``upid``); samples
without a upid share a single profile.
"""
from __future__ import annotations

import argparse
import logging
import sys
from enum import Enum, unique
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pprof_export.config import settings
from pprof_export.core.profile_builder import ProfileBuilder, SampleValueCountError
from pprof_export.core.trace_storage import TraceStorage
from pprof_export.io.loader import build_storage, load_trace_dump
from pprof_export.io.schema import (
    ExportReport,
    ProcessExport,
    SampleModel,
    SampleTypeModel,
)
from pprof_export.io.writer import write_profile, write_report
from pprof_export.policy.main_binary import ScoringPolicy

logger = logging.getLogger(__name__)

SampleTypes = List[Tuple[str, str]]


@unique
class Verdict(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


@unique
class ExportRejectReason(str, Enum):
    VALUE_COUNT_MISMATCH = "VALUE_COUNT_MISMATCH"


def build_profile(
    storage: TraceStorage,
    samples: Iterable[Tuple[int, Sequence[int]]],
    sample_types: Sequence[Tuple[str, str]],
    policy: Optional[ScoringPolicy] = None,
) -> Tuple[bytes, ProfileBuilder]:
    """Feed (callsite_id, values) pairs through one builder and serialize."""
    builder = ProfileBuilder(storage, sample_types, policy=policy)
    for callsite_id, values in samples:
        builder.add_sample(callsite_id, values)
    return builder.build(), builder


def _group_by_process(
    samples: List[SampleModel],
) -> Dict[Optional[int], List[SampleModel]]:
    groups: Dict[Optional[int], List[SampleModel]] = {}
    for sample in samples:
        groups.setdefault(sample.upid, []).append(sample)
    # None first, then ascending upid
    return dict(sorted(groups.items(), key=lambda kv: (kv[0] is not None, kv[0] or 0)))


def _resolve_sample_types(
    explicit: Optional[SampleTypes],
    declared: List[SampleTypeModel],
) -> SampleTypes:
    if explicit:
        return list(explicit)
    if declared:
        return [(st.name, st.unit) for st in declared]
    return settings.default_sample_types


def run_export(
    dump_path: Path,
    output_dir: Optional[Path] = None,
    sample_types: Optional[SampleTypes] = None,
    policy: Optional[ScoringPolicy] = None,
    compress: Optional[bool] = None,
) -> Tuple[ExportReport, Dict[Optional[int], bytes]]:
    """
    Export every process in a trace dump as a pprof profile.

    Parameters
    ----------
    dump_path : Path
        JSON trace dump (see io/schema.py TraceDump).
    output_dir : Path, optional
        Directory for profiles and export_report.json.  If None, nothing
        is written to disk.
    sample_types : list of (name, unit), optional
        Overrides the dump's declared sample types.
    policy : ScoringPolicy, optional
        Main-binary scoring policy.  Defaults to ScoringPolicy.v0().
    compress : bool, optional
        Gzip the profiles.  Defaults to settings.GZIP_OUTPUT.

    Returns
    -------
    (ExportReport, {upid: serialized profile})
    """
    if policy is None:
        policy = ScoringPolicy.v0()
    if compress is None:
        compress = settings.GZIP_OUTPUT

    # ── 1. Load inputs ───────────────────────────────────────────────
    dump = load_trace_dump(dump_path)
    storage = build_storage(dump)
    types = _resolve_sample_types(sample_types, dump.sample_types)

    report = ExportReport(
        policy_id=policy.policy_id,
        dump_path=str(dump_path),
        sample_types=[SampleTypeModel(name=n, unit=u) for n, u in types],
    )
    profiles: Dict[Optional[int], bytes] = {}

    # ── 2. One profile per process ───────────────────────────────────
    for upid, group in _group_by_process(dump.samples).items():
        samples = [
            (s.callsite_id, s.values if s.values is not None else [1] * len(types))
            for s in group
        ]
        try:
            data, builder = build_profile(storage, samples, types, policy)
        except SampleValueCountError as e:
            logger.error("Profile for upid %s rejected: %s", upid, e)
            report.profiles.append(ProcessExport(
                upid=upid,
                verdict=Verdict.REJECT.value,
                reasons=[ExportRejectReason.VALUE_COUNT_MISMATCH.value],
            ))
            continue

        profiles[upid] = data
        output_path = None
        if output_dir:
            output_path = str(write_profile(data, output_dir, upid, compress))

        stats = builder.stats()
        report.profiles.append(ProcessExport(
            upid=upid,
            output_path=output_path,
            verdict=Verdict.ACCEPT.value,
            sample_count=stats.samples,
            location_count=stats.locations,
            function_count=stats.functions,
            mapping_count=stats.mappings,
            string_count=stats.strings,
            main_binary=builder.main_binary_filename,
        ))

    # ── 3. Report ────────────────────────────────────────────────────
    if output_dir:
        write_report(report, output_dir)

    return report, profiles


# ── CLI ──────────────────────────────────────────────────────────────────────

def _parse_sample_type(text: str) -> Tuple[str, str]:
    name, sep, unit = text.partition(":")
    if not sep or not name or not unit:
        raise argparse.ArgumentTypeError(
            f"sample type must be NAME:UNIT, got {text!r}"
        )
    return name, unit


def main():
    """CLI entry point for pprof_export."""
    parser = argparse.ArgumentParser(
        description="pprof_export — build pprof profiles from a trace dump",
    )
    parser.add_argument(
        "dump",
        type=Path,
        help="Path to the JSON trace dump",
    )
    parser.add_argument(
        "-o", "--output-dir",
        type=Path,
        default=Path(settings.OUTPUT_DIR),
        help="Directory to write profiles and export_report.json",
    )
    parser.add_argument(
        "-t", "--sample-type",
        type=_parse_sample_type,
        action="append",
        default=None,
        help="Sample type as NAME:UNIT (repeatable)",
    )
    parser.add_argument(
        "--no-gzip",
        action="store_true",
        help="Write raw .pb files instead of .pb.gz",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.LOG_LEVEL,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.dump.exists():
        logger.error("File not found: %s", args.dump)
        sys.exit(1)

    report, _ = run_export(
        dump_path=args.dump,
        output_dir=args.output_dir,
        sample_types=args.sample_type,
        compress=False if args.no_gzip else None,
    )

    accepted = [p for p in report.profiles if p.verdict == Verdict.ACCEPT.value]
    print(f"Profiles: {len(report.profiles)} "
          f"(accept={len(accepted)}, "
          f"reject={len(report.profiles) - len(accepted)})")
    for p in accepted:
        print(f"  upid={p.upid}: {p.sample_count} samples, "
              f"{p.location_count} locations, main binary {p.main_binary}")
    print(f"Outputs written to: {args.output_dir}")


if __name__ == "__main__":
    main()
