"""
Writer — write serialized profiles and the export report to disk.

Filesystem layout per run:
    <output_dir>/profile.<upid>.pb.gz    (profile.all.pb.gz without upid)
    <output_dir>/export_report.json
"""
import gzip
import json
from pathlib import Path
from typing import Optional

from pprof_export.io.schema import ExportReport


def profile_filename(upid: Optional[int], compress: bool = True) -> str:
    stem = "all" if upid is None else str(upid)
    suffix = ".pb.gz" if compress else ".pb"
    return f"profile.{stem}{suffix}"


def write_profile(
    data: bytes,
    output_dir: Path,
    upid: Optional[int] = None,
    compress: bool = True,
) -> Path:
    """
    Write one serialized Profile into *output_dir*.

    pprof reads both forms; gzip is what ``go tool pprof`` writes itself.
    Creates *output_dir* if it does not exist.  Returns the file path.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / profile_filename(upid, compress)
    if compress:
        # mtime=0 keeps the gzip header byte-stable across runs.
        path.write_bytes(gzip.compress(data, mtime=0))
    else:
        path.write_bytes(data)
    return path


def write_report(report: ExportReport, output_dir: Path) -> Path:
    """Write export_report.json into *output_dir*.  Returns the file path."""
    output_dir.mkdir(parents=True, exist_ok=True)
    report_path = output_dir / "export_report.json"
    report_path.write_text(
        json.dumps(
            report.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )
    return report_path
