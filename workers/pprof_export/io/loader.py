"""
Loader — read a JSON trace dump and materialize TraceStorage.

Validates schema_version constraints:
  - trace dump ≥ 0.1
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Tuple

from pprof_export.core.trace_storage import (
    CallsiteRow,
    FrameRow,
    MappingRow,
    SymbolRow,
    TraceStorage,
)
from pprof_export.io.schema import TraceDump

logger = logging.getLogger(__name__)

_DUMP_MIN_SCHEMA = (0, 1)


def _parse_version(v: str) -> Tuple[int, ...]:
    return tuple(int(p) for p in v.split("."))


def load_trace_dump(path: Path) -> TraceDump:
    """
    Load and validate a trace dump.

    Raises FileNotFoundError if *path* is missing, ValueError if the
    schema_version is too old, and pydantic.ValidationError if the
    document does not match the schema.
    """
    if not path.exists():
        raise FileNotFoundError(f"Trace dump not found: {path}")

    raw = json.loads(path.read_text(encoding="utf-8"))
    dump = TraceDump.model_validate(raw)

    if _parse_version(dump.schema_version) < _DUMP_MIN_SCHEMA:
        min_str = ".".join(str(p) for p in _DUMP_MIN_SCHEMA)
        raise ValueError(
            f"trace dump schema_version {dump.schema_version} < required {min_str}"
        )

    logger.info(
        "Loaded %s: %d mappings, %d frames, %d symbols, %d callsites, %d samples",
        path,
        len(dump.mappings),
        len(dump.frames),
        len(dump.symbols),
        len(dump.callsites),
        len(dump.samples),
    )
    return dump


def build_storage(dump: TraceDump) -> TraceStorage:
    """Intern the dump's strings into a fresh TraceStorage."""
    storage = TraceStorage()
    pool = storage.string_pool

    for m in dump.mappings:
        storage.add_mapping(MappingRow(
            id=m.id,
            build_id=pool.intern(m.build_id),
            exact_offset=m.exact_offset,
            start_offset=m.start_offset,
            start=m.start,
            end=m.end,
            load_bias=m.load_bias,
            name=pool.intern(m.name),
        ))

    for f in dump.frames:
        storage.add_frame(FrameRow(
            id=f.id,
            name=pool.intern(f.name),
            mapping=f.mapping,
            rel_pc=f.rel_pc,
            symbol_set_id=f.symbol_set_id,
            deobfuscated_name=(
                pool.intern(f.deobfuscated_name)
                if f.deobfuscated_name is not None else None
            ),
        ))

    for s in dump.symbols:
        storage.add_symbol(SymbolRow(
            id=s.id,
            symbol_set_id=s.symbol_set_id,
            name=pool.intern(s.name),
            source_file=(
                pool.intern(s.source_file) if s.source_file is not None else None
            ),
            line_number=s.line_number,
        ))

    for c in dump.callsites:
        storage.add_callsite(CallsiteRow(
            id=c.id,
            depth=c.depth,
            parent_id=c.parent_id,
            frame_id=c.frame_id,
        ))

    return storage
