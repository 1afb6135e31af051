"""
Schema — Pydantic models for the trace dump input and the export report.

Input:
  trace dump JSON — rows of the stack_profile_* tables with strings
  inlined, plus the samples to export.

Output:
  export_report.json — one entry per written profile.

Runtime contract fields (present in every report):
  package_name, exporter_version, schema_version, policy_id.
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pprof_export import EXPORTER_VERSION, PACKAGE_NAME, SCHEMA_VERSION


# ── Trace dump rows ──────────────────────────────────────────────────────────

class SampleTypeModel(BaseModel):
    name: str
    unit: str


class MappingModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    build_id: Optional[str] = None      # hex string
    exact_offset: int = Field(0, ge=0)
    start_offset: int = Field(0, ge=0)
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    load_bias: int = 0
    name: Optional[str] = None


class FrameModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: Optional[str] = None
    mapping: int
    rel_pc: int = Field(0, ge=0)
    symbol_set_id: Optional[int] = None
    deobfuscated_name: Optional[str] = None


class SymbolModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    symbol_set_id: int
    name: str
    source_file: Optional[str] = None
    line_number: Optional[int] = None


class CallsiteModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    depth: int = 0
    parent_id: Optional[int] = None
    frame_id: int


class SampleModel(BaseModel):
    """One recorded callstack.  ``values`` defaults to a single count of 1."""

    model_config = ConfigDict(extra="ignore")

    callsite_id: int
    upid: Optional[int] = None
    values: Optional[List[int]] = None


class TraceDump(BaseModel):
    """Top-level trace dump document."""

    model_config = ConfigDict(extra="ignore")

    schema_version: str = SCHEMA_VERSION
    sample_types: List[SampleTypeModel] = Field(default_factory=list)

    mappings: List[MappingModel] = Field(default_factory=list)
    frames: List[FrameModel] = Field(default_factory=list)
    symbols: List[SymbolModel] = Field(default_factory=list)
    callsites: List[CallsiteModel] = Field(default_factory=list)
    samples: List[SampleModel] = Field(default_factory=list)


# ── Export report ────────────────────────────────────────────────────────────

class ProcessExport(BaseModel):
    """One profile written for one process (or for all samples)."""

    upid: Optional[int] = None
    output_path: Optional[str] = None

    verdict: str                # ACCEPT | REJECT
    reasons: List[str] = Field(default_factory=list)

    sample_count: int = 0
    location_count: int = 0
    function_count: int = 0
    mapping_count: int = 0
    string_count: int = 0

    main_binary: Optional[str] = None


class ExportReport(BaseModel):
    """Run-level summary — export_report.json."""

    package_name: str = PACKAGE_NAME
    exporter_version: str = EXPORTER_VERSION
    schema_version: str = SCHEMA_VERSION
    policy_id: str

    dump_path: str
    sample_types: List[SampleTypeModel] = Field(default_factory=list)

    profiles: List[ProcessExport] = Field(default_factory=list)

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
