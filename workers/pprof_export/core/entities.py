"""
Entities — staged value types for Profile deduplication.

Location, MappingKey and Function are frozen dataclasses, so their hash
and equality derive from their fields; they key the builder's dedup
dicts directly.  Mapping is the mutable staged record: its DebugInfo
flags can only be switched on.

Staged entities are not written to the Profile until finalize.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from pprof_export.core.string_table import EMPTY_STRING_INDEX


@dataclass(frozen=True)
class Line:
    function_id: int
    line: int = 0


@dataclass(frozen=True)
class Location:
    """One resolved frame: mapping + relative pc + inlining chain."""

    mapping_id: int
    rel_pc: int
    lines: Tuple[Line, ...] = ()


@dataclass(frozen=True)
class MappingKey:
    """
    Identity of a binary independent of where it is loaded.

    Samples from different processes (or one process with ASLR) see the
    same binary at different addresses, so the start address is not part
    of the key.  ``build_id_or_filename`` is a string-table index.
    """

    size: int
    file_offset: int
    build_id_or_filename: int


@dataclass
class DebugInfo:
    """What debug information at least one frame in a mapping had."""

    has_functions: bool = False
    has_filenames: bool = False
    has_line_numbers: bool = False
    has_inline_frames: bool = False

    def merge(self, other: "DebugInfo") -> None:
        self.has_functions = self.has_functions or other.has_functions
        self.has_filenames = self.has_filenames or other.has_filenames
        self.has_line_numbers = self.has_line_numbers or other.has_line_numbers
        self.has_inline_frames = self.has_inline_frames or other.has_inline_frames


@dataclass
class Mapping:
    """A staged mapping, written out during finalize."""

    memory_start: int
    memory_limit: int
    file_offset: int
    filename: int                 # string-table index
    build_id: int                 # string-table index
    filename_str: str
    debug_info: DebugInfo = field(default_factory=DebugInfo)

    @property
    def has_build_id(self) -> bool:
        return self.build_id != EMPTY_STRING_INDEX


@dataclass(frozen=True)
class Function:
    name: int
    system_name: int
    filename: int
