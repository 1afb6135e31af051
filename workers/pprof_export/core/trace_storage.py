"""
Trace storage — read-only view of the stack-profile tables.

Mirrors the trace processor's callstack tables closely enough for the
profile builder to query them:

  - StringPool               interned text, id 0 is the null string.
  - stack_profile_mapping    loaded binaries per process.
  - stack_profile_frame      one unwound frame (mapping + rel_pc).
  - stack_profile_symbol     offline symbolization, grouped in symbol sets.
  - stack_profile_callsite   call-stack tree, each node points at its parent.

The builder never writes into these tables.  Row ids are assigned by the
producer (the loader, or tests) and must be unique per table.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# String pool
# ═══════════════════════════════════════════════════════════════════════════════

class StringPool:
    """Interns text and hands out small integer ids.

    Id 0 is reserved for the null string and resolves to ``""``.
    """

    NULL_ID = 0

    def __init__(self) -> None:
        self._strings: List[str] = [""]
        self._ids: Dict[str, int] = {}

    def intern(self, text: Optional[str]) -> int:
        if text is None:
            return self.NULL_ID
        existing = self._ids.get(text)
        if existing is not None:
            return existing
        string_id = len(self._strings)
        self._strings.append(text)
        self._ids[text] = string_id
        return string_id

    def get(self, string_id: int) -> str:
        return self._strings[string_id]

    def __len__(self) -> int:
        return len(self._strings)


# ═══════════════════════════════════════════════════════════════════════════════
# Table rows
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MappingRow:
    """A mapping (binary / library) in a process address space."""

    id: int
    build_id: int            # pool id, hex-encoded build id or null
    exact_offset: int
    start_offset: int
    start: int
    end: int
    load_bias: int
    name: int                # pool id of the filename


@dataclass(frozen=True)
class FrameRow:
    """A frame on a callstack: a pc relative to its mapping."""

    id: int
    name: int                          # pool id, raw (possibly mangled) name
    mapping: int
    rel_pc: int
    symbol_set_id: Optional[int] = None
    deobfuscated_name: Optional[int] = None


@dataclass(frozen=True)
class SymbolRow:
    """One level of offline symbolization for a frame.

    Rows sharing a ``symbol_set_id`` describe an inlining chain; lower row
    ids are the innermost functions.
    """

    id: int
    symbol_set_id: int
    name: int
    source_file: Optional[int] = None
    line_number: Optional[int] = None


@dataclass(frozen=True)
class CallsiteRow:
    """A node in the callsite tree.  ``parent_id`` is None for the root."""

    id: int
    depth: int
    parent_id: Optional[int]
    frame_id: int


# ═══════════════════════════════════════════════════════════════════════════════
# Storage
# ═══════════════════════════════════════════════════════════════════════════════

class TraceStorage:
    """In-memory container for the callstack tables."""

    def __init__(self, string_pool: Optional[StringPool] = None) -> None:
        self.string_pool = string_pool if string_pool is not None else StringPool()
        self._mappings: Dict[int, MappingRow] = {}
        self._frames: Dict[int, FrameRow] = {}
        self._symbols_by_set: Dict[int, List[SymbolRow]] = {}
        self._symbol_ids: set = set()
        self._callsites: Dict[int, CallsiteRow] = {}

    # -- population ------------------------------------------------------------

    def add_mapping(self, row: MappingRow) -> int:
        _check_unique(self._mappings, row.id, "mapping")
        self._mappings[row.id] = row
        return row.id

    def add_frame(self, row: FrameRow) -> int:
        _check_unique(self._frames, row.id, "frame")
        self._frames[row.id] = row
        return row.id

    def add_symbol(self, row: SymbolRow) -> int:
        if row.id in self._symbol_ids:
            raise ValueError(f"Duplicate symbol id {row.id}")
        self._symbol_ids.add(row.id)
        self._symbols_by_set.setdefault(row.symbol_set_id, []).append(row)
        return row.id

    def add_callsite(self, row: CallsiteRow) -> int:
        _check_unique(self._callsites, row.id, "callsite")
        self._callsites[row.id] = row
        return row.id

    # -- queries ---------------------------------------------------------------

    def mapping(self, mapping_id: int) -> Optional[MappingRow]:
        return self._mappings.get(mapping_id)

    def frame(self, frame_id: int) -> Optional[FrameRow]:
        return self._frames.get(frame_id)

    def symbols_for_set(self, symbol_set_id: int) -> List[SymbolRow]:
        """Symbols of one set ordered by row id (innermost first)."""
        return sorted(self._symbols_by_set.get(symbol_set_id, []), key=lambda s: s.id)

    def has_callsite(self, callsite_id: int) -> bool:
        return callsite_id in self._callsites

    def callsite_frames(self, callsite_id: int) -> List[int]:
        """
        Resolve *callsite_id* to its frame chain, leaf first.

        Returns an empty list for an unknown callsite.  A parent chain
        that loops back on itself, or points at a missing callsite, is cut
        there and the frames resolved so far are returned.
        """
        frames: List[int] = []
        seen: set = set()
        current: Optional[int] = callsite_id
        while current is not None:
            if current in seen:
                logger.warning("Callsite cycle at %d while resolving %d", current, callsite_id)
                break
            seen.add(current)
            row = self._callsites.get(current)
            if row is None:
                if current != callsite_id:
                    logger.warning(
                        "Callsite %d: parent chain reaches missing callsite %d, stack truncated",
                        callsite_id, current,
                    )
                break
            frames.append(row.frame_id)
            current = row.parent_id
        return frames

    @property
    def mapping_count(self) -> int:
        return len(self._mappings)

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def callsite_count(self) -> int:
        return len(self._callsites)


def _check_unique(table: dict, row_id: int, label: str) -> None:
    if row_id in table:
        raise ValueError(f"Duplicate {label} id {row_id}")
