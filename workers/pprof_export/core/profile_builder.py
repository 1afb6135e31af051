"""
Profile builder — callsite samples → serialized pprof Profile.

Usage::

    builder = ProfileBuilder(storage, [("samples", "count")])
    for callsite_id, values in samples:
        builder.add_sample(callsite_id, values)
    data = builder.build()

Samples are written to the Profile as they arrive.  Locations, mappings
and functions are deduplicated by content and staged in memory; they are
written once, during finalize, because samples and locations reference
them by id before they exist in the output.  Ids are consecutive integers
starting at 1 (0 means "absent") and each entity kind has its own id
space: a mapping_id of 1 and a function_id of 1 can coexist.

Not thread-safe.  One builder serves one caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, unique
from typing import Dict, List, Optional, Sequence, Tuple

from pprof_export.core import pprof_proto
from pprof_export.core.entities import (
    DebugInfo,
    Function,
    Line,
    Location,
    Mapping,
    MappingKey,
)
from pprof_export.core.string_table import EMPTY_STRING_INDEX, StringTable
from pprof_export.core.trace_storage import (
    FrameRow,
    MappingRow,
    SymbolRow,
    TraceStorage,
)
from pprof_export.policy.main_binary import (
    Scorer,
    ScoringPolicy,
    compute_main_binary_score,
    guess_main_binary,
)

logger = logging.getLogger(__name__)

UNMAPPED_MAPPING_ID = 0


class InvariantError(RuntimeError):
    """A staged entity references an id its table never assigned."""


class SampleValueCountError(ValueError):
    """A sample does not carry exactly one value per sample type."""


@unique
class BuilderState(str, Enum):
    STAGING = "STAGING"
    FINALIZED = "FINALIZED"


@dataclass(frozen=True)
class BuildStats:
    strings: int
    mappings: int
    functions: int
    locations: int
    samples: int


class ProfileBuilder:
    """Builds one ``perftools.profiles.Profile``."""

    def __init__(
        self,
        storage: TraceStorage,
        sample_types: Sequence[Tuple[str, str]],
        policy: Optional[ScoringPolicy] = None,
        scorer: Scorer = compute_main_binary_score,
    ) -> None:
        self._storage = storage
        self._policy = policy if policy is not None else ScoringPolicy.v0()
        self._scorer = scorer

        self._result = pprof_proto.Profile()
        self._string_table = StringTable(self._result, storage.string_pool)
        self._num_sample_types = len(sample_types)

        self._state = BuilderState.STAGING
        self._serialized: Optional[bytes] = None
        self._main_binary_id: Optional[int] = None
        self._sample_count = 0

        # callsite id → location ids already emitted for that stack
        self._cached_location_ids: Dict[int, Tuple[int, ...]] = {}

        # storage row id → staged entity id
        self._seen_locations: Dict[int, int] = {}
        self._seen_mappings: Dict[int, int] = {}
        self._seen_functions: Dict[int, int] = {}

        # Dedup maps, entity → id.  Insertion order is id order.
        self._locations: Dict[Location, int] = {}
        self._mapping_keys: Dict[MappingKey, int] = {}
        self._functions: Dict[Function, int] = {}
        # mapping_id - 1 = index
        self._mappings: List[Mapping] = []

        self._write_sample_types(sample_types)

    # -- public API ------------------------------------------------------------

    @property
    def state(self) -> BuilderState:
        return self._state

    @property
    def main_binary_id(self) -> Optional[int]:
        """Mapping id judged to be the main binary; None before build()."""
        return self._main_binary_id

    @property
    def main_binary_filename(self) -> Optional[str]:
        if self._main_binary_id is None:
            return None
        return self._get_mapping(self._main_binary_id).filename_str

    def stats(self) -> BuildStats:
        return BuildStats(
            strings=len(self._string_table),
            mappings=len(self._mappings),
            functions=len(self._functions),
            locations=len(self._locations),
            samples=self._sample_count,
        )

    def add_sample(self, callsite_id: int, values: Sequence[int]) -> None:
        """
        Append one sample for *callsite_id*.

        Has no effect once build() has been called.  *values* must hold
        one entry per sample type given to the constructor.
        """
        if self._state is BuilderState.FINALIZED:
            return

        values = list(values)
        if len(values) != self._num_sample_types:
            raise SampleValueCountError(
                f"Sample has {len(values)} values, expected "
                f"{self._num_sample_types} (one per sample type)"
            )

        location_ids = self._get_location_ids_for_callsite(callsite_id)
        self._result.sample.add(location_id=location_ids, value=values)
        self._sample_count += 1

    def build(self) -> bytes:
        """
        Finalize the profile and return the serialized proto.

        Can be called multiple times; the bytes are computed once.  If
        finalize fails the builder stays in STAGING with its staged
        records untouched, so a later build() starts over cleanly.
        """
        if self._state is BuilderState.STAGING:
            main_binary_id, result = self._finalize()
            self._serialized = result.SerializeToString()
            self._result = result
            self._main_binary_id = main_binary_id
            self._state = BuilderState.FINALIZED
            stats = self.stats()
            logger.info(
                "Built profile: %d samples, %d locations, %d functions, "
                "%d mappings, %d strings (main binary: %s)",
                stats.samples,
                stats.locations,
                stats.functions,
                stats.mappings,
                stats.strings,
                self.main_binary_filename,
            )
        return self._serialized

    # -- staging ---------------------------------------------------------------

    def stage_location(self, frame_id: int) -> int:
        """Stage the Location for *frame_id* and return its id."""
        existing = self._seen_locations.get(frame_id)
        if existing is not None:
            return existing

        frame = self._storage.frame(frame_id)
        if frame is None:
            logger.warning("Frame %d missing from the frame table", frame_id)
            location = Location(mapping_id=UNMAPPED_MAPPING_ID, rel_pc=0, lines=())
            return self._record_location(frame_id, location)

        mapping_row = self._storage.mapping(frame.mapping)
        if mapping_row is None:
            logger.debug("Frame %d has no mapping row (%d)", frame_id, frame.mapping)
            mapping_id = UNMAPPED_MAPPING_ID
            rel_pc = 0
        else:
            mapping_id = self.stage_mapping(mapping_row)
            rel_pc = frame.rel_pc

        location = Location(
            mapping_id=mapping_id,
            rel_pc=rel_pc,
            lines=self._get_lines(frame, mapping_id),
        )
        return self._record_location(frame_id, location)

    def stage_mapping(self, mapping_row: MappingRow) -> int:
        """Stage the Mapping for a storage mapping row and return its id."""
        existing = self._seen_mappings.get(mapping_row.id)
        if existing is not None:
            return existing

        key = self._mapping_key(mapping_row)
        mapping_id = self._mapping_keys.get(key)
        if mapping_id is None:
            mapping_id = len(self._mappings) + 1
            self._mapping_keys[key] = mapping_id
            self._mappings.append(self._new_mapping(mapping_row))
            logger.debug(
                "Staged mapping %d: %s",
                mapping_id,
                self._mappings[-1].filename_str,
            )

        self._seen_mappings[mapping_row.id] = mapping_id
        return mapping_id

    def stage_symbol_function(self, symbol: SymbolRow, mapping_id: int) -> int:
        """Stage a Function from an offline-symbolized symbol row."""
        name = self._string_table.intern_pooled(symbol.name)
        filename = self._string_table.intern_pooled(symbol.source_file)

        function_id = self._stage_function(
            Function(name=name, system_name=EMPTY_STRING_INDEX, filename=filename)
        )
        self._merge_debug_info(
            mapping_id,
            DebugInfo(
                has_functions=name != EMPTY_STRING_INDEX,
                has_filenames=filename != EMPTY_STRING_INDEX,
            ),
        )
        return function_id

    def stage_frame_function(self, frame: FrameRow, mapping_id: int) -> int:
        """
        Stage a Function from a frame's own name.

        Returns 0 when the frame carries no name at all.
        """
        existing = self._seen_functions.get(frame.id)
        if existing is not None:
            return existing

        if frame.deobfuscated_name is not None:
            name = self._string_table.intern_pooled(frame.deobfuscated_name)
        else:
            name = self._string_table.intern_pooled(frame.name)
        system_name = self._string_table.intern_pooled(frame.name)

        if name == EMPTY_STRING_INDEX and system_name == EMPTY_STRING_INDEX:
            function_id = 0
        else:
            function_id = self._stage_function(
                Function(
                    name=name,
                    system_name=system_name,
                    filename=EMPTY_STRING_INDEX,
                )
            )
            self._merge_debug_info(mapping_id, DebugInfo(has_functions=True))

        self._seen_functions[frame.id] = function_id
        return function_id

    # -- helpers ---------------------------------------------------------------

    def _write_sample_types(self, sample_types: Sequence[Tuple[str, str]]) -> None:
        for name, unit in sample_types:
            self._result.sample_type.add(
                type=self._string_table.intern(name),
                unit=self._string_table.intern(unit),
            )

    def _get_location_ids_for_callsite(self, callsite_id: int) -> Tuple[int, ...]:
        cached = self._cached_location_ids.get(callsite_id)
        if cached is not None:
            return cached

        if self._storage.has_callsite(callsite_id):
            location_ids = tuple(
                self.stage_location(frame_id)
                for frame_id in self._storage.callsite_frames(callsite_id)
            )
        else:
            logger.warning("Unknown callsite %d, sample gets an empty stack", callsite_id)
            location_ids = ()

        self._cached_location_ids[callsite_id] = location_ids
        return location_ids

    def _record_location(self, frame_id: int, location: Location) -> int:
        location_id = self._locations.get(location)
        if location_id is None:
            location_id = len(self._locations) + 1
            self._locations[location] = location_id
        self._seen_locations[frame_id] = location_id
        return location_id

    def _get_lines(self, frame: FrameRow, mapping_id: int) -> Tuple[Line, ...]:
        lines = self._get_lines_for_symbol_set(frame.symbol_set_id, mapping_id)
        if lines:
            return lines

        function_id = self.stage_frame_function(frame, mapping_id)
        if function_id == 0:
            return ()
        return (Line(function_id=function_id, line=0),)

    def _get_lines_for_symbol_set(
        self,
        symbol_set_id: Optional[int],
        mapping_id: int,
    ) -> Tuple[Line, ...]:
        if symbol_set_id is None:
            return ()

        lines = tuple(
            Line(
                function_id=self.stage_symbol_function(symbol, mapping_id),
                line=symbol.line_number or 0,
            )
            for symbol in self._storage.symbols_for_set(symbol_set_id)
        )
        self._merge_debug_info(
            mapping_id,
            DebugInfo(
                has_line_numbers=any(line.line > 0 for line in lines),
                has_inline_frames=len(lines) > 1,
            ),
        )
        return lines

    def _stage_function(self, function: Function) -> int:
        function_id = self._functions.get(function)
        if function_id is None:
            function_id = len(self._functions) + 1
            self._functions[function] = function_id
        return function_id

    def _mapping_key(self, mapping_row: MappingRow) -> MappingKey:
        pool = self._storage.string_pool
        if pool.get(mapping_row.build_id):
            identity = self._string_table.intern_pooled(mapping_row.build_id)
        else:
            identity = self._string_table.intern_pooled(mapping_row.name)
        return MappingKey(
            size=mapping_row.end - mapping_row.start,
            file_offset=mapping_row.exact_offset,
            build_id_or_filename=identity,
        )

    def _new_mapping(self, mapping_row: MappingRow) -> Mapping:
        return Mapping(
            memory_start=mapping_row.start,
            memory_limit=mapping_row.end,
            file_offset=mapping_row.exact_offset,
            filename=self._string_table.intern_pooled(mapping_row.name),
            build_id=self._string_table.intern_pooled(mapping_row.build_id),
            filename_str=self._storage.string_pool.get(mapping_row.name),
        )

    def _merge_debug_info(self, mapping_id: int, observed: DebugInfo) -> None:
        if mapping_id == UNMAPPED_MAPPING_ID:
            return
        self._get_mapping(mapping_id).debug_info.merge(observed)

    def _get_mapping(self, mapping_id: int) -> Mapping:
        if not 1 <= mapping_id <= len(self._mappings):
            raise InvariantError(
                f"Mapping id {mapping_id} not staged "
                f"({len(self._mappings)} mappings)"
            )
        return self._mappings[mapping_id - 1]

    # -- finalize --------------------------------------------------------------

    def _finalize(self) -> Tuple[Optional[int], pprof_proto.Profile]:
        """Write staged entities into a copy of the in-progress Profile."""
        main_binary_id = guess_main_binary(
            self._mappings, self._policy, self._scorer
        )
        result = pprof_proto.Profile()
        result.CopyFrom(self._result)
        self._write_mappings(result, main_binary_id)
        self._write_functions(result)
        self._write_locations(result)
        return main_binary_id, result

    def _write_mappings(
        self,
        result: pprof_proto.Profile,
        main_binary_id: Optional[int],
    ) -> None:
        # pprof convention: the first mapping is the main binary.
        if main_binary_id is not None:
            self._write_mapping(result, main_binary_id)
        for mapping_id in range(1, len(self._mappings) + 1):
            if mapping_id != main_binary_id:
                self._write_mapping(result, mapping_id)

    def _write_mapping(self, result: pprof_proto.Profile, mapping_id: int) -> None:
        mapping = self._get_mapping(mapping_id)
        result.mapping.add(
            id=mapping_id,
            memory_start=mapping.memory_start,
            memory_limit=mapping.memory_limit,
            file_offset=mapping.file_offset,
            filename=mapping.filename,
            build_id=mapping.build_id,
            has_functions=mapping.debug_info.has_functions,
            has_filenames=mapping.debug_info.has_filenames,
            has_line_numbers=mapping.debug_info.has_line_numbers,
            has_inline_frames=mapping.debug_info.has_inline_frames,
        )

    def _write_functions(self, result: pprof_proto.Profile) -> None:
        for function, function_id in self._functions.items():
            result.function.add(
                id=function_id,
                name=function.name,
                system_name=function.system_name,
                filename=function.filename,
            )

    def _write_locations(self, result: pprof_proto.Profile) -> None:
        num_functions = len(self._functions)
        for location, location_id in self._locations.items():
            if location.mapping_id == UNMAPPED_MAPPING_ID:
                address = location.rel_pc
            else:
                address = self._get_mapping(location.mapping_id).memory_start + location.rel_pc

            message = result.location.add(
                id=location_id,
                mapping_id=location.mapping_id,
                address=address,
            )
            for line in location.lines:
                if not 1 <= line.function_id <= num_functions:
                    raise InvariantError(
                        f"Location {location_id} references unstaged "
                        f"function {line.function_id}"
                    )
                message.line.add(function_id=line.function_id, line=line.line)
