"""
Shared pytest fixtures for pprof_export tests.

All fixtures are pure-Python: trace storage is populated in memory
through StorageFactory, which hands out row ids the way the trace
processor does (sequential from 0, per table).
"""
from typing import List, Optional, Sequence, Tuple

import pytest

from pprof_export.core import pprof_proto
from pprof_export.core.trace_storage import (
    CallsiteRow,
    FrameRow,
    MappingRow,
    SymbolRow,
    TraceStorage,
)

# (name, source_file, line_number), innermost first
SymbolSpec = Tuple[str, Optional[str], Optional[int]]


class StorageFactory:
    """Populates a TraceStorage with auto-assigned row ids."""

    def __init__(self):
        self.storage = TraceStorage()
        self.pool = self.storage.string_pool
        self._next_mapping = 0
        self._next_frame = 0
        self._next_symbol = 0
        self._next_symbol_set = 0
        self._next_callsite = 0

    def mapping(
        self,
        name: str,
        start: int = 0x1000,
        end: int = 0x5000,
        build_id: Optional[str] = None,
        exact_offset: int = 0,
    ) -> int:
        row = MappingRow(
            id=self._next_mapping,
            build_id=self.pool.intern(build_id),
            exact_offset=exact_offset,
            start_offset=exact_offset,
            start=start,
            end=end,
            load_bias=0,
            name=self.pool.intern(name),
        )
        self._next_mapping += 1
        return self.storage.add_mapping(row)

    def frame(
        self,
        mapping: int,
        name: Optional[str] = None,
        rel_pc: int = 0,
        deobfuscated_name: Optional[str] = None,
        symbols: Optional[Sequence[SymbolSpec]] = None,
    ) -> int:
        symbol_set_id = None
        if symbols is not None:
            symbol_set_id = self._next_symbol_set
            self._next_symbol_set += 1
            for sym_name, source_file, line in symbols:
                self.storage.add_symbol(SymbolRow(
                    id=self._next_symbol,
                    symbol_set_id=symbol_set_id,
                    name=self.pool.intern(sym_name),
                    source_file=(
                        self.pool.intern(source_file)
                        if source_file is not None else None
                    ),
                    line_number=line,
                ))
                self._next_symbol += 1

        row = FrameRow(
            id=self._next_frame,
            name=self.pool.intern(name),
            mapping=mapping,
            rel_pc=rel_pc,
            symbol_set_id=symbol_set_id,
            deobfuscated_name=(
                self.pool.intern(deobfuscated_name)
                if deobfuscated_name is not None else None
            ),
        )
        self._next_frame += 1
        return self.storage.add_frame(row)

    def callsite(self, frames_leaf_to_root: Sequence[int]) -> int:
        """Create a callsite chain and return the leaf callsite id."""
        parent = None
        for depth, frame_id in enumerate(reversed(frames_leaf_to_root)):
            row = CallsiteRow(
                id=self._next_callsite,
                depth=depth,
                parent_id=parent,
                frame_id=frame_id,
            )
            self._next_callsite += 1
            parent = self.storage.add_callsite(row)
        return parent


@pytest.fixture
def factory() -> StorageFactory:
    return StorageFactory()


@pytest.fixture
def app_process(factory):
    """
    A small process: /bin/app calling into libc, loaded by the linker.

    Returns (factory, callsites) where callsites maps a label to a leaf
    callsite id.
    """
    app = factory.mapping("/bin/app", start=0x400000, end=0x401000, build_id="aa11")
    libc = factory.mapping(
        "/lib/x86_64-linux-gnu/libc.so.6", start=0x7f0000000000, end=0x7f0000100000,
        build_id="cc33",
    )
    ld = factory.mapping(
        "/lib64/ld-linux-x86-64.so.2", start=0x7f1000000000, end=0x7f1000020000,
        build_id="dd44",
    )

    start = factory.frame(ld, name="_start", rel_pc=0x10)
    main = factory.frame(app, name="main", rel_pc=0x100)
    work = factory.frame(app, name="work", rel_pc=0x200)
    malloc = factory.frame(libc, name="malloc", rel_pc=0x3000)

    callsites = {
        "main": factory.callsite([main, start]),
        "work": factory.callsite([work, main, start]),
        "malloc": factory.callsite([malloc, work, main, start]),
    }
    return factory, callsites


# ── Profile inspection ──────────────────────────────────────────────────────

class ProfileView:
    """Parsed Profile plus id-resolving lookups."""

    def __init__(self, data: bytes):
        self.profile = pprof_proto.Profile.FromString(data)
        self.functions = {f.id: f for f in self.profile.function}
        self.locations = {loc.id: loc for loc in self.profile.location}
        self.mappings = {m.id: m for m in self.profile.mapping}

    def string(self, index: int) -> str:
        return self.profile.string_table[index]

    def function_name(self, function_id: int) -> str:
        return self.string(self.functions[function_id].name)

    def function_names(self, location_id: int) -> List[str]:
        """Function names of a location's lines, innermost first."""
        return [
            self.function_name(line.function_id)
            for line in self.locations[location_id].line
        ]

    def sample_stack(self, sample) -> List[str]:
        """Flattened function names of a sample, leaf first."""
        names: List[str] = []
        for location_id in sample.location_id:
            names.extend(self.function_names(location_id))
        return names

    def mapping_filenames(self) -> List[str]:
        """Mapping filenames in output order."""
        return [self.string(m.filename) for m in self.profile.mapping]


@pytest.fixture
def view():
    """Parse serialized bytes into a ProfileView."""
    return ProfileView
