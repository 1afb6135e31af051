"""
String table — interning layer for the pprof ``string_table``.

Strings in a pprof Profile are stored once and referenced by index.  The
table guarantees that equal text always maps to the same index, whether
it arrives as ad-hoc text or as a ``StringPool`` id from trace storage,
so callers can compare indices instead of text.

Interning may append to the in-flight Profile message; do not call it
while a record is half-written.
"""
from __future__ import annotations

from typing import Dict, Optional

from pprof_export.core.trace_storage import StringPool

EMPTY_STRING_INDEX = 0


class StringTable:
    """Maps text to stable indices in ``profile.string_table``."""

    def __init__(self, profile, string_pool: StringPool) -> None:
        self._profile = profile
        self._string_pool = string_pool
        self._seen_pool_ids: Dict[int, int] = {}
        self._seen_strings: Dict[str, int] = {}
        self._next_index = 0

        # pprof requires string_table[0] == "".
        self._write_string("")

    def intern(self, text: str) -> int:
        """Return the index of *text*, adding it to the table if new."""
        index = self._seen_strings.get(text)
        if index is None:
            index = self._write_string(text)
        return index

    def intern_pooled(self, string_id: Optional[int]) -> int:
        """Return the index of a pooled string; a null reference is ``""``."""
        if string_id is None:
            return EMPTY_STRING_INDEX
        index = self._seen_pool_ids.get(string_id)
        if index is None:
            index = self.intern(self._string_pool.get(string_id))
            self._seen_pool_ids[string_id] = index
        return index

    def _write_string(self, text: str) -> int:
        index = self._next_index
        self._profile.string_table.append(text)
        self._seen_strings[text] = index
        self._next_index += 1
        return index

    def __len__(self) -> int:
        return self._next_index
