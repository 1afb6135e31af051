"""
Main binary — heuristic for picking the process's primary executable.

pprof expects the first ``mapping`` entry to be the main binary.  Trace
storage does not record which mapping that is, so every staged mapping
is scored and the highest score wins.  Bigger scores mean higher
likelihood.

Scoring is pure and lives outside the builder: the weights are policy,
not structure.  Changing them is a ScoringPolicy change.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable, Optional, Sequence, Tuple

from pprof_export.core.entities import Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringPolicy:
    """Weights and name patterns for main-binary scoring."""

    policy_id: str = "main-binary-v0"

    # ── Rewards ──────────────────────────────────────────────────────
    build_id_bonus: int = 10
    debug_info_bonus: int = 10        # per DebugInfo flag set

    # ── Penalties (each class applies at most once) ──────────────────
    penalty: int = 1000

    shared_library_suffix: str = ".so"
    linker_name_prefixes: Tuple[str, ...] = ("ld-linux", "ld.so", "ld-musl")
    linker_names: Tuple[str, ...] = ("linker", "linker64")
    bad_path_prefixes: Tuple[str, ...] = ("/apex", "/system", "/[", "[")

    @classmethod
    def v0(cls) -> ScoringPolicy:
        return cls()


Scorer = Callable[[Mapping, ScoringPolicy], int]


def _is_shared_library(basename: str, policy: ScoringPolicy) -> bool:
    suffix = policy.shared_library_suffix
    return basename.endswith(suffix) or f"{suffix}." in basename


def _is_dynamic_linker(basename: str, policy: ScoringPolicy) -> bool:
    if basename in policy.linker_names:
        return True
    return any(basename.startswith(p) for p in policy.linker_name_prefixes)


def compute_main_binary_score(mapping: Mapping, policy: ScoringPolicy) -> int:
    """Score one mapping.  Bigger means more likely the main binary."""
    score = 0

    if mapping.has_build_id:
        score += policy.build_id_bonus

    debug = mapping.debug_info
    for flag in (
        debug.has_functions,
        debug.has_filenames,
        debug.has_line_numbers,
        debug.has_inline_frames,
    ):
        if flag:
            score += policy.debug_info_bonus

    if mapping.memory_limit == mapping.memory_start:
        score -= policy.penalty

    path = mapping.filename_str
    basename = PurePosixPath(path).name

    if _is_shared_library(basename, policy):
        score -= policy.penalty

    if _is_dynamic_linker(basename, policy):
        score -= policy.penalty

    if any(path.startswith(p) for p in policy.bad_path_prefixes):
        score -= policy.penalty

    return score


def guess_main_binary(
    mappings: Sequence[Mapping],
    policy: Optional[ScoringPolicy] = None,
    scorer: Scorer = compute_main_binary_score,
) -> Optional[int]:
    """
    Return the mapping id (index + 1) of the best-scoring mapping.

    Ties go to the mapping staged first.  Returns None for no mappings.
    """
    if policy is None:
        policy = ScoringPolicy.v0()

    best_id: Optional[int] = None
    best_score = 0
    for index, mapping in enumerate(mappings):
        score = scorer(mapping, policy)
        logger.debug("Main binary score %d for %s", score, mapping.filename_str)
        if best_id is None or score > best_score:
            best_id = index + 1
            best_score = score
    return best_id
