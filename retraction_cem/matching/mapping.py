from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence

from ..errors import MatchInvariantError
from .cem import MatchResult


@dataclass(frozen=True)
class MatchMapping:
    control_paper_id: str
    treated_paper_id: str


def build_mapping(result: MatchResult) -> List[MatchMapping]:
    """Control -> treated association from the sampler's labeled draws."""
    mapping = [MatchMapping(control_paper_id=d.control_paper_id, treated_paper_id=d.treated_paper_id) for d in result.draws]
    _check_blocks(mapping, result.matched_ids, result.sample_size)
    return mapping


def mapping_from_blocks(
    matched_ids: Sequence[str],
    covered_samples: Sequence[str],
    sample_size: int,
) -> List[MatchMapping]:
    """
    Rebuild the association positionally: the i-th run of `sample_size`
    covered ids belongs to matched_ids[i].
    """
    if sample_size <= 0:
        raise MatchInvariantError(f"sample size must be positive, got {sample_size}")
    if len(covered_samples) != sample_size * len(matched_ids):
        raise MatchInvariantError(
            f"{len(covered_samples)} covered samples cannot be split into "
            f"{len(matched_ids)} blocks of {sample_size}"
        )
    return [
        MatchMapping(control_paper_id=control, treated_paper_id=matched_ids[i // sample_size])
        for i, control in enumerate(covered_samples)
    ]


def _check_blocks(mapping: Sequence[MatchMapping], matched_ids: Sequence[str], sample_size: int) -> None:
    counts: Dict[str, int] = {tid: 0 for tid in matched_ids}
    seen_controls: set = set()
    for m in mapping:
        if m.treated_paper_id not in counts:
            raise MatchInvariantError(f"control {m.control_paper_id!r} mapped to unmatched treated {m.treated_paper_id!r}")
        if m.control_paper_id in seen_controls:
            raise MatchInvariantError(f"control {m.control_paper_id!r} drawn more than once")
        seen_controls.add(m.control_paper_id)
        counts[m.treated_paper_id] += 1
    short = [tid for tid, n in counts.items() if n != sample_size]
    if short:
        raise MatchInvariantError(f"{len(short)} matched treated records do not have exactly {sample_size} controls")

