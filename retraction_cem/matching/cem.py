from __future__ import annotations

import random
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..errors import MatchInvariantError
from ..logging_setup import get_logger, with_extras
from .control_pool import ControlPool
from .treated import TreatedRecord

logger = get_logger(__name__)

DEFAULT_SAMPLE_SIZE = 10


@dataclass(frozen=True)
class ControlDraw:
    control_paper_id: str
    treated_paper_id: str


@dataclass
class MatchResult:
    sample_size: int
    matched_ids: List[str] = field(default_factory=list)
    unmatched_ids: List[str] = field(default_factory=list)
    # flat draw sequence, sample_size ids per matched id, in matched_ids order
    covered_samples: List[str] = field(default_factory=list)
    draws: List[ControlDraw] = field(default_factory=list)

    def controls_for(self, treated_paper_id: str) -> List[str]:
        return [d.control_paper_id for d in self.draws if d.treated_paper_id == treated_paper_id]

    def summary(self) -> Dict[str, Any]:
        return {
            "sample_size": self.sample_size,
            "matched": len(self.matched_ids),
            "unmatched": len(self.unmatched_ids),
            "controls_drawn": len(self.covered_samples),
        }


def stratum_sampling_rng(seed: int) -> random.Random:
    """Random stream used only for drawing controls out of strata."""
    return random.Random(seed)


class CemSampler:
    """
    Greedy coarsened exact matching.

    For each treated record, in the order given, draw exactly `sample_size`
    controls without replacement from the remaining pool entries of its
    (year, domain, percentile) stratum, or none at all when fewer remain.
    Drawn controls are removed from the pool, so the outcome depends on the
    treated order; there is no backtracking.
    """

    def __init__(self, sample_size: int = DEFAULT_SAMPLE_SIZE, *, rng: Optional[random.Random] = None) -> None:
        if sample_size <= 0:
            raise MatchInvariantError(f"sample size must be positive, got {sample_size}")
        self.sample_size = sample_size
        self.rng = rng or stratum_sampling_rng(0)

    def match(self, treated: Sequence[TreatedRecord], pool: ControlPool) -> MatchResult:
        ids = [t.paper_id for t in treated]
        if len(set(ids)) != len(ids):
            raise MatchInvariantError("treated records must have unique paper ids")

        result = MatchResult(sample_size=self.sample_size)
        drawn_strata: set = set()
        short_by_depletion = 0
        for record in treated:
            stratum = record.stratum
            eligible = pool.eligible(stratum)
            if len(eligible) < self.sample_size:
                result.unmatched_ids.append(record.paper_id)
                if stratum in drawn_strata:
                    short_by_depletion += 1
                continue
            drawn = self.rng.sample(eligible, self.sample_size)
            pool.cover(drawn)
            drawn_strata.add(stratum)
            result.matched_ids.append(record.paper_id)
            result.covered_samples.extend(drawn)
            result.draws.extend(ControlDraw(control_paper_id=c, treated_paper_id=record.paper_id) for c in drawn)

        with_extras(logger, short_by_depletion=short_by_depletion, **result.summary()).info("cem sampling finished")
        return result


def run_cem_matching(
    treated: Sequence[TreatedRecord],
    pool: ControlPool,
    *,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    seed: int,
) -> MatchResult:
    sampler = CemSampler(sample_size, rng=stratum_sampling_rng(seed))
    return sampler.match(treated, pool)


def strata_report(treated: Sequence[TreatedRecord], result: MatchResult) -> Dict[str, Dict[str, int]]:
    """Matched / unmatched counts per year, handy for eyeballing coverage."""
    matched = set(result.matched_ids)
    by_year: Dict[str, Dict[str, int]] = defaultdict(lambda: {"matched": 0, "unmatched": 0})
    for record in treated:
        by_year[str(record.year)]["matched" if record.paper_id in matched else "unmatched"] += 1
    return {year: dict(counts) for year, counts in sorted(by_year.items())}
