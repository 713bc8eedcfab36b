from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..errors import MatchInvariantError
from ..loaders.journal_rank import JournalRankTable
from ..loaders.metadata import ArticleMetadata
from ..logging_setup import get_logger, with_extras
from .strata import Stratum, stratum_key

logger = get_logger(__name__)


@dataclass(frozen=True)
class ControlCandidate:
    paper_id: str
    year: int
    domain: Tuple[str, ...]
    percentile: int

    @property
    def stratum(self) -> Stratum:
        return stratum_key(self.year, self.domain, self.percentile)


class ControlPool:
    """
    Articles eligible to be drawn as controls, grouped by stratum.

    This is the only mutable object in a run. Entries drawn for one treated
    record are removed so later treated records see a smaller pool; callers
    must therefore walk treated records in one fixed order, from a single
    thread.
    """

    def __init__(self, candidates: Iterable[ControlCandidate]) -> None:
        self._by_stratum: Dict[Stratum, List[str]] = defaultdict(list)
        self._stratum_of: Dict[str, Stratum] = {}
        self._candidates: Dict[str, ControlCandidate] = {}
        self._covered: List[str] = []
        self._covered_ids: Set[str] = set()
        for cand in candidates:
            if cand.paper_id in self._stratum_of:
                continue
            self._stratum_of[cand.paper_id] = cand.stratum
            self._by_stratum[cand.stratum].append(cand.paper_id)
            self._candidates[cand.paper_id] = cand

    def __len__(self) -> int:
        return len(self._stratum_of) - len(self._covered)

    def __contains__(self, paper_id: object) -> bool:
        return paper_id in self._stratum_of and paper_id not in self._covered_ids

    @property
    def total(self) -> int:
        return len(self._stratum_of)

    @property
    def covered(self) -> List[str]:
        return list(self._covered)

    def candidate(self, paper_id: str) -> Optional[ControlCandidate]:
        return self._candidates.get(paper_id)

    def eligible(self, stratum: Stratum) -> List[str]:
        """Remaining ids in the stratum, in pool load order."""
        return list(self._by_stratum.get(stratum, ()))

    def cover(self, paper_ids: Iterable[str]) -> None:
        ids = list(paper_ids)
        if len(set(ids)) != len(ids):
            raise MatchInvariantError("cannot cover the same control twice in one draw")
        for pid in ids:
            stratum = self._stratum_of.get(pid)
            members = self._by_stratum.get(stratum) if stratum is not None else None
            if members is None or pid not in members:
                raise MatchInvariantError(f"control {pid!r} is not available in the pool")
        for pid in ids:
            self._by_stratum[self._stratum_of[pid]].remove(pid)
            self._covered.append(pid)
            self._covered_ids.add(pid)

    def stratum_sizes(self) -> Dict[Stratum, int]:
        return {s: len(ids) for s, ids in self._by_stratum.items() if ids}


def build_control_pool(
    metadata: Iterable[ArticleMetadata],
    ranks: JournalRankTable,
    *,
    exclude_ids: Iterable[str] = (),
) -> Tuple[ControlPool, Dict[str, int]]:
    """
    Every metadata article whose own journal key resolves a percentile,
    minus the excluded (treated / retracted) paper ids.
    """
    excluded = set(exclude_ids)
    stats = {"metadata": 0, "excluded": 0, "no_percentile": 0, "pool": 0}
    candidates: List[ControlCandidate] = []
    for rec in metadata:
        stats["metadata"] += 1
        if rec.paper_id in excluded:
            stats["excluded"] += 1
            continue
        percentile = ranks.percentile(rec.journal, rec.year)
        if percentile is None:
            stats["no_percentile"] += 1
            continue
        candidates.append(ControlCandidate(paper_id=rec.paper_id, year=rec.year, domain=rec.domain, percentile=percentile))

    pool = ControlPool(candidates)
    stats["pool"] = pool.total
    with_extras(logger, **stats).info("control pool built")
    return pool, stats
