from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..loaders.journal_rank import JournalRankTable
from ..loaders.mentions import SET_RETRACTED, SoftwareMention
from ..loaders.metadata import ArticleMetadata
from ..loaders.retractions import RetractionRecord
from ..logging_setup import get_logger, with_extras
from .strata import Stratum, stratum_key

logger = get_logger(__name__)


@dataclass(frozen=True)
class TreatedCandidate:
    """A retracted article with software mentions, before percentile resolution."""

    paper_id: str
    doi: str
    year: int
    domain: Tuple[str, ...]
    metadata_journal: str
    retraction_journal: str


@dataclass(frozen=True)
class TreatedRecord:
    paper_id: str
    domain: Tuple[str, ...]
    year: int
    percentile: int
    resolved_by: str = ""
    doi: str = ""

    @property
    def stratum(self) -> Stratum:
        return stratum_key(self.year, self.domain, self.percentile)


@dataclass(frozen=True)
class JoinKeyStrategy:
    name: str
    journal_key: Callable[[TreatedCandidate], Optional[str]]


# Tried in order; the first strategy that yields a percentile wins.
DEFAULT_JOIN_STRATEGIES: Tuple[JoinKeyStrategy, ...] = (
    JoinKeyStrategy("retraction_journal", lambda c: c.retraction_journal),
    JoinKeyStrategy("metadata_journal", lambda c: c.metadata_journal),
)


@dataclass
class TreatedSetResult:
    records: List[TreatedRecord]
    unresolved: List[TreatedCandidate]
    resolved_by: Dict[str, int] = field(default_factory=dict)

    @property
    def paper_ids(self) -> List[str]:
        return [r.paper_id for r in self.records]

    def summary(self) -> Dict[str, Any]:
        return {
            "treated": len(self.records),
            "unresolved_percentile": len(self.unresolved),
            "resolved_by": dict(self.resolved_by),
        }


def collect_treated_candidates(
    mentions: Iterable[SoftwareMention],
    metadata_by_id: Dict[str, ArticleMetadata],
    retractions: Iterable[RetractionRecord],
) -> Tuple[List[TreatedCandidate], Dict[str, int]]:
    """
    Retracted-set articles with a DOI, a metadata record and a retraction
    record, in order of first appearance in the mention table.
    """
    journal_by_doi: Dict[str, str] = {}
    for rec in retractions:
        journal_by_doi.setdefault(rec.original_doi, rec.journal)

    stats = {"retracted_papers": 0, "missing_doi": 0, "missing_metadata": 0, "missing_retraction": 0, "candidates": 0}
    # first non-empty DOI per paper, papers in order of first mention
    doi_by_paper: Dict[str, Optional[str]] = {}
    for mention in mentions:
        if mention.set_id != SET_RETRACTED:
            continue
        if not doi_by_paper.get(mention.paper_id):
            doi_by_paper[mention.paper_id] = mention.doi

    candidates: List[TreatedCandidate] = []
    for paper_id, doi in doi_by_paper.items():
        stats["retracted_papers"] += 1
        if not doi:
            stats["missing_doi"] += 1
            continue
        meta = metadata_by_id.get(paper_id)
        if meta is None:
            stats["missing_metadata"] += 1
            continue
        if doi not in journal_by_doi:
            stats["missing_retraction"] += 1
            continue
        candidates.append(
            TreatedCandidate(
                paper_id=paper_id,
                doi=doi,
                year=meta.year,
                domain=meta.domain,
                metadata_journal=meta.journal,
                retraction_journal=journal_by_doi[doi],
            )
        )
    stats["candidates"] = len(candidates)
    with_extras(logger, **stats).info("treated candidates collected")
    return candidates, stats


def resolve_percentile(
    candidate: TreatedCandidate,
    ranks: JournalRankTable,
    strategies: Sequence[JoinKeyStrategy] = DEFAULT_JOIN_STRATEGIES,
) -> Optional[Tuple[int, str]]:
    for strategy in strategies:
        percentile = ranks.percentile(strategy.journal_key(candidate), candidate.year)
        if percentile is not None:
            return percentile, strategy.name
    return None


def build_treated_set(
    candidates: Iterable[TreatedCandidate],
    ranks: JournalRankTable,
    strategies: Sequence[JoinKeyStrategy] = DEFAULT_JOIN_STRATEGIES,
) -> TreatedSetResult:
    """
    Resolve exactly one (domain, year, percentile) per candidate. A later
    strategy only sees candidates every earlier strategy failed on, so no
    paper is joined twice. Candidate order is preserved.
    """
    records: List[TreatedRecord] = []
    unresolved: List[TreatedCandidate] = []
    resolved_by: Counter = Counter({s.name: 0 for s in strategies})
    seen: set = set()
    for candidate in candidates:
        if candidate.paper_id in seen:
            continue
        seen.add(candidate.paper_id)
        resolved = resolve_percentile(candidate, ranks, strategies)
        if resolved is None:
            unresolved.append(candidate)
            continue
        percentile, name = resolved
        resolved_by[name] += 1
        records.append(
            TreatedRecord(
                paper_id=candidate.paper_id,
                domain=candidate.domain,
                year=candidate.year,
                percentile=percentile,
                resolved_by=name,
                doi=candidate.doi,
            )
        )

    result = TreatedSetResult(records=records, unresolved=unresolved, resolved_by=dict(resolved_by))
    if unresolved:
        with_extras(logger, count=len(unresolved)).warning("treated candidates without a journal rank percentile")
    with_extras(logger, **result.summary()).info("treated set built")
    return result
