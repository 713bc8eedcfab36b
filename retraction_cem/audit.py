from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from thefuzz import fuzz

from .loaders.journal_rank import JournalRankTable
from .logging_setup import get_logger, with_extras
from .matching.treated import TreatedCandidate

logger = get_logger(__name__)

SUGGESTION_THRESHOLD = 85
SUGGESTION_LIMIT = 3


def suggest_journal_matches(
    journal: Optional[str],
    year: int,
    ranks: JournalRankTable,
    *,
    threshold: int = SUGGESTION_THRESHOLD,
    limit: int = SUGGESTION_LIMIT,
) -> List[Dict[str, Any]]:
    """
    Closest rank-table titles for a journal key that found no percentile.
    Diagnostic only: suggestions are never used to resolve a join.
    """
    if not journal:
        return []
    scored = []
    for title in ranks.titles_for_year(year):
        score = max(fuzz.ratio(journal, title), fuzz.token_sort_ratio(journal, title))
        if score >= threshold:
            scored.append({"title": title, "score": score, "percentile": ranks.percentile(title, year)})
    scored.sort(key=lambda s: (-s["score"], s["title"]))
    return scored[:limit]


def unresolved_journal_report(
    unresolved: Sequence[TreatedCandidate],
    ranks: JournalRankTable,
    *,
    threshold: int = SUGGESTION_THRESHOLD,
) -> List[Dict[str, Any]]:
    report: List[Dict[str, Any]] = []
    for cand in unresolved:
        suggestions = suggest_journal_matches(cand.retraction_journal, cand.year, ranks, threshold=threshold)
        if cand.metadata_journal != cand.retraction_journal:
            suggestions += suggest_journal_matches(cand.metadata_journal, cand.year, ranks, threshold=threshold)
        entry = {
            "paper_id": cand.paper_id,
            "year": cand.year,
            "retraction_journal": cand.retraction_journal,
            "metadata_journal": cand.metadata_journal,
            "suggestions": suggestions,
        }
        report.append(entry)
        if suggestions:
            with_extras(logger, **entry).debug("near-miss journal for unresolved treated article")
    return report


def exclusion_summary(stage_stats: Dict[str, Dict[str, Any]]) -> Dict[str, int]:
    """Flatten the per-stage exclusion counters into one audit table."""
    keys = {
        "metadata": ("missing_fields", "out_of_range_year", "duplicate_paper_id"),
        "retractions": ("missing_doi", "out_of_range_year", "empty_reason"),
        "ranks": ("skipped_rows", "ambiguous_rows"),
        "treated_candidates": ("missing_doi", "missing_metadata", "missing_retraction"),
        "treated": ("unresolved_percentile",),
        "pool": ("no_percentile",),
        "matching": ("unmatched",),
        "output": ("taxonomy_dropped",),
    }
    out: Dict[str, int] = {}
    for stage, names in keys.items():
        stats = stage_stats.get(stage) or {}
        for name in names:
            if name in stats:
                out[f"{stage}.{name}"] = int(stats[name])
    return out
