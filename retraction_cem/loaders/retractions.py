from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..logging_setup import get_logger, with_extras
from ..normalize import clean_text, normalize_doi, normalize_journal_title, parse_year
from .csv_io import read_csv_rows

logger = get_logger(__name__)

RETRACTION_COLUMNS = ("OriginalPaperDOI", "Journal", "Reason")
DATE_COLUMN = "OriginalPaperDate"
_REASON_SPLIT_RE = re.compile(r"[;+]")


@dataclass(frozen=True)
class RetractionRecord:
    original_doi: str
    journal: str
    reason: str


def split_reasons(raw: Any) -> List[str]:
    """'+Duplication of Article;+Plagiarism of Article;' -> two reasons, order kept."""
    text = clean_text(raw)
    if not text:
        return []
    out: List[str] = []
    for part in _REASON_SPLIT_RE.split(text):
        reason = part.strip()
        if reason:
            out.append(reason)
    return out


def load_retractions(
    path: Union[str, Path],
    *,
    year_min: Optional[int] = None,
    year_max: Optional[int] = None,
) -> Tuple[List[RetractionRecord], Dict[str, int]]:
    """
    One RetractionRecord per (retraction row, reason). Duplicates are kept:
    an article can be retracted for several unrelated reasons.

    When the table carries OriginalPaperDate, rows whose publication year
    falls outside [year_min, year_max] are dropped; rows without a parseable
    date are kept and left to the metadata join.
    """
    rows = read_csv_rows(path, required_columns=RETRACTION_COLUMNS)
    stats = {"rows": len(rows), "missing_doi": 0, "out_of_range_year": 0, "empty_reason": 0, "records": 0}
    out: List[RetractionRecord] = []

    for row in rows:
        doi = normalize_doi(row.get("OriginalPaperDOI"))
        if not doi:
            stats["missing_doi"] += 1
            continue
        year = parse_year(row.get(DATE_COLUMN)) if DATE_COLUMN in row else None
        if year is not None and (
            (year_min is not None and year < year_min) or (year_max is not None and year > year_max)
        ):
            stats["out_of_range_year"] += 1
            continue
        reasons = split_reasons(row.get("Reason"))
        if not reasons:
            stats["empty_reason"] += 1
            continue
        journal = normalize_journal_title(clean_text(row.get("Journal")))
        for reason in reasons:
            out.append(RetractionRecord(original_doi=doi, journal=journal, reason=reason))

    stats["records"] = len(out)
    with_extras(logger, path=str(path), **stats).info("retraction records loaded")
    return out, stats
