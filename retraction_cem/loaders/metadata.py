from __future__ import annotations

import ast
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

from ..logging_setup import get_logger, with_extras
from ..normalize import clean_text, normalize_journal_title, parse_year
from .csv_io import read_csv_rows

logger = get_logger(__name__)

METADATA_COLUMNS = ("paper_id", "year", "journal_prepro", "mag_field_of_study")
_DOMAIN_SPLIT_RE = re.compile(r"\s*[;|]\s*")


@dataclass(frozen=True)
class ArticleMetadata:
    paper_id: str
    journal: str
    year: int
    domain: Tuple[str, ...]


def parse_domain(raw: Any) -> Tuple[str, ...]:
    """
    Ordered field-of-study labels. Accepts a list literal
    ("['Computer Science', 'Biology']") or a ';' / '|' separated string.
    Order is kept: it is part of the matching stratum.
    """
    text = clean_text(raw)
    if not text:
        return ()
    if text.startswith("[") and text.endswith("]"):
        try:
            parsed = ast.literal_eval(text)
        except (ValueError, SyntaxError):
            parsed = None
        if isinstance(parsed, (list, tuple)):
            return tuple(s for s in (clean_text(v) for v in parsed) if s)
        text = text[1:-1]
    return tuple(s for s in (clean_text(v.strip("'\"")) for v in _DOMAIN_SPLIT_RE.split(text)) if s)


def format_domain(domain: Tuple[str, ...]) -> str:
    return "; ".join(domain)


def load_article_metadata(
    path: Union[str, Path],
    *,
    year_min: int,
    year_max: int,
) -> Tuple[List[ArticleMetadata], Dict[str, int]]:
    rows = read_csv_rows(path, required_columns=METADATA_COLUMNS)
    stats = {"rows": len(rows), "missing_fields": 0, "out_of_range_year": 0, "duplicate_paper_id": 0, "kept": 0}
    seen: set = set()
    out: List[ArticleMetadata] = []

    for row in rows:
        paper_id = clean_text(row.get("paper_id"))
        year = parse_year(row.get("year"))
        if not paper_id or year is None:
            stats["missing_fields"] += 1
            continue
        if year < year_min or year > year_max:
            stats["out_of_range_year"] += 1
            continue
        if paper_id in seen:
            stats["duplicate_paper_id"] += 1
            continue
        seen.add(paper_id)
        out.append(
            ArticleMetadata(
                paper_id=paper_id,
                journal=normalize_journal_title(clean_text(row.get("journal_prepro"))),
                year=year,
                domain=parse_domain(row.get("mag_field_of_study")),
            )
        )

    stats["kept"] = len(out)
    if stats["duplicate_paper_id"]:
        with_extras(logger, count=stats["duplicate_paper_id"]).warning("duplicate paper_id rows in metadata; kept first")
    with_extras(logger, path=str(path), **stats).info("article metadata loaded")
    return out, stats


def index_by_paper_id(records: List[ArticleMetadata]) -> Dict[str, ArticleMetadata]:
    return {rec.paper_id: rec for rec in records}

