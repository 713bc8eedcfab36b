from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from ..logging_setup import get_logger, with_extras
from ..normalize import clean_text, normalize_doi
from .csv_io import read_csv_rows

logger = get_logger(__name__)

SET_RETRACTED = "retracted"
SET_NON_RETRACTED = "non-retracted"

MENTION_COLUMNS = (
    "set_id",
    "paper_id",
    "doi",
    "name",
    "id",
    "mention_string",
    "software_type",
    "mention_type",
    "developer",
    "version",
    "citation",
    "url",
    "host_id",
    "host_name",
)
TAXONOMY_COLUMNS = ("Reason", "TopReason")


@dataclass(frozen=True)
class SoftwareMention:
    set_id: str
    paper_id: str
    doi: Optional[str]
    name: str
    software_id: str
    mention_string: str
    software_type: str
    mention_type: str
    developer: str
    version: str
    citation: str
    url: str
    host_id: str
    host_name: str


def _cell(row: Dict[str, str], key: str) -> str:
    return (row.get(key) or "").strip()


def load_software_mentions(path: Union[str, Path]) -> Tuple[List[SoftwareMention], Dict[str, int]]:
    """Software-mention rows as produced by the extraction step, in file order."""
    rows = read_csv_rows(path, required_columns=MENTION_COLUMNS)
    stats = {"rows": len(rows), "missing_paper_id": 0, "retracted": 0, "non_retracted": 0, "other_set": 0}
    out: List[SoftwareMention] = []
    for row in rows:
        paper_id = clean_text(row.get("paper_id"))
        if not paper_id:
            stats["missing_paper_id"] += 1
            continue
        set_id = _cell(row, "set_id").lower()
        if set_id == SET_RETRACTED:
            stats["retracted"] += 1
        elif set_id == SET_NON_RETRACTED:
            stats["non_retracted"] += 1
        else:
            stats["other_set"] += 1
        out.append(
            SoftwareMention(
                set_id=set_id,
                paper_id=paper_id,
                doi=normalize_doi(row.get("doi")),
                name=_cell(row, "name"),
                software_id=_cell(row, "id"),
                mention_string=_cell(row, "mention_string"),
                software_type=_cell(row, "software_type"),
                mention_type=_cell(row, "mention_type"),
                developer=_cell(row, "developer"),
                version=_cell(row, "version"),
                citation=_cell(row, "citation"),
                url=_cell(row, "url"),
                host_id=_cell(row, "host_id"),
                host_name=_cell(row, "host_name"),
            )
        )
    with_extras(logger, path=str(path), **stats).info("software mentions loaded")
    return out, stats


def load_reason_taxonomy(path: Union[str, Path]) -> Dict[str, str]:
    """Manually curated Reason -> TopReason map. First row wins on conflicts."""
    rows = read_csv_rows(path, required_columns=TAXONOMY_COLUMNS)
    taxonomy: Dict[str, str] = {}
    conflicts = 0
    for row in rows:
        reason = clean_text(row.get("Reason"))
        top = clean_text(row.get("TopReason"))
        if not reason or not top:
            continue
        if reason in taxonomy:
            if taxonomy[reason] != top:
                conflicts += 1
            continue
        taxonomy[reason] = top
    if conflicts:
        with_extras(logger, conflicts=conflicts).warning("conflicting TopReason entries in taxonomy; kept first")
    with_extras(logger, path=str(path), reasons=len(taxonomy)).info("reason taxonomy loaded")
    return taxonomy
