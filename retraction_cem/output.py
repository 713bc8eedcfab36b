from __future__ import annotations

import random
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .loaders.csv_io import write_csv_rows
from .loaders.mentions import SET_NON_RETRACTED, SET_RETRACTED, SoftwareMention
from .loaders.metadata import format_domain
from .loaders.retractions import RetractionRecord
from .logging_setup import get_logger, with_extras
from .matching.cem import MatchResult
from .matching.control_pool import ControlPool
from .matching.mapping import MatchMapping
from .matching.treated import TreatedRecord

logger = get_logger(__name__)

OUTPUT_COLUMNS = [
    "Set_ID",
    "Paper_ID",
    "Retraction_Reason",
    "Control_Sample_Origin",
    "Year",
    "Scientific_Domain",
    "Journal_Rank_Percentile",
    "Software_ID",
    "Software_Name",
    "Software_String",
    "Software_Type",
    "Mention_Type",
    "Version",
    "Developer",
    "Citation",
    "URL",
    "Host_Software_ID",
    "Host_Software_Name",
]


@dataclass
class AssemblyResult:
    rows: List[Dict[str, Any]]
    id_map: Dict[str, int]
    stats: Dict[str, Any] = field(default_factory=dict)


def identifier_rng(seed: int) -> random.Random:
    """Random stream used only for the identifier permutation."""
    return random.Random(seed)


def anonymize_ids(paper_ids: Iterable[str], seed: int) -> Dict[str, int]:
    """
    Bijective map from real paper ids to a seeded permutation of 1..n.
    Ids are numbered by first appearance, so the same input order and seed
    always give the same map.
    """
    unique: List[str] = []
    seen: set = set()
    for pid in paper_ids:
        if pid not in seen:
            seen.add(pid)
            unique.append(pid)
    surrogates = list(range(1, len(unique) + 1))
    identifier_rng(seed).shuffle(surrogates)
    return dict(zip(unique, surrogates))


def _mention_fields(m: SoftwareMention) -> Dict[str, Any]:
    return {
        "Software_ID": m.software_id,
        "Software_Name": m.name,
        "Software_String": m.mention_string,
        "Software_Type": m.software_type,
        "Mention_Type": m.mention_type,
        "Version": m.version,
        "Developer": m.developer,
        "Citation": m.citation,
        "URL": m.url,
        "Host_Software_ID": m.host_id,
        "Host_Software_Name": m.host_name,
    }


def _covariates(year: int, domain: Tuple[str, ...], percentile: int) -> Dict[str, Any]:
    return {"Year": year, "Scientific_Domain": format_domain(domain), "Journal_Rank_Percentile": percentile}


def _treated_rows(
    treated: Sequence[TreatedRecord],
    matched_ids: Sequence[str],
    mentions_by_paper: Dict[str, List[SoftwareMention]],
    reasons_by_doi: Dict[str, List[str]],
    taxonomy: Dict[str, str],
    stats: Dict[str, Any],
) -> List[Dict[str, Any]]:
    by_id = {t.paper_id: t for t in treated}
    missing_reasons: set = set()
    rows: List[Dict[str, Any]] = []
    for paper_id in matched_ids:
        record = by_id[paper_id]
        reasons = reasons_by_doi.get(record.doi, [])
        for mention in mentions_by_paper.get(paper_id, []):
            emitted: set = set()
            for reason in reasons:
                top = taxonomy.get(reason)
                if top is None:
                    missing_reasons.add(reason)
                    stats["taxonomy_dropped"] += 1
                    continue
                if top in emitted:
                    continue
                emitted.add(top)
                row = {
                    "Set_ID": SET_RETRACTED,
                    "Paper_ID": paper_id,
                    "Retraction_Reason": top,
                    "Control_Sample_Origin": None,
                }
                row.update(_covariates(record.year, record.domain, record.percentile))
                row.update(_mention_fields(mention))
                rows.append(row)
    if missing_reasons:
        with_extras(
            logger,
            dropped_rows=stats["taxonomy_dropped"],
            reasons=sorted(missing_reasons),
        ).warning("retraction reasons missing from taxonomy; mention rows dropped")
    return rows


def _control_rows(
    mapping: Sequence[MatchMapping],
    pool: ControlPool,
    mentions_by_paper: Dict[str, List[SoftwareMention]],
    control_reason_label: str,
    stats: Dict[str, Any],
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for m in mapping:
        cand = pool.candidate(m.control_paper_id)
        if cand is None:
            raise KeyError(f"control {m.control_paper_id!r} is not part of the control pool")
        control_mentions = mentions_by_paper.get(m.control_paper_id, [])
        if not control_mentions:
            stats["controls_without_mentions"] += 1
        for mention in control_mentions:
            row = {
                "Set_ID": SET_NON_RETRACTED,
                "Paper_ID": m.control_paper_id,
                "Retraction_Reason": control_reason_label,
                "Control_Sample_Origin": m.treated_paper_id,
            }
            row.update(_covariates(cand.year, cand.domain, cand.percentile))
            row.update(_mention_fields(mention))
            rows.append(row)
    return rows


def _replace_ids(row: Dict[str, Any], id_map: Dict[str, int]) -> Dict[str, Any]:
    out = dict(row)
    out["Paper_ID"] = id_map[row["Paper_ID"]]
    origin = row.get("Control_Sample_Origin")
    out["Control_Sample_Origin"] = id_map[origin] if origin else ""
    return out


def assemble_output(
    *,
    mentions: Iterable[SoftwareMention],
    treated: Sequence[TreatedRecord],
    result: MatchResult,
    mapping: Sequence[MatchMapping],
    pool: ControlPool,
    retractions: Iterable[RetractionRecord],
    taxonomy: Dict[str, str],
    seed: int,
    control_reason_label: str = SET_NON_RETRACTED,
) -> AssemblyResult:
    """
    Join mention detail rows onto the matched treated and control articles
    and replace every paper id with its anonymized surrogate.

    Treated rows fan out once per distinct top-level retraction reason; a
    reason absent from the taxonomy drops that row. Control rows carry
    `control_reason_label` and the surrogate of the treated article they
    were drawn for.
    """
    mentions_by_paper: Dict[str, List[SoftwareMention]] = defaultdict(list)
    for mention in mentions:
        mentions_by_paper[mention.paper_id].append(mention)
    reasons_by_doi: Dict[str, List[str]] = defaultdict(list)
    for rec in retractions:
        reasons_by_doi[rec.original_doi].append(rec.reason)

    stats: Dict[str, Any] = {"taxonomy_dropped": 0, "controls_without_mentions": 0}
    rows = _treated_rows(treated, result.matched_ids, mentions_by_paper, reasons_by_doi, taxonomy, stats)
    rows.extend(_control_rows(mapping, pool, mentions_by_paper, control_reason_label, stats))

    id_map = anonymize_ids(list(result.matched_ids) + [m.control_paper_id for m in mapping], seed)
    final_rows = [_replace_ids(row, id_map) for row in rows]
    stats["output_rows"] = len(final_rows)
    stats["treated_rows"] = sum(1 for r in final_rows if r["Set_ID"] == SET_RETRACTED)
    stats["control_rows"] = len(final_rows) - stats["treated_rows"]
    stats["anonymized_ids"] = len(id_map)
    with_extras(logger, **stats).info("output assembled")
    return AssemblyResult(rows=final_rows, id_map=id_map, stats=stats)


def write_output(path: Union[str, Path], rows: Iterable[Dict[str, Any]]) -> int:
    return write_csv_rows(path, OUTPUT_COLUMNS, rows)


def write_mapping(path: Union[str, Path], mapping: Sequence[MatchMapping], id_map: Optional[Dict[str, int]] = None) -> int:
    """Private audit copy of the control -> treated pairs, with real ids."""
    rows = []
    for m in mapping:
        row: Dict[str, Any] = {"control_paper_id": m.control_paper_id, "treated_paper_id": m.treated_paper_id}
        if id_map is not None:
            row["control_surrogate"] = id_map.get(m.control_paper_id, "")
            row["treated_surrogate"] = id_map.get(m.treated_paper_id, "")
        rows.append(row)
    fields = ["control_paper_id", "treated_paper_id"]
    if id_map is not None:
        fields += ["control_surrogate", "treated_surrogate"]
    return write_csv_rows(path, fields, rows)
