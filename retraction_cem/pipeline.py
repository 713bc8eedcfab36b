from __future__ import annotations

import argparse
import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .audit import exclusion_summary, unresolved_journal_report
from .loaders.journal_rank import JournalRankTable, fetch_rank_tables, load_journal_ranks
from .loaders.mentions import SET_RETRACTED, SoftwareMention, load_reason_taxonomy, load_software_mentions
from .loaders.metadata import ArticleMetadata, index_by_paper_id, load_article_metadata
from .loaders.retractions import RetractionRecord, load_retractions
from .logging_setup import get_logger, set_package_level, with_extras
from .matching.cem import MatchResult, run_cem_matching, strata_report
from .matching.control_pool import ControlPool, build_control_pool
from .matching.mapping import MatchMapping, build_mapping
from .matching.treated import TreatedSetResult, build_treated_set, collect_treated_candidates
from .output import assemble_output, write_mapping, write_output
from .runtime_config import RUNTIME_CONFIG, RuntimeConfig, load_runtime_config

logger = get_logger(__name__)

STAGES = ("ranks", "treated", "pool", "match")


@dataclass
class MatchingRun:
    config: RuntimeConfig
    stats: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    ranks: Optional[JournalRankTable] = None
    metadata: List[ArticleMetadata] = field(default_factory=list)
    retractions: List[RetractionRecord] = field(default_factory=list)
    mentions: List[SoftwareMention] = field(default_factory=list)
    treated: Optional[TreatedSetResult] = None
    pool: Optional[ControlPool] = None
    result: Optional[MatchResult] = None
    mapping: List[MatchMapping] = field(default_factory=list)


def _apply_overrides(cfg: RuntimeConfig, args: argparse.Namespace) -> RuntimeConfig:
    matching = cfg.matching
    if getattr(args, "seed", None) is not None:
        matching = dataclasses.replace(matching, seed=args.seed)
    if getattr(args, "sample_size", None) is not None:
        matching = dataclasses.replace(matching, sample_size=args.sample_size)
    paths = cfg.paths
    if getattr(args, "out", None):
        paths = dataclasses.replace(paths, output_csv=args.out)
    if getattr(args, "rank_dir", None):
        paths = dataclasses.replace(paths, rank_dir=args.rank_dir)
    return dataclasses.replace(cfg, matching=matching, paths=paths)


def _config_from_args(args: argparse.Namespace) -> RuntimeConfig:
    config_path = getattr(args, "config", None)
    cfg = load_runtime_config(Path(config_path)) if config_path else RUNTIME_CONFIG
    return _apply_overrides(cfg, args)


def execute(cfg: RuntimeConfig, *, stop_after: Optional[str] = None) -> MatchingRun:
    """
    Run the matching stages in their required order: rank dedup before any
    percentile join, treated set before pool exclusion, then sampling.
    """
    run = MatchingRun(config=cfg)
    m = cfg.matching

    years = range(m.year_min, m.year_max + 1)
    run.ranks, rank_stats = load_journal_ranks(cfg.paths.rank_dir, delimiter=cfg.ranks.delimiter, years=years)
    run.stats["ranks"] = rank_stats.as_dict()
    if stop_after == "ranks":
        return run

    run.metadata, run.stats["metadata"] = load_article_metadata(
        cfg.paths.metadata_csv, year_min=m.year_min, year_max=m.year_max
    )
    run.retractions, run.stats["retractions"] = load_retractions(
        cfg.paths.retractions_csv, year_min=m.year_min, year_max=m.year_max
    )
    run.mentions, run.stats["mentions"] = load_software_mentions(cfg.paths.mentions_csv)

    candidates, run.stats["treated_candidates"] = collect_treated_candidates(
        run.mentions, index_by_paper_id(run.metadata), run.retractions
    )
    run.treated = build_treated_set(candidates, run.ranks)
    run.stats["treated"] = run.treated.summary()
    if run.treated.unresolved:
        report = unresolved_journal_report(run.treated.unresolved, run.ranks)
        run.stats["treated"]["unresolved_with_suggestions"] = sum(1 for r in report if r["suggestions"])
    if stop_after == "treated":
        return run

    # retracted papers that failed to resolve are still not valid controls
    retracted_ids = {mention.paper_id for mention in run.mentions if mention.set_id == SET_RETRACTED}
    run.pool, run.stats["pool"] = build_control_pool(
        run.metadata, run.ranks, exclude_ids=set(run.treated.paper_ids) | retracted_ids
    )
    run.stats["pool"]["strata"] = len(run.pool.stratum_sizes())
    if stop_after == "pool":
        return run

    run.result = run_cem_matching(run.treated.records, run.pool, sample_size=m.sample_size, seed=m.seed)
    run.mapping = build_mapping(run.result)
    run.stats["matching"] = run.result.summary()
    run.stats["matching"]["by_year"] = strata_report(run.treated.records, run.result)
    return run


def run_all(args: argparse.Namespace) -> Dict[str, Any]:
    cfg = _config_from_args(args)
    run = execute(cfg)
    assert run.treated is not None and run.result is not None and run.pool is not None

    assembled = assemble_output(
        mentions=run.mentions,
        treated=run.treated.records,
        result=run.result,
        mapping=run.mapping,
        pool=run.pool,
        retractions=run.retractions,
        taxonomy=load_reason_taxonomy(cfg.paths.taxonomy_csv),
        seed=cfg.matching.seed,
        control_reason_label=cfg.matching.control_reason_label,
    )
    run.stats["output"] = assembled.stats

    out: Dict[str, Any] = {"stage": "run-all", "dry_run": bool(args.dry_run), "stages": run.stats}
    out["exclusions"] = exclusion_summary(run.stats)
    if args.dry_run:
        return out

    written = write_output(cfg.paths.output_csv, assembled.rows)
    out["output_csv"] = cfg.paths.output_csv
    out["written"] = written
    if cfg.paths.mapping_csv and not args.no_mapping:
        write_mapping(cfg.paths.mapping_csv, run.mapping, assembled.id_map)
        out["mapping_csv"] = cfg.paths.mapping_csv
    if cfg.paths.summary_json:
        summary_path = Path(cfg.paths.summary_json)
        summary_path.parent.mkdir(parents=True, exist_ok=True)
        summary_path.write_text(json.dumps(out, ensure_ascii=False, indent=2, default=str) + "\n", encoding="utf-8")
    with_extras(logger, rows=written, path=cfg.paths.output_csv).info("matched sample written")
    return out


def run_stage(args: argparse.Namespace) -> Dict[str, Any]:
    cfg = _config_from_args(args)
    run = execute(cfg, stop_after=args.stage)
    return {"stage": args.stage, "stages": run.stats, "exclusions": exclusion_summary(run.stats)}


def fetch_ranks(args: argparse.Namespace) -> Dict[str, Any]:
    cfg = _config_from_args(args)
    years = range(args.year_min or cfg.matching.year_min, (args.year_max or cfg.matching.year_max) + 1)
    return fetch_rank_tables(
        years,
        cfg.paths.rank_dir,
        url_template=cfg.ranks.url_template,
        timeout=cfg.ranks.timeout_seconds,
        force=args.force,
    )


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=None, help="Path to a runtime TOML (defaults to config/runtime.toml)")
    parser.add_argument("--rank-dir", default=None)
    parser.add_argument("--seed", type=int, default=None, help="Seed for both stratum sampling and id permutation")
    parser.add_argument("--sample-size", type=int, default=None, help="Controls drawn per treated article")
    parser.add_argument("--debug", action="store_true")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Build the CEM control sample for retracted vs. non-retracted articles")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_all = sub.add_parser("run-all", help="Load inputs, match, assemble and write the anonymized table")
    _add_common_args(p_all)
    p_all.add_argument("--out", default=None, help="Output CSV path")
    p_all.add_argument("--no-mapping", action="store_true", help="Skip the private control->treated mapping file")
    p_all.add_argument("--dry-run", action="store_true")
    p_all.set_defaults(func=run_all)

    p_run = sub.add_parser("run", help="Run the pipeline up to one stage and print its counts")
    _add_common_args(p_run)
    p_run.add_argument("--stage", required=True, choices=list(STAGES))
    p_run.set_defaults(func=run_stage)

    p_fetch = sub.add_parser("fetch-ranks", help="Download yearly SCImago journal rank tables")
    _add_common_args(p_fetch)
    p_fetch.add_argument("--year-min", type=int, default=None)
    p_fetch.add_argument("--year-max", type=int, default=None)
    p_fetch.add_argument("--force", action="store_true", help="Re-download years already on disk")
    p_fetch.set_defaults(func=fetch_ranks)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "debug", False):
        set_package_level("DEBUG")

    out = args.func(args)
    print(json.dumps(out, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
