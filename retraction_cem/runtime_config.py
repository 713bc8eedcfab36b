from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
import logging
import os
import tomllib

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "CEM_RUNTIME_CONFIG"
_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "runtime.toml"


@dataclass(frozen=True)
class PathsConfig:
    rank_dir: str
    metadata_csv: str
    retractions_csv: str
    mentions_csv: str
    taxonomy_csv: str
    output_csv: str
    mapping_csv: Optional[str]
    summary_json: Optional[str]


@dataclass(frozen=True)
class MatchingConfig:
    sample_size: int
    seed: int
    year_min: int
    year_max: int
    control_reason_label: str


@dataclass(frozen=True)
class RanksConfig:
    delimiter: str
    url_template: str
    timeout_seconds: int


@dataclass(frozen=True)
class RuntimeConfig:
    paths: PathsConfig
    matching: MatchingConfig
    ranks: RanksConfig


def _default_config() -> RuntimeConfig:
    return RuntimeConfig(
        paths=PathsConfig(
            rank_dir="data/journal_ranks",
            metadata_csv="data/metadata.csv",
            retractions_csv="data/retractions.csv",
            mentions_csv="data/software_mentions.csv",
            taxonomy_csv="data/reason_taxonomy.csv",
            output_csv="out/matched_software_mentions.csv",
            mapping_csv=None,
            summary_json=None,
        ),
        matching=MatchingConfig(
            sample_size=10,
            seed=42,
            year_min=2000,
            year_max=2019,
            control_reason_label="non-retracted",
        ),
        ranks=RanksConfig(
            delimiter=";",
            url_template="https://www.scimagojr.com/journalrank.php?year={year}&out=xls",
            timeout_seconds=120,
        ),
    )


def _safe_int(value: Any, fallback: int) -> int:
    try:
        parsed = int(value)
        return parsed if parsed > 0 else fallback
    except Exception:
        return fallback


def _str_field(d: dict, key: str, default: str) -> str:
    val = d.get(key, default)
    if not isinstance(val, str) or not val.strip():
        return default
    return val.strip()


def _optional_str_field(d: dict, key: str, default: Optional[str]) -> Optional[str]:
    val = d.get(key, default)
    if isinstance(val, str):
        return val.strip() or None
    return default


def _section(raw: Any, name: str) -> dict:
    section = raw.get(name) if isinstance(raw, dict) else {}
    return section if isinstance(section, dict) else {}


def resolve_config_path(config_path: Optional[Path] = None) -> Path:
    if config_path:
        return Path(config_path)
    env_path = (os.environ.get(CONFIG_PATH_ENV) or "").strip()
    if env_path:
        return Path(env_path).expanduser()
    return _DEFAULT_CONFIG_PATH


def load_runtime_config(config_path: Optional[Path] = None) -> RuntimeConfig:
    cfg = _default_config()
    path = resolve_config_path(config_path)
    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        logger.warning("Runtime config file not found; using defaults", extra={"path": str(path)})
        return cfg
    except tomllib.TOMLDecodeError:
        logger.exception("Runtime config parse failed; using defaults", extra={"path": str(path)})
        return cfg

    paths_raw = _section(raw, "paths")
    matching_raw = _section(raw, "matching")
    ranks_raw = _section(raw, "ranks")

    paths = PathsConfig(
        rank_dir=_str_field(paths_raw, "rank_dir", cfg.paths.rank_dir),
        metadata_csv=_str_field(paths_raw, "metadata_csv", cfg.paths.metadata_csv),
        retractions_csv=_str_field(paths_raw, "retractions_csv", cfg.paths.retractions_csv),
        mentions_csv=_str_field(paths_raw, "mentions_csv", cfg.paths.mentions_csv),
        taxonomy_csv=_str_field(paths_raw, "taxonomy_csv", cfg.paths.taxonomy_csv),
        output_csv=_str_field(paths_raw, "output_csv", cfg.paths.output_csv),
        mapping_csv=_optional_str_field(paths_raw, "mapping_csv", cfg.paths.mapping_csv),
        summary_json=_optional_str_field(paths_raw, "summary_json", cfg.paths.summary_json),
    )

    year_min = _safe_int(matching_raw.get("year_min", cfg.matching.year_min), cfg.matching.year_min)
    year_max = _safe_int(matching_raw.get("year_max", cfg.matching.year_max), cfg.matching.year_max)
    if year_min > year_max:
        logger.warning(
            "year_min after year_max; using default year range",
            extra={"year_min": year_min, "year_max": year_max},
        )
        year_min, year_max = cfg.matching.year_min, cfg.matching.year_max

    # seed 0 is a legitimate seed, so it is not run through _safe_int
    seed = matching_raw.get("seed", cfg.matching.seed)
    if isinstance(seed, bool) or not isinstance(seed, int) or seed < 0:
        seed = cfg.matching.seed

    matching = MatchingConfig(
        sample_size=_safe_int(matching_raw.get("sample_size", cfg.matching.sample_size), cfg.matching.sample_size),
        seed=seed,
        year_min=year_min,
        year_max=year_max,
        control_reason_label=_str_field(matching_raw, "control_reason_label", cfg.matching.control_reason_label),
    )

    delimiter = ranks_raw.get("delimiter", cfg.ranks.delimiter)
    if not isinstance(delimiter, str) or len(delimiter) != 1:
        delimiter = cfg.ranks.delimiter
    url_template = _str_field(ranks_raw, "url_template", cfg.ranks.url_template)
    if "{year}" not in url_template:
        url_template = cfg.ranks.url_template

    ranks = RanksConfig(
        delimiter=delimiter,
        url_template=url_template,
        timeout_seconds=_safe_int(ranks_raw.get("timeout_seconds", cfg.ranks.timeout_seconds), cfg.ranks.timeout_seconds),
    )

    return RuntimeConfig(paths=paths, matching=matching, ranks=ranks)


RUNTIME_CONFIG = load_runtime_config()
