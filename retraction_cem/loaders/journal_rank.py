from __future__ import annotations

import math
from bisect import bisect_left
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import requests

from ..logging_setup import get_logger, with_extras
from ..normalize import clean_text, normalize_journal_title, parse_year
from .csv_io import read_csv_rows

logger = get_logger(__name__)

RANK_COLUMNS = ("Title", "Rank", "SJR")
PERCENTILE_BINS = 100
RANK_FILE_GLOB = "*.csv"
RANK_FILE_NAME = "scimagojr {year}.csv"


def _info(msg: str, **extras: Any) -> None:
    if extras:
        with_extras(logger, **extras).info(msg)
    else:
        logger.info(msg)


def _warn(msg: str, **extras: Any) -> None:
    if extras:
        with_extras(logger, **extras).warning(msg)
    else:
        logger.warning(msg)


@dataclass(frozen=True)
class JournalRankRecord:
    journal_title: str
    year: int
    percentile: int


@dataclass
class RankLoadStats:
    files: int = 0
    rows: int = 0
    skipped_rows: int = 0
    ambiguous_groups: int = 0
    ambiguous_rows: int = 0
    entries: int = 0
    years: List[int] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "files": self.files,
            "rows": self.rows,
            "skipped_rows": self.skipped_rows,
            "ambiguous_groups": self.ambiguous_groups,
            "ambiguous_rows": self.ambiguous_rows,
            "entries": self.entries,
            "years": list(self.years),
        }


class JournalRankTable:
    """Lookup of (normalized journal title, year) -> rank percentile."""

    def __init__(self, records: Iterable[JournalRankRecord]) -> None:
        self._by_key: Dict[Tuple[str, int], int] = {}
        self._titles_by_year: Dict[int, List[str]] = defaultdict(list)
        for rec in records:
            key = (rec.journal_title, rec.year)
            if key in self._by_key:
                raise ValueError(f"duplicate journal rank entry for {key!r}")
            self._by_key[key] = rec.percentile
            self._titles_by_year[rec.year].append(rec.journal_title)

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def percentile(self, journal_title: Optional[str], year: Optional[int]) -> Optional[int]:
        if not journal_title or year is None:
            return None
        return self._by_key.get((journal_title, year))

    def titles_for_year(self, year: int) -> List[str]:
        return list(self._titles_by_year.get(year, []))


def _quantile(sorted_values: Sequence[float], q: float) -> float:
    pos = (len(sorted_values) - 1) * q
    lo = math.floor(pos)
    hi = math.ceil(pos)
    if lo == hi:
        return sorted_values[lo]
    return sorted_values[lo] + (sorted_values[hi] - sorted_values[lo]) * (pos - lo)


def rank_percentiles(ranks: Sequence[float], bins: int = PERCENTILE_BINS) -> List[int]:
    """
    Bin ranks into `bins` equal-frequency buckets labelled 1..bins.

    Bucket edges are linearly interpolated quantiles of the ranks; bucket k
    covers (edge[k-1], edge[k]] with the lowest rank included in bucket 1, so
    the best-ranked journals (lowest Rank) land in percentile 1.
    """
    if not ranks:
        return []
    ordered = sorted(ranks)
    edges = [_quantile(ordered, k / bins) for k in range(bins + 1)]
    return [min(bisect_left(edges, r, 1), bins) for r in ranks]


def year_from_filename(path: Union[str, Path]) -> Optional[int]:
    return parse_year(Path(path).stem)


def _parse_rank(value: Any) -> Optional[float]:
    text = clean_text(value)
    if text is None:
        return None
    try:
        rank = float(text.replace(",", "."))
    except ValueError:
        return None
    return rank if math.isfinite(rank) else None


def _load_rank_file(path: Path, year: int, delimiter: str, stats: RankLoadStats) -> List[JournalRankRecord]:
    rows = read_csv_rows(path, required_columns=RANK_COLUMNS, delimiter=delimiter)
    stats.rows += len(rows)
    titles: List[str] = []
    ranks: List[float] = []
    for row in rows:
        title = normalize_journal_title(clean_text(row.get("Title")))
        rank = _parse_rank(row.get("Rank"))
        if not title or rank is None:
            stats.skipped_rows += 1
            continue
        titles.append(title)
        ranks.append(rank)
    percentiles = rank_percentiles(ranks)
    return [JournalRankRecord(journal_title=t, year=year, percentile=p) for t, p in zip(titles, percentiles)]


def dedupe_rank_records(records: Iterable[JournalRankRecord], stats: Optional[RankLoadStats] = None) -> List[JournalRankRecord]:
    """Drop every (title, year) group with more than one row; order of survivors is kept."""
    records = list(records)
    counts: Dict[Tuple[str, int], int] = defaultdict(int)
    for rec in records:
        counts[(rec.journal_title, rec.year)] += 1
    ambiguous = {key for key, n in counts.items() if n > 1}
    if stats is not None:
        stats.ambiguous_groups += len(ambiguous)
        stats.ambiguous_rows += sum(counts[key] for key in ambiguous)
    return [rec for rec in records if (rec.journal_title, rec.year) not in ambiguous]


def load_journal_ranks(
    rank_dir: Union[str, Path],
    *,
    delimiter: str = ";",
    years: Optional[Iterable[int]] = None,
) -> Tuple[JournalRankTable, RankLoadStats]:
    """
    Load every yearly rank file in `rank_dir` into a JournalRankTable.

    The year comes from the file name. Percentiles are computed per file and
    ambiguous (title, year) groups are removed only after all files are read.
    """
    directory = Path(rank_dir).expanduser()
    wanted = set(years) if years is not None else None
    stats = RankLoadStats()
    records: List[JournalRankRecord] = []

    for path in sorted(directory.glob(RANK_FILE_GLOB)):
        year = year_from_filename(path)
        if year is None:
            _warn("rank file name has no year; skipping", path=str(path))
            continue
        if wanted is not None and year not in wanted:
            continue
        stats.files += 1
        if year not in stats.years:
            stats.years.append(year)
        records.extend(_load_rank_file(path, year, delimiter, stats))

    if stats.files == 0:
        _warn("no journal rank files found", rank_dir=str(directory))

    deduped = dedupe_rank_records(records, stats)
    stats.entries = len(deduped)
    stats.years.sort()
    if stats.ambiguous_groups:
        _warn(
            "dropped ambiguous journal rank groups",
            groups=stats.ambiguous_groups,
            rows=stats.ambiguous_rows,
        )
    _info("journal ranks loaded", **stats.as_dict())
    return JournalRankTable(deduped), stats


def _download_rank_file(url: str, path: Path, timeout: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with requests.get(url, stream=True, timeout=(20, timeout)) as resp:
            resp.raise_for_status()
            with tmp_path.open("wb") as handle:
                for chunk in resp.iter_content(chunk_size=1024 * 1024):
                    if chunk:
                        handle.write(chunk)
        tmp_path.replace(path)
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass


def fetch_rank_tables(
    years: Iterable[int],
    rank_dir: Union[str, Path],
    *,
    url_template: str,
    timeout: int = 120,
    force: bool = False,
) -> Dict[str, Any]:
    """Download missing yearly SCImago rank tables into `rank_dir`."""
    directory = Path(rank_dir).expanduser()
    downloaded: List[int] = []
    skipped: List[int] = []
    for year in sorted(set(years)):
        path = directory / RANK_FILE_NAME.format(year=year)
        if path.exists() and not force:
            skipped.append(year)
            continue
        url = url_template.format(year=year)
        _info("downloading journal rank table", year=year, url=url)
        _download_rank_file(url, path, timeout)
        downloaded.append(year)
    return {"stage": "fetch-ranks", "downloaded": downloaded, "skipped_existing": skipped, "rank_dir": str(directory)}
