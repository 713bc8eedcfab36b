from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from ..errors import InputFileError


def _normalize_field_name(name: Optional[str]) -> str:
    return (name or "").replace("\ufeff", "").strip().strip('"').strip()


def read_csv_rows(
    path: Union[str, Path],
    *,
    required_columns: Iterable[str] = (),
    delimiter: str = ",",
) -> List[Dict[str, str]]:
    """
    Read a delimited file into a list of dicts keyed by cleaned header names.

    Raises InputFileError when the file is missing or lacks a required column.
    """
    fp = Path(path).expanduser()
    if not fp.exists():
        raise InputFileError(fp, "input file not found")

    with fp.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.reader(handle, delimiter=delimiter)
        try:
            header = next(reader)
        except StopIteration:
            header = []
        fields = [_normalize_field_name(h) for h in header]
        missing = set(required_columns) - set(fields)
        if missing:
            raise InputFileError(fp, "required columns absent", missing_columns=missing)

        rows: List[Dict[str, str]] = []
        for raw in reader:
            if not any((cell or "").strip() for cell in raw):
                continue
            rows.append({name: (raw[i] if i < len(raw) else "") for i, name in enumerate(fields)})
    return rows


def write_csv_rows(path: Union[str, Path], fieldnames: List[str], rows: Iterable[Dict[str, object]]) -> int:
    fp = Path(path).expanduser()
    fp.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with fp.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=fieldnames, lineterminator="\n", extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
            count += 1
    return count
