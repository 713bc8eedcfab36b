from __future__ import annotations

from typing import Tuple

# (year, ordered domain labels, journal-rank percentile)
Stratum = Tuple[int, Tuple[str, ...], int]


def stratum_key(year: int, domain: Tuple[str, ...], percentile: int) -> Stratum:
    return (int(year), tuple(domain), int(percentile))
