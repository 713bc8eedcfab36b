from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Union


class CemError(Exception):
    """Base class for errors that abort a matching run."""


class InputFileError(CemError):
    def __init__(self, path: Union[str, Path], message: str, missing_columns: Optional[Iterable[str]] = None) -> None:
        self.path = str(path)
        self.missing_columns = sorted(missing_columns or [])
        detail = f"{message}: {self.path}"
        if self.missing_columns:
            detail += f" (missing columns: {', '.join(self.missing_columns)})"
        super().__init__(detail)


class MatchInvariantError(CemError):
    """Raised when sampler output cannot be associated back to treated records."""
