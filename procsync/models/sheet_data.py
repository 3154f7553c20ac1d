from __future__ import annotations

from dataclasses import dataclass, field

__all__ = [
    "SheetData",
]


@dataclass(frozen=True)
class SheetData:
    """Raw sheet contents as returned by a sheet source.

    ``headers`` is the first sheet row, ``rows`` every row after it. Rows may
    be ragged: the Sheets API drops trailing empty cells.
    """
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.headers and not self.rows
