from __future__ import annotations

import hashlib
from collections.abc import Sequence

"""Row fingerprinting for change detection.

The hash is taken over the raw cell text, before normalization, so any edit
to the sheet is seen as a change even when two spellings parse to the same
value ("100" vs "100.0").
"""

__all__ = [
    "CELL_SEPARATOR",
    "compute_row_hash",
]

# ASCII unit separator; does not occur in sheet cell text
CELL_SEPARATOR = "\x1f"


def compute_row_hash(row: Sequence[str | None]) -> str:
    """SHA-256 hex digest of the row's cells; a None cell hashes like an empty one."""
    content = CELL_SEPARATOR.join("" if cell is None else cell for cell in row)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
