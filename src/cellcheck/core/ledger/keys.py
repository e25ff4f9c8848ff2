from __future__ import annotations


def cell_key(row_index: int, column_id: str) -> str:
    return f"{row_index}-{column_id}"


def parse_cell_key(key: str) -> tuple[int, str]:
    # Column ids may themselves contain "-", row indexes never do.
    row_part, sep, column_id = key.partition("-")
    if not sep or not row_part.isdigit():
        raise ValueError(f"invalid cell key: {key!r}")
    return int(row_part), column_id
