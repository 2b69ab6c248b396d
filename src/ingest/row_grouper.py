"""Row grouping by natural key.

Groups keep first-seen order and row order within a group, since field
mapping relies on first-row and last-row positions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from core.types import RowGroup, TypedRow


@dataclass(frozen=True)
class GroupingResult:
    """Groups plus rows dropped for lacking a grouping key."""

    groups: tuple[RowGroup, ...]
    missing_key_rows: tuple[TypedRow, ...] = ()


def group_rows(rows: Iterable[TypedRow], group_key_field: str) -> GroupingResult:
    """Partition typed rows by the value of the grouping field.

    Args:
        rows: Typed rows in file order.
        group_key_field: Field holding the grouping key.

    Returns:
        Groups in first-seen order and the rows with a blank key.
    """
    grouped: dict[str, list[TypedRow]] = {}
    missing_key_rows: list[TypedRow] = []
    for row in rows:
        group_key = row.values.get(group_key_field, "").strip()
        if not group_key:
            missing_key_rows.append(row)
            continue
        grouped.setdefault(group_key, []).append(row)
    groups = tuple(
        RowGroup(group_key=group_key, rows=tuple(members))
        for group_key, members in grouped.items()
    )
    return GroupingResult(groups=groups, missing_key_rows=tuple(missing_key_rows))
