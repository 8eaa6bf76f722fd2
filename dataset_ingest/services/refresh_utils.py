from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

ChangeType = Literal["added", "removed", "no change"]


@dataclass(frozen=True, slots=True)
class SyncChanges:
    previous_row_count: int
    current_row_count: int
    rows_changed: int
    headers_changed: bool
    change_type: ChangeType

    def to_payload(self) -> dict[str, object]:
        return {
            "previousRowCount": self.previous_row_count,
            "currentRowCount": self.current_row_count,
            "rowsChanged": self.rows_changed,
            "headersChanged": self.headers_changed,
            "changeType": self.change_type,
        }


def classify_change(previous_row_count: int, current_row_count: int) -> ChangeType:
    if current_row_count > previous_row_count:
        return "added"
    if current_row_count < previous_row_count:
        return "removed"
    return "no change"


def headers_changed(previous: Sequence[str], current: Sequence[str]) -> bool:
    # Order matters: a reordered header row is a schema change.
    return list(previous) != list(current)


def compute_changes(
    previous_headers: Sequence[str],
    previous_row_count: int,
    current_headers: Sequence[str],
    current_row_count: int,
    *,
    signed: bool = True,
) -> SyncChanges:
    """Summarize how a dataset moved between two syncs.

    ``rows_changed`` is ``current - previous`` when ``signed`` and the absolute
    difference otherwise; ``change_type`` is derived from the sign either way.
    """
    delta = current_row_count - previous_row_count
    return SyncChanges(
        previous_row_count=previous_row_count,
        current_row_count=current_row_count,
        rows_changed=delta if signed else abs(delta),
        headers_changed=headers_changed(previous_headers, current_headers),
        change_type=classify_change(previous_row_count, current_row_count),
    )
