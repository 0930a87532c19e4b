"""
Label reconciliation.

Labels reach us in two legacy shapes (a JSON array or a comma-joined
string). They are parsed once at the boundary, handled as a list, and always
written back as a JSON array. is_read / is_starred are projections of the
label list and are only ever recomputed here.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional, Union

if TYPE_CHECKING:
    from accountsync.models.email import EmailRecord


UNREAD = "UNREAD"
STARRED = "STARRED"
TRASH = "TRASH"


class LabelEncoding(str, Enum):
    JSON = "json"
    CSV = "csv"


LabelValue = Union[str, Iterable[str], None]


def parse_labels(value: LabelValue) -> tuple[list[str], LabelEncoding]:
    """Parse either legacy encoding into a de-duplicated list."""
    if value is None:
        return [], LabelEncoding.JSON
    if not isinstance(value, str):
        return _dedupe(str(v) for v in value), LabelEncoding.JSON

    text = value.strip()
    if not text:
        return [], LabelEncoding.JSON
    if text.startswith("["):
        try:
            decoded = json.loads(text)
        except ValueError:
            # Half-written array; strip the brackets and read it as csv
            text = text.strip("[]")
        else:
            if isinstance(decoded, list):
                return _dedupe(str(v) for v in decoded), LabelEncoding.JSON
    parts = (part.strip().strip('"') for part in text.split(","))
    return _dedupe(p for p in parts if p), LabelEncoding.CSV


def serialize_labels(labels: Iterable[str]) -> str:
    """Canonical on-disk form: a compact JSON array."""
    return json.dumps(list(labels), separators=(",", ":"))


def derive_flags(labels: Iterable[str]) -> tuple[bool, bool]:
    """(is_read, is_starred) for a label list."""
    labels = set(labels)
    return UNREAD not in labels, STARRED in labels


def apply_label_delta(
    record: "EmailRecord",
    add_labels: Iterable[str] = (),
    remove_labels: Iterable[str] = (),
) -> "EmailRecord":
    """
    Return a copy of `record` with the delta applied and flags recomputed.

    Pure: the input record is not modified. Applying the same delta twice
    gives the same result as applying it once.
    """
    current, _ = parse_labels(record.labels)
    remove = set(remove_labels)
    merged = list(current)
    for label in add_labels:
        if label not in merged:
            merged.append(label)
    merged = [label for label in merged if label not in remove]
    is_read, is_starred = derive_flags(merged)
    return record.model_copy(update={"labels": merged, "is_read": is_read, "is_starred": is_starred})


def replace_labels(record: "EmailRecord", labels: LabelValue) -> "EmailRecord":
    """Move a record to an exact label set via the equivalent delta."""
    target, _ = parse_labels(labels)
    current, _ = parse_labels(record.labels)
    add = [label for label in target if label not in current]
    remove = [label for label in current if label not in target]
    updated = apply_label_delta(record, add, remove)
    # Keep the provider's ordering for the final list
    return updated.model_copy(update={"labels": target})


def read_delta(is_read: bool) -> tuple[list[str], list[str]]:
    """(add, remove) that marks a message read or unread."""
    return ([], [UNREAD]) if is_read else ([UNREAD], [])


def star_delta(is_starred: bool) -> tuple[list[str], list[str]]:
    """(add, remove) that stars or unstars a message."""
    return ([STARRED], []) if is_starred else ([], [STARRED])


def fold_flags(
    add_labels: Optional[Iterable[str]] = None,
    remove_labels: Optional[Iterable[str]] = None,
    mark_read: bool = False,
    mark_unread: bool = False,
    star: bool = False,
    unstar: bool = False,
) -> tuple[list[str], list[str]]:
    """Merge the boolean shortcuts of a batch request into one label delta."""
    add = list(add_labels or [])
    remove = list(remove_labels or [])
    for flag, (extra_add, extra_remove) in (
        (mark_read, read_delta(True)),
        (mark_unread, read_delta(False)),
        (star, star_delta(True)),
        (unstar, star_delta(False)),
    ):
        if flag:
            add.extend(extra_add)
            remove.extend(extra_remove)
    return _dedupe(add), _dedupe(remove)


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen
