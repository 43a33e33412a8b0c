"""Diff utilities for DNS zones."""

from __future__ import annotations

from collections import Counter

from .models import ChangeAction, ChangeOp, Zone


def diff_zones(desired: Zone, current: Zone) -> list[ChangeOp]:
    """Produce the ordered RRSet changes turning current into desired.

    Creates and updates come first, deletes last, each group sorted by
    (name, type). Equal RRSets (same TTL, same records in any order) yield
    nothing.
    """
    upserts: list[ChangeOp] = []
    deletes: list[ChangeOp] = []
    keys = set(desired.rrsets) | set(current.rrsets)

    for key in sorted(keys):
        name, rtype = key
        wanted = desired.rrsets.get(key)
        existing = current.rrsets.get(key)
        if wanted is None:
            deletes.append(ChangeOp(ChangeAction.DELETE, name, rtype, before=existing))
        elif existing is None:
            upserts.append(ChangeOp(ChangeAction.CREATE, name, rtype, after=wanted))
        elif wanted != existing:
            upserts.append(ChangeOp(ChangeAction.UPDATE, name, rtype, before=existing, after=wanted))

    return upserts + deletes


def summarize(changes: list[ChangeOp]) -> dict[str, int]:
    """Return the number of changes per action."""
    counts = Counter(change.action for change in changes)
    return {str(action): counts.get(action, 0) for action in ChangeAction}
