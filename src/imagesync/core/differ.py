"""Diffing of source and destination listings by filename."""

from typing import Dict, Iterable

from ..api_clients.base import SourceEntry, DestinationEntry
from .models import ReconciliationPlan


def diff(source: Iterable[SourceEntry], destination: Iterable[DestinationEntry]) -> ReconciliationPlan:
    """Compute which images to upload and which destination files to delete.

    Matching is by filename only. When the destination lists the same name
    twice, the later entry wins the match and the earlier one is neither
    matched nor deleted. Both lists are always computed; callers that must
    not delete drop ``to_delete`` themselves.
    """
    remaining: Dict[str, DestinationEntry] = {}
    for entry in destination:
        remaining[entry.name] = entry

    plan = ReconciliationPlan()
    for entry in source:
        if entry.name not in remaining:
            plan.to_upload.append(entry)
        # accounted for, whether it was present or not
        remaining.pop(entry.name, None)

    plan.to_delete.extend(remaining.values())
    return plan
