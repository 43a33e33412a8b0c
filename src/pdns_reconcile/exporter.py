"""Utilities to serialise zone state into the desired-state format."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .models import RecordType, RRSet, Zone


def owner_for_zone(name: str, origin: str) -> str:
    """Return the owner label relative to the provided origin."""
    if name == origin:
        return "@"
    suffix = f".{origin}"
    if name.endswith(suffix):
        return name[: -len(suffix)]
    return name


def _rrset_entries(rrset: RRSet, origin: str) -> list[dict[str, Any]]:
    """Convert an RRSet into desired-state record entries.

    Enabled and disabled records of one RRSet become separate entries
    sharing the TTL, which the loader merges back together.
    """
    entries = []
    for disabled in (False, True):
        values = [record.content.to_data() for record in rrset.sorted_records() if record.disabled is disabled]
        if not values:
            continue
        entry: dict[str, Any] = {
            "name": owner_for_zone(rrset.name, origin),
            "type": str(rrset.type),
            "ttl": rrset.ttl,
            "content": values,
        }
        if disabled:
            entry["disabled"] = True
        entries.append(entry)
    return entries


def zone_to_dict(zone: Zone) -> dict[str, Any]:
    """Create a dictionary describing the zone."""
    records: list[dict[str, Any]] = []
    for rrset in zone:
        if rrset.type is RecordType.SOA:
            continue
        records.extend(_rrset_entries(rrset, zone.name))
    return {"zone": zone.name, "records": records}


def zone_to_yaml(zone: Zone) -> str:
    """Return YAML representation of a zone."""
    return yaml.safe_dump(zone_to_dict(zone), sort_keys=False)


def zone_to_json(zone: Zone) -> str:
    """Return JSON representation of a zone."""
    return json.dumps(zone_to_dict(zone), indent=2)


def write_zone_state(path: Path, content: str) -> None:
    """Write content to the given path, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
