"""Validation of desired records into canonical RRSets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .content import ContentError, parse_content
from .models import MAX_TTL, RecordType, ResourceRecord, RRSet, ValidationError, Zone, ZoneKind, ZoneTemplate
from .names import hostname_errors, in_zone, is_valid_label, normalise_name, qualify

SINGLETON_TYPES = {RecordType.CNAME}
SERVER_MANAGED_TYPES = {RecordType.SOA}


@dataclass(frozen=True)
class RecordInput:
    """A desired record as read from the desired-state document."""

    name: str
    type: str
    ttl: int
    content: Sequence[Any]
    disabled: bool = False
    location: str = "record"


def validate_ttl(ttl: Any) -> int:
    """Return ttl if it is an integer within [1, 2**31 - 1]."""
    if isinstance(ttl, bool) or not isinstance(ttl, int):
        raise ValidationError(f"ttl must be an integer, got {ttl!r}")
    if not 1 <= ttl <= MAX_TTL:
        raise ValidationError(f"ttl must be between 1 and {MAX_TTL}, got {ttl}")
    return ttl


def validate_name(name: str, origin: str) -> str:
    """Qualify and check an owner name against the zone origin."""
    owner = qualify(name, origin)
    errors = hostname_errors(owner, allow_wildcard=True)
    if errors:
        raise ValidationError(errors)
    if not in_zone(owner, origin):
        raise ValidationError(f"name '{owner}' is outside zone {normalise_name(origin)}")
    return owner


def validate_record(record: RecordInput, origin: str) -> RRSet | None:
    """Validate one desired record and return its RRSet.

    Returns None for a disabled entry without content, which declares the
    RRSet absent.
    """
    prefix = record.location
    try:
        rtype = RecordType.parse(record.type)
    except ValueError as exc:
        raise ValidationError(f"{prefix}.type: {exc}") from exc
    if rtype in SERVER_MANAGED_TYPES:
        raise ValidationError(f"{prefix}.type: {rtype} records are managed by the server")

    errors: list[str] = []
    owner = record.name
    try:
        owner = validate_name(record.name, origin)
    except ValidationError as exc:
        errors.extend(f"{prefix}.name: {message}" for message in exc.errors)
    try:
        validate_ttl(record.ttl)
    except ValidationError as exc:
        errors.extend(f"{prefix}.ttl: {message}" for message in exc.errors)

    records: set[ResourceRecord] = set()
    for index, value in enumerate(record.content):
        try:
            content = parse_content(rtype, value, origin)
        except ContentError as exc:
            errors.append(f"{prefix}.content.{index}: {exc}")
            continue
        records.add(ResourceRecord(content=content, disabled=record.disabled))

    if not record.content and not record.disabled:
        errors.append(f"{prefix}.content: at least one value is required unless disabled")
    if rtype in SINGLETON_TYPES and len(records) > 1:
        errors.append(f"{prefix}.content: {rtype} must have exactly one value")
    if errors:
        raise ValidationError(errors)
    if not records:
        return None
    return RRSet(name=owner, type=rtype, ttl=record.ttl, records=frozenset(records))


def merge_rrsets(rrsets: Iterable[RRSet]) -> list[RRSet]:
    """Merge RRSets sharing a key; TTLs must agree."""
    merged: dict[tuple[str, RecordType], RRSet] = {}
    errors: list[str] = []
    for rrset in rrsets:
        existing = merged.get(rrset.key)
        if existing is None:
            merged[rrset.key] = rrset
            continue
        if existing.ttl != rrset.ttl:
            errors.append(
                f"{rrset.name}/{rrset.type}: conflicting TTLs {existing.ttl} and {rrset.ttl} for one RRSet"
            )
            continue
        combined = existing.records | rrset.records
        conflicting = _conflicting_flags(combined)
        if conflicting:
            errors.extend(
                f"{rrset.name}/{rrset.type}: value '{text}' is listed both enabled and disabled"
                for text in conflicting
            )
            continue
        if rrset.type in SINGLETON_TYPES and len(combined) > 1:
            errors.append(f"{rrset.name}/{rrset.type}: {rrset.type} must have exactly one value")
            continue
        merged[rrset.key] = RRSet(name=rrset.name, type=rrset.type, ttl=rrset.ttl, records=combined)
    if errors:
        raise ValidationError(errors)
    return list(merged.values())


def _conflicting_flags(records: Iterable[ResourceRecord]) -> list[str]:
    """Return content values that appear with more than one disabled flag."""
    flags: dict[str, set[bool]] = {}
    for record in records:
        flags.setdefault(record.content.to_text(), set()).add(record.disabled)
    return sorted(text for text, seen in flags.items() if len(seen) > 1)


def build_zone(origin: str, records: Iterable[RecordInput]) -> Zone:
    """Validate every record and assemble the desired zone (all-or-nothing)."""
    origin = normalise_name(origin)
    errors: list[str] = []
    rrsets: list[RRSet] = []
    for record in records:
        try:
            rrset = validate_record(record, origin)
        except ValidationError as exc:
            errors.extend(exc.errors)
            continue
        if rrset is not None:
            rrsets.append(rrset)
    if errors:
        raise ValidationError(errors)
    merged = merge_rrsets(rrsets)
    _check_cname_exclusive(merged)
    return Zone.from_rrsets(origin, merged)


def build_zone_template(
    name: str,
    nameservers: Sequence[str] = (),
    masters: Sequence[str] = (),
    kind: str = "Native",
    hostmaster: str = "hostmaster",
    refresh: int = 3600,
    retry: int = 1800,
    expire: int = 604800,
    negative_ttl: int = 600,
) -> ZoneTemplate:
    """Validate the parameters of a zone to be created."""
    errors: list[str] = []
    origin = normalise_name(name)
    if origin == ".":
        errors.append("zone: a zone name is required")
    else:
        errors.extend(f"zone: {message}" for message in hostname_errors(origin))

    try:
        zone_kind = ZoneKind(kind.strip().capitalize())
    except ValueError:
        errors.append(f"kind: must be one of {', '.join(str(member) for member in ZoneKind)}, got '{kind}'")
        zone_kind = ZoneKind.NATIVE

    servers: list[str] = []
    for index, server in enumerate(nameservers):
        canonical = qualify(server, origin)
        problems = hostname_errors(canonical)
        errors.extend(f"nameservers.{index}: {message}" for message in problems)
        if not problems and canonical not in servers:
            servers.append(canonical)
    primaries = [master.strip() for master in masters if master.strip()]
    if zone_kind is ZoneKind.SLAVE and not primaries:
        errors.append("masters: a Slave zone needs at least one master")
    if zone_kind is not ZoneKind.SLAVE and not nameservers:
        errors.append(f"nameservers: a {zone_kind} zone needs at least one nameserver")
    if not is_valid_label(hostmaster):
        errors.append(f"hostmaster: '{hostmaster}' is not a valid label")

    for field_name, value in (
        ("refresh", refresh),
        ("retry", retry),
        ("expire", expire),
        ("negative_ttl", negative_ttl),
    ):
        try:
            validate_ttl(value)
        except ValidationError as exc:
            errors.extend(f"{field_name}: {message}" for message in exc.errors)

    if errors:
        raise ValidationError(errors)
    return ZoneTemplate(
        name=origin,
        nameservers=tuple(servers),
        masters=tuple(primaries),
        kind=zone_kind,
        hostmaster=hostmaster.lower(),
        refresh=refresh,
        retry=retry,
        expire=expire,
        negative_ttl=negative_ttl,
    )


def _check_cname_exclusive(rrsets: Sequence[RRSet]) -> None:
    """A name holding a CNAME may not hold any other type."""
    types_by_name: dict[str, set[RecordType]] = {}
    for rrset in rrsets:
        types_by_name.setdefault(rrset.name, set()).add(rrset.type)
    errors = [
        f"{name}: CNAME cannot coexist with {', '.join(sorted(str(rtype) for rtype in types - {RecordType.CNAME}))}"
        for name, types in sorted(types_by_name.items())
        if RecordType.CNAME in types and len(types) > 1
    ]
    if errors:
        raise ValidationError(errors)
