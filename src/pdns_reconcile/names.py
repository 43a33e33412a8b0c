"""DNS name normalisation and label grammar."""

from __future__ import annotations

import re

MAX_NAME_LENGTH = 253

LABEL_PATTERN = re.compile(r"(?!-)[a-z0-9_-]{1,63}(?<!-)")
NUMERIC_PATTERN = re.compile(r"[0-9]+")


def ensure_absolute(name: str) -> str:
    """Return a fully qualified name with a trailing dot."""
    stripped = name.strip()
    if stripped in {"", "@", "."}:
        return "."
    return stripped if stripped.endswith(".") else f"{stripped}."


def normalise_name(name: str) -> str:
    """Return the canonical (lower-case, absolute) form of a name."""
    return ensure_absolute(name).lower()


def qualify(name: str, origin: str) -> str:
    """Qualify a possibly relative name against the zone origin.

    Names ending in a dot are taken as absolute. Names that already end with
    the origin are only made absolute, everything else is treated as relative
    to the origin.
    """
    origin = normalise_name(origin)
    stripped = name.strip().lower()
    if stripped in {"", "@"}:
        return origin
    if stripped.endswith("."):
        return stripped
    bare_origin = origin.rstrip(".")
    if stripped == bare_origin or stripped.endswith(f".{bare_origin}"):
        return f"{stripped}."
    return f"{stripped}.{origin}"


def is_valid_label(label: str) -> bool:
    """Return True when label satisfies DNS label syntax (1-63 chars, no edge hyphens)."""
    return bool(LABEL_PATTERN.fullmatch(label.lower()))


def hostname_errors(name: str, allow_wildcard: bool = False) -> list[str]:
    """Return the reasons why name is not a valid absolute hostname."""
    if name == ".":
        return []
    bare = name[:-1] if name.endswith(".") else name
    if len(bare) > MAX_NAME_LENGTH:
        return [f"name '{name}' exceeds {MAX_NAME_LENGTH} characters"]
    labels = bare.split(".")
    errors = []
    for position, label in enumerate(labels):
        if allow_wildcard and position == 0 and label == "*":
            continue
        if not is_valid_label(label):
            errors.append(f"invalid label '{label}' in '{name}'")
    if len(labels) > 1 and NUMERIC_PATTERN.fullmatch(labels[-1]):
        errors.append(f"top-level label of '{name}' must not be numeric")
    return errors


def is_valid_hostname(name: str, allow_wildcard: bool = False) -> bool:
    return not hostname_errors(name, allow_wildcard=allow_wildcard)


def in_zone(name: str, origin: str) -> bool:
    """Return True if name is the origin or below it."""
    origin = normalise_name(origin)
    name = normalise_name(name)
    return name == origin or name.endswith(f".{origin}")
