"""Load and validate desired-state YAML/JSON documents."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

import pydantic
import yaml
from jinja2 import Environment, StrictUndefined, TemplateError
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import AppConfig
from .models import LoadError, ValidationError, Zone
from .names import ensure_absolute, hostname_errors, normalise_name
from .validation import RecordInput, build_zone

FORMATS = {"yaml", "json"}
EXTENSIONS = {".yaml": "yaml", ".yml": "yaml", ".json": "json"}

ContentValue = Union[str, int, float, dict[str, Any]]


class RecordSpec(BaseModel):
    """Schema for a desired DNS record."""

    model_config = ConfigDict(extra="forbid")

    name: str
    type: str
    ttl: int | None = Field(default=None, strict=True)
    content: list[ContentValue] = Field(default_factory=list)
    disabled: bool = False

    @field_validator("type")
    @classmethod
    def _uppercase_type(cls, value: str) -> str:
        """Normalise RR type to uppercase."""
        return value.strip().upper()

    @field_validator("content", mode="before")
    @classmethod
    def _wrap_scalar(cls, value: Any) -> Any:
        """Allow a single value in place of a one-element list."""
        if value is None:
            return []
        if isinstance(value, (str, int, float, dict)):
            return [value]
        return value


class ZoneSpec(BaseModel):
    """Schema for the desired-state document."""

    model_config = ConfigDict(extra="forbid")

    zone: str | None = None
    default_ttl: int | None = Field(default=None, ge=1)
    records: list[RecordSpec] = Field(default_factory=list)
    ignore: list[str] = Field(default_factory=list)


@dataclass
class DesiredZone:
    """Desired zone material produced from the document."""

    zone: Zone
    ignore: list[str] = field(default_factory=list)


def detect_format(path: Path, fmt: str | None = None) -> str:
    """Return the document format, explicit or from the file extension."""
    if fmt:
        if fmt not in FORMATS:
            raise LoadError(f"Unsupported format '{fmt}', expected yaml or json")
        return fmt
    return EXTENSIONS.get(path.suffix.lower(), "yaml")


def render_template(source: str, extra_context: dict[str, Any] | None = None) -> str:
    """Render the document through Jinja2."""
    env = Environment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )
    context: dict[str, Any] = {"env": os.environ}
    if extra_context:
        context.update(extra_context)
    try:
        return env.from_string(source).render(**context)
    except TemplateError as exc:
        raise LoadError(f"Failed to render template: {exc}", getattr(exc, "lineno", None)) from exc


def parse_document(text: str, fmt: str) -> Any:
    """Parse YAML or JSON text, reporting the offending location."""
    if fmt == "json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise LoadError(f"Failed to parse JSON: {exc.msg}", exc.lineno, exc.colno) from exc
    try:
        return yaml.safe_load(text)
    except yaml.MarkedYAMLError as exc:
        mark = exc.problem_mark or exc.context_mark
        line = mark.line + 1 if mark else None
        column = mark.column + 1 if mark else None
        raise LoadError(f"Failed to parse YAML: {exc.problem or exc.context}", line, column) from exc
    except yaml.YAMLError as exc:  # noqa: BLE001
        raise LoadError(f"Failed to parse YAML: {exc}") from exc


def _format_location(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc) or "document"


def _parse_spec(data: Any) -> ZoneSpec:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"document: expected a mapping at the top level, got {type(data).__name__}")
    try:
        return ZoneSpec(**data)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            [f"{_format_location(error['loc'])}: {error['msg']}" for error in exc.errors()]
        ) from exc


def _decode(source: bytes) -> str:
    try:
        return source.decode("utf-8")
    except UnicodeDecodeError as exc:
        line = source.count(b"\n", 0, exc.start) + 1
        column = exc.start - source.rfind(b"\n", 0, exc.start)
        raise LoadError(f"Desired state is not valid UTF-8 (byte offset {exc.start})", line, column) from exc


def load(
    source: bytes | str,
    fmt: str = "yaml",
    default_record_ttl: int = 3600,
    zone_hint: str | None = None,
    template_vars: dict[str, Any] | None = None,
) -> DesiredZone:
    """Turn a desired-state document into a validated zone."""
    text = _decode(source) if isinstance(source, bytes) else source
    rendered = render_template(text, template_vars)
    spec = _parse_spec(parse_document(rendered, fmt))

    origin = ensure_absolute(spec.zone or zone_hint or "")
    if origin == ".":
        raise ValidationError("zone: a zone name is required via the document 'zone' key or --zone")
    origin = normalise_name(origin)
    errors = hostname_errors(origin)
    if errors:
        raise ValidationError([f"zone: {message}" for message in errors])

    default_ttl = spec.default_ttl or default_record_ttl
    records = [
        RecordInput(
            name=record.name,
            type=record.type,
            ttl=record.ttl if record.ttl is not None else default_ttl,
            content=record.content,
            disabled=record.disabled,
            location=f"records.{index}",
        )
        for index, record in enumerate(spec.records)
    ]
    zone = build_zone(origin, records)
    return DesiredZone(zone=zone, ignore=spec.ignore)


def load_desired_zone(
    path: Path,
    config: AppConfig,
    zone_hint: str | None = None,
    template_vars: dict[str, Any] | None = None,
    fmt: str | None = None,
) -> DesiredZone:
    """Load a desired-state file and turn it into a zone."""
    try:
        source = path.read_bytes()
    except OSError as exc:
        raise LoadError(f"Cannot read {path}: {exc.strerror}") from exc
    return load(
        source,
        fmt=detect_format(path, fmt),
        default_record_ttl=config.default_record_ttl,
        zone_hint=zone_hint,
        template_vars=template_vars,
    )
