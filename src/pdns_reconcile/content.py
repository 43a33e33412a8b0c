"""Typed record content, one variant per record type.

Every variant validates itself on construction and knows how to render the
content string PowerDNS expects in ``records[].content``. Values coming from
the desired-state file go through :func:`parse_content`, values coming back
from the server through :func:`content_from_api`, which falls back to
:class:`RawContent` when the server holds something the strict grammar does
not accept.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Mapping
from urllib.parse import urlsplit

from .models import RecordType
from .names import hostname_errors, normalise_name, qualify

URI_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*$")
URI_FORBIDDEN_PATTERN = re.compile(r'[\s"<>\\{}|^`]')
TXT_WIRE_PATTERN = re.compile(r'^"(?:[^"\\]|\\.)*"(?:\s+"(?:[^"\\]|\\.)*")*$')
TXT_STRING_PATTERN = re.compile(r'"((?:[^"\\]|\\.)*)"')
TXT_ESCAPE_PATTERN = re.compile(r"\\([0-9]{3}|.)", re.DOTALL)
CAA_TAG_PATTERN = re.compile(r"^[a-z0-9]+$")
TXT_CHUNK = 255


class ContentError(ValueError):
    """Raised when a content value does not match its record type grammar."""


def _check_int(name: str, value: Any, upper: int) -> int:
    """Coerce value to an int within [0, upper]."""
    if isinstance(value, bool):
        raise ContentError(f"{name} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ContentError(f"{name} must be an integer, got {value!r}") from exc
    if not 0 <= number <= upper:
        raise ContentError(f"{name} must be between 0 and {upper}, got {number}")
    return number


def _check_hostname(name: str, value: Any) -> str:
    """Return the canonical absolute form of a hostname field."""
    if not isinstance(value, str) or not value.strip():
        raise ContentError(f"{name} must be a non-empty hostname")
    canonical = normalise_name(value)
    errors = hostname_errors(canonical)
    if errors:
        raise ContentError(f"{name}: {errors[0]}")
    return canonical


def _txt_string_bytes(chunk: str) -> int:
    """Return the wire length of one quoted TXT string body."""
    size = 0
    position = 0
    for match in TXT_ESCAPE_PATTERN.finditer(chunk):
        size += len(chunk[position : match.start()].encode("utf-8"))
        escaped = match.group(1)
        size += 1 if len(escaped) == 3 else len(escaped.encode("utf-8"))
        position = match.end()
    return size + len(chunk[position:].encode("utf-8"))


def _utf8_chunks(value: str) -> list[str]:
    """Split value into pieces of at most 255 UTF-8 bytes on character boundaries."""
    chunks: list[str] = []
    current: list[str] = []
    size = 0
    for char in value:
        width = len(char.encode("utf-8"))
        if size + width > TXT_CHUNK:
            chunks.append("".join(current))
            current, size = [], 0
        current.append(char)
        size += width
    chunks.append("".join(current))
    return chunks


def _split(text: str, count: int, rtype: RecordType) -> list[str]:
    parts = text.split(None, count - 1)
    if len(parts) != count:
        raise ContentError(f"{rtype} content '{text}' must have {count} fields")
    return parts


def _unquote(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        return text[1:-1]
    return text


def uri_errors(uri: str) -> list[str]:
    """Return the reasons why uri is not an absolute URI."""
    if not uri:
        return ["URI must not be empty"]
    if URI_FORBIDDEN_PATTERN.search(uri):
        return [f"URI '{uri}' contains whitespace or characters that must be escaped"]
    try:
        parts = urlsplit(uri)
    except ValueError as exc:
        return [f"URI '{uri}' does not parse: {exc}"]
    if not parts.scheme or not URI_SCHEME_PATTERN.match(parts.scheme):
        return [f"URI '{uri}' is not absolute (missing or invalid scheme)"]
    if parts.scheme.lower() in {"http", "https", "ftp", "ws", "wss"} and not parts.hostname:
        return [f"URI '{uri}' has no host"]
    if not (parts.netloc or parts.path):
        return [f"URI '{uri}' has nothing after the scheme"]
    return []


@dataclass(frozen=True)
class Content:
    """Base class for record content variants."""

    HOSTNAME_FIELDS: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> Content:
        """Build the variant from PowerDNS content text."""
        raise NotImplementedError

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], origin: str | None = None) -> Content:
        """Build the variant from a mapping of its field names."""
        names = [field.name for field in fields(cls)]
        unknown = sorted(set(data) - set(names))
        missing = [name for name in names if name not in data]
        if unknown:
            raise ContentError(f"unknown field(s) {', '.join(unknown)}; expected {', '.join(names)}")
        if missing:
            raise ContentError(f"missing field(s) {', '.join(missing)}")
        values = dict(data)
        for name in cls.HOSTNAME_FIELDS:
            values[name] = _qualify_target(values[name], origin)
        return cls(**values)

    def to_text(self) -> str:
        """Return the PowerDNS content string."""
        raise NotImplementedError

    def to_data(self) -> str | dict[str, Any]:
        """Return the value as written in a desired-state file."""
        return self.to_text()


def _qualify_target(value: Any, origin: str | None) -> Any:
    if not isinstance(value, str) or origin is None:
        return value
    return qualify(value, origin)


@dataclass(frozen=True)
class IPv4Content(Content):
    address: str

    def __post_init__(self) -> None:
        try:
            address = ipaddress.IPv4Address(str(self.address).strip())
        except ValueError as exc:
            raise ContentError(f"'{self.address}' is not an IPv4 address") from exc
        object.__setattr__(self, "address", str(address))

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> IPv4Content:
        return cls(address=text)

    def to_text(self) -> str:
        return self.address


@dataclass(frozen=True)
class IPv6Content(Content):
    address: str

    def __post_init__(self) -> None:
        try:
            address = ipaddress.IPv6Address(str(self.address).strip())
        except ValueError as exc:
            raise ContentError(f"'{self.address}' is not an IPv6 address") from exc
        object.__setattr__(self, "address", address.compressed)

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> IPv6Content:
        return cls(address=text)

    def to_text(self) -> str:
        return self.address


@dataclass(frozen=True)
class HostnameContent(Content):
    """Content that is a single target name (CNAME, NS, PTR)."""

    target: str
    HOSTNAME_FIELDS: ClassVar[tuple[str, ...]] = ("target",)

    def __post_init__(self) -> None:
        object.__setattr__(self, "target", _check_hostname("target", self.target))

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> HostnameContent:
        return cls(target=_qualify_target(text.strip(), origin))

    def to_text(self) -> str:
        return self.target


@dataclass(frozen=True)
class MXContent(Content):
    priority: int
    exchange: str
    HOSTNAME_FIELDS: ClassVar[tuple[str, ...]] = ("exchange",)

    def __post_init__(self) -> None:
        object.__setattr__(self, "priority", _check_int("priority", self.priority, 65535))
        object.__setattr__(self, "exchange", _check_hostname("exchange", self.exchange))

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> MXContent:
        priority, exchange = _split(text, 2, RecordType.MX)
        return cls(priority=priority, exchange=_qualify_target(exchange, origin))

    def to_text(self) -> str:
        return f"{self.priority} {self.exchange}"

    def to_data(self) -> dict[str, Any]:
        return {"priority": self.priority, "exchange": self.exchange}


@dataclass(frozen=True)
class SRVContent(Content):
    priority: int
    weight: int
    port: int
    target: str
    HOSTNAME_FIELDS: ClassVar[tuple[str, ...]] = ("target",)

    def __post_init__(self) -> None:
        for name in ("priority", "weight", "port"):
            object.__setattr__(self, name, _check_int(name, getattr(self, name), 65535))
        object.__setattr__(self, "target", _check_hostname("target", self.target))

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> SRVContent:
        priority, weight, port, target = _split(text, 4, RecordType.SRV)
        return cls(priority=priority, weight=weight, port=port, target=_qualify_target(target, origin))

    def to_text(self) -> str:
        return f"{self.priority} {self.weight} {self.port} {self.target}"

    def to_data(self) -> dict[str, Any]:
        return {"priority": self.priority, "weight": self.weight, "port": self.port, "target": self.target}


@dataclass(frozen=True)
class URIContent(Content):
    priority: int
    weight: int
    target: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "priority", _check_int("priority", self.priority, 65535))
        object.__setattr__(self, "weight", _check_int("weight", self.weight, 65535))
        if not isinstance(self.target, str):
            raise ContentError(f"target must be a URI string, got {self.target!r}")
        errors = uri_errors(self.target.strip())
        if errors:
            raise ContentError(errors[0])
        object.__setattr__(self, "target", self.target.strip())

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> URIContent:
        priority, weight, target = _split(text, 3, RecordType.URI)
        return cls(priority=priority, weight=weight, target=_unquote(target))

    def to_text(self) -> str:
        return f'{self.priority} {self.weight} "{self.target}"'

    def to_data(self) -> dict[str, Any]:
        return {"priority": self.priority, "weight": self.weight, "target": self.target}


@dataclass(frozen=True)
class CAAContent(Content):
    flags: int
    tag: str
    value: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "flags", _check_int("flags", self.flags, 255))
        tag = str(self.tag).strip().lower()
        if not CAA_TAG_PATTERN.match(tag):
            raise ContentError(f"CAA tag '{self.tag}' must be alphanumeric")
        object.__setattr__(self, "tag", tag)
        if '"' in str(self.value):
            raise ContentError("CAA value must not contain double quotes")
        object.__setattr__(self, "value", str(self.value))

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> CAAContent:
        flags, tag, value = _split(text, 3, RecordType.CAA)
        return cls(flags=flags, tag=tag, value=_unquote(value))

    def to_text(self) -> str:
        return f'{self.flags} {self.tag} "{self.value}"'

    def to_data(self) -> dict[str, Any]:
        return {"flags": self.flags, "tag": self.tag, "value": self.value}


@dataclass(frozen=True)
class TXTContent(Content):
    """TXT data held in its quoted wire form."""

    text: str

    def __post_init__(self) -> None:
        text = str(self.text).strip()
        if not TXT_WIRE_PATTERN.match(text):
            raise ContentError(f"TXT content {text!r} is not a sequence of quoted strings")
        for chunk in TXT_STRING_PATTERN.findall(text):
            size = _txt_string_bytes(chunk)
            if size > TXT_CHUNK:
                raise ContentError(f"TXT string of {size} bytes exceeds {TXT_CHUNK} bytes")
        object.__setattr__(self, "text", text)

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> TXTContent:
        """Accept already quoted wire text or quote a plain string."""
        stripped = text.strip()
        if stripped.startswith('"'):
            return cls(text=stripped)
        return cls.from_plain(text)

    @classmethod
    def from_plain(cls, value: str) -> TXTContent:
        """Quote a plain string, splitting its UTF-8 form into 255 byte chunks."""
        escaped = [chunk.replace("\\", "\\\\").replace('"', '\\"') for chunk in _utf8_chunks(value)]
        return cls(text=" ".join(f'"{chunk}"' for chunk in escaped))

    def to_text(self) -> str:
        return self.text


@dataclass(frozen=True)
class SOAContent(Content):
    mname: str
    rname: str
    serial: int
    refresh: int
    retry: int
    expire: int
    minimum: int

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> SOAContent:
        mname, rname, *numbers = _split(text, 7, RecordType.SOA)
        try:
            serial, refresh, retry, expire, minimum = (int(number) for number in numbers)
        except ValueError as exc:
            raise ContentError(f"SOA content '{text}' has non-numeric timers") from exc
        return cls(mname, rname, serial, refresh, retry, expire, minimum)

    def to_text(self) -> str:
        return (
            f"{self.mname} {self.rname} {self.serial} {self.refresh} "
            f"{self.retry} {self.expire} {self.minimum}"
        )


@dataclass(frozen=True)
class RawContent(Content):
    """Server content kept verbatim because it does not parse."""

    text: str

    @classmethod
    def parse(cls, text: str, origin: str | None = None) -> RawContent:
        return cls(text=text)

    def to_text(self) -> str:
        return self.text


CONTENT_TYPES: dict[RecordType, type[Content]] = {
    RecordType.A: IPv4Content,
    RecordType.AAAA: IPv6Content,
    RecordType.CNAME: HostnameContent,
    RecordType.NS: HostnameContent,
    RecordType.PTR: HostnameContent,
    RecordType.MX: MXContent,
    RecordType.SRV: SRVContent,
    RecordType.URI: URIContent,
    RecordType.CAA: CAAContent,
    RecordType.TXT: TXTContent,
    RecordType.SOA: SOAContent,
}


def parse_content(rtype: RecordType, value: Any, origin: str | None = None) -> Content:
    """Build the content variant for rtype from a desired-state value."""
    content_cls = CONTENT_TYPES[rtype]
    if isinstance(value, Mapping):
        return content_cls.from_mapping(value, origin)
    if isinstance(value, (list, tuple, set)) or value is None:
        raise ContentError(f"{rtype} content must be a string or mapping, got {value!r}")
    return content_cls.parse(str(value), origin)


def content_from_api(rtype: RecordType, text: str) -> Content:
    """Build content from a server value, keeping unparseable values verbatim."""
    try:
        return CONTENT_TYPES[rtype].parse(text)
    except ContentError:
        return RawContent(text=text)
