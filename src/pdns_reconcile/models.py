"""Core data models used by pdns-reconcile."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterator, Mapping

if TYPE_CHECKING:
    from .content import Content

MAX_TTL = 2**31 - 1


class RecordType(str, Enum):
    """Record types the reconciler understands."""

    A = "A"
    AAAA = "AAAA"
    CNAME = "CNAME"
    MX = "MX"
    TXT = "TXT"
    SRV = "SRV"
    NS = "NS"
    PTR = "PTR"
    URI = "URI"
    CAA = "CAA"
    SOA = "SOA"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> RecordType:
        """Return the enum member for a (case-insensitive) type name."""
        try:
            return cls(value.strip().upper())
        except ValueError as exc:
            raise ValueError(f"unsupported record type '{value}'") from exc


RRSetKey = tuple[str, RecordType]


@dataclass(frozen=True)
class ResourceRecord:
    """A single content value inside an RRSet."""

    content: Content
    disabled: bool = False

    def to_api(self) -> dict[str, str | bool]:
        """Return the PowerDNS wire representation."""
        return {"content": self.content.to_text(), "disabled": self.disabled}


@dataclass(frozen=True)
class RRSet:
    """All records sharing one owner name and type."""

    name: str
    type: RecordType
    ttl: int
    records: frozenset[ResourceRecord]

    @property
    def key(self) -> RRSetKey:
        return (self.name, self.type)

    def sorted_records(self) -> list[ResourceRecord]:
        """Return records in a stable order for output and requests."""
        return sorted(self.records, key=lambda record: (record.content.to_text(), record.disabled))

    def values(self) -> list[str]:
        """Return the wire text of each record."""
        return [record.content.to_text() for record in self.sorted_records()]


@dataclass(frozen=True)
class Zone:
    """Represents the full state of a DNS zone, keyed by RRSet identity."""

    name: str
    rrsets: Mapping[RRSetKey, RRSet] = field(default_factory=dict)

    @classmethod
    def from_rrsets(cls, name: str, rrsets: list[RRSet]) -> Zone:
        """Build a zone, rejecting duplicate keys."""
        index: dict[RRSetKey, RRSet] = {}
        for rrset in rrsets:
            if rrset.key in index:
                raise ValueError(f"duplicate RRSet {rrset.name}/{rrset.type} in zone {name}")
            index[rrset.key] = rrset
        return cls(name=name, rrsets=index)

    def __iter__(self) -> Iterator[RRSet]:
        for key in sorted(self.rrsets):
            yield self.rrsets[key]

    def __len__(self) -> int:
        return len(self.rrsets)

    def get(self, name: str, rtype: RecordType) -> RRSet | None:
        return self.rrsets.get((name, rtype))

    def without(self, predicate: Callable[[RRSet], bool]) -> Zone:
        """Return a copy of the zone dropping RRSets for which predicate is true."""
        kept = {key: rrset for key, rrset in self.rrsets.items() if not predicate(rrset)}
        return Zone(name=self.name, rrsets=kept)


class ZoneKind(str, Enum):
    """Replication kind of a hosted zone."""

    NATIVE = "Native"
    MASTER = "Master"
    SLAVE = "Slave"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ZoneTemplate:
    """Parameters for creating a new zone on the server.

    Names are expected in canonical absolute form; see
    :func:`pdns_reconcile.validation.build_zone_template`.
    """

    name: str
    nameservers: tuple[str, ...] = ()
    masters: tuple[str, ...] = ()
    kind: ZoneKind = ZoneKind.NATIVE
    hostmaster: str = "hostmaster"
    refresh: int = 3600
    retry: int = 1800
    expire: int = 604800
    negative_ttl: int = 600

    def soa_content(self, serial: int) -> str:
        primary = self.nameservers[0] if self.nameservers else self.name
        return (
            f"{primary} {self.hostmaster}.{self.name} {serial} "
            f"{self.refresh} {self.retry} {self.expire} {self.negative_ttl}"
        )

    def to_api(self, serial: int) -> dict:
        """Return the body of a zone creation request."""
        body: dict = {
            "name": self.name,
            "kind": str(self.kind),
            "masters": list(self.masters),
            "nameservers": list(self.nameservers),
        }
        if self.kind is not ZoneKind.SLAVE:
            body["rrsets"] = [
                {
                    "name": self.name,
                    "type": str(RecordType.SOA),
                    "ttl": self.refresh,
                    "records": [{"content": self.soa_content(serial), "disabled": False}],
                }
            ]
        return body


class ChangeAction(str, Enum):
    """Kind of RRSet-level change."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ChangeOp:
    """Represents a single RRSet-level change."""

    action: ChangeAction
    name: str
    type: RecordType
    before: RRSet | None = None
    after: RRSet | None = None

    @property
    def key(self) -> RRSetKey:
        return (self.name, self.type)

    def label(self) -> str:
        return f"{self.action} {self.name}/{self.type}"

    def to_patch(self) -> dict:
        """Return the PowerDNS PATCH entry for this change."""
        if self.action is ChangeAction.DELETE:
            return {"name": self.name, "type": str(self.type), "changetype": "DELETE"}
        if self.after is None:
            raise PdnsReconcileError(f"{self.label()} has no target RRSet")
        return {
            "name": self.name,
            "type": str(self.type),
            "ttl": self.after.ttl,
            "changetype": "REPLACE",
            "records": [record.to_api() for record in self.after.sorted_records()],
        }


class OpStatus(str, Enum):
    """Outcome of one change operation."""

    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"

    def __str__(self) -> str:
        return self.value


class Verdict(str, Enum):
    """Overall result of an apply run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"

    def __str__(self) -> str:
        return self.value


@dataclass
class OpOutcome:
    """Per-operation result reported by the executor."""

    op: ChangeOp
    status: OpStatus
    error: ApiError | None = None
    attempts: int = 0


@dataclass
class ReconciliationResult:
    """Outcome of applying a change set to one zone."""

    zone: str
    outcomes: list[OpOutcome] = field(default_factory=list)
    cancelled: bool = False

    def _with_status(self, status: OpStatus) -> list[OpOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is status]

    @property
    def applied(self) -> list[OpOutcome]:
        return self._with_status(OpStatus.APPLIED)

    @property
    def failed(self) -> list[OpOutcome]:
        return self._with_status(OpStatus.FAILED)

    @property
    def skipped(self) -> list[OpOutcome]:
        return self._with_status(OpStatus.SKIPPED)

    @property
    def verdict(self) -> Verdict:
        """Return SUCCESS when everything applied, FAILURE when nothing did."""
        if len(self.applied) == len(self.outcomes):
            return Verdict.SUCCESS
        if not self.applied:
            return Verdict.FAILURE
        return Verdict.PARTIAL


class PdnsReconcileError(Exception):
    """Base exception for pdns-reconcile."""


class ConfigError(PdnsReconcileError):
    """Raised when environment configuration is invalid."""


class LoadError(PdnsReconcileError):
    """Raised when the desired-state document cannot be parsed."""

    def __init__(self, message: str, line: int | None = None, column: int | None = None):
        self.line = line
        self.column = column
        if line is not None:
            location = f"line {line}" if column is None else f"line {line}, column {column}"
            message = f"{message} ({location})"
        super().__init__(message)


class ValidationError(PdnsReconcileError):
    """Raised when desired-state records are invalid."""

    def __init__(self, errors: str | list[str]):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class ApiErrorKind(str, Enum):
    """Classification of remote API failures."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    RATE_LIMITED = "rate_limited"
    CLIENT = "client"
    MALFORMED_RESPONSE = "malformed_response"
    ZONE_NOT_FOUND = "zone_not_found"

    def __str__(self) -> str:
        return self.value


class ApiError(PdnsReconcileError):
    """Raised when a PowerDNS API call fails."""

    transient = False

    def __init__(self, kind: ApiErrorKind, message: str, status_code: int | None = None):
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)


class TransientApiError(ApiError):
    """Failure worth retrying: network trouble, 5xx or rate limiting."""

    transient = True


class PermanentApiError(ApiError):
    """Failure the server will repeat for the same request."""


class ZoneNotFoundError(PermanentApiError):
    """Raised when the zone does not exist on the server."""

    def __init__(self, zone: str):
        super().__init__(ApiErrorKind.ZONE_NOT_FOUND, f"Zone {zone} not found", status_code=404)


class PartialApplyError(PdnsReconcileError):
    """Raised when some change operations could not be applied."""

    def __init__(self, result: ReconciliationResult):
        self.result = result
        super().__init__(
            f"{result.verdict} apply for {result.zone}: {len(result.applied)} applied, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
        )
