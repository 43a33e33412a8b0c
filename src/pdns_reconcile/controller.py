"""High-level orchestration for pdns-reconcile."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from .client import PowerDnsClient
from .config import AppConfig
from .diffing import diff_zones, summarize
from .executor import ApplyExecutor
from .loader import DesiredZone, load_desired_zone
from .models import (
    ChangeOp,
    ConfigError,
    PartialApplyError,
    RecordType,
    ReconciliationResult,
    RRSet,
    Verdict,
    Zone,
    ZoneTemplate,
)

LOG = logging.getLogger("pdns_reconcile")


@dataclass
class PlanResult:
    """Holds everything needed to apply a change."""

    desired: Zone
    current: Zone
    changes: list[ChangeOp]
    ignore: list[str] = field(default_factory=list)

    def has_changes(self) -> bool:
        """Return True when the plan contains at least one operation."""
        return bool(self.changes)


class ZoneController:
    """Coordinates plan/apply operations."""

    def __init__(self, config: AppConfig, transport: httpx.AsyncBaseTransport | None = None):
        """Store configuration for subsequent runs."""
        self.config = config
        self._transport = transport
        self.executor: ApplyExecutor | None = None

    def _client(self) -> PowerDnsClient:
        return PowerDnsClient(self.config, transport=self._transport)

    def plan(
        self,
        desired_path: Path,
        zone: str | None = None,
        template_vars: dict[str, Any] | None = None,
        fmt: str | None = None,
    ) -> PlanResult:
        """Compute the diff between the desired document and the current zone."""
        desired_zone = load_desired_zone(
            desired_path, self.config, zone_hint=zone, template_vars=template_vars, fmt=fmt
        )
        return asyncio.run(self.plan_zone(desired_zone))

    async def plan_zone(self, desired_zone: DesiredZone) -> PlanResult:
        """Fetch the remote zone once and diff it against the desired zone."""
        async with self._client() as client:
            await _require_authoritative(client)
            current = await client.fetch_zone(desired_zone.zone.name)
        desired = desired_zone.zone
        ignored = [rrset for rrset in desired if _is_ignored(rrset, desired_zone.ignore)]
        for rrset in ignored:
            LOG.warning("Desired %s/%s matches an ignore pattern and is not managed", rrset.name, rrset.type)
        changes = diff_zones(
            _filter_rrsets(desired, desired_zone.ignore),
            _filter_rrsets(current, desired_zone.ignore),
        )
        LOG.info("Planned %s for %s", summarize(changes), desired_zone.zone.name)
        return PlanResult(
            desired=desired_zone.zone,
            current=current,
            changes=changes,
            ignore=desired_zone.ignore,
        )

    def apply(
        self,
        plan_result: PlanResult,
        assume_yes: bool = False,
        dry_run: bool = False,
    ) -> ReconciliationResult | None:
        """Apply the planned changes; returns None for dry runs and aborted applies."""
        zone = plan_result.desired.name
        if not plan_result.has_changes():
            LOG.info("No changes detected; nothing to apply.")
            return ReconciliationResult(zone=zone)
        if dry_run:
            LOG.info("Dry run: %d change(s) for %s not applied.", len(plan_result.changes), zone)
            return None
        if not assume_yes and not _confirm(zone):
            LOG.info("Apply aborted by user.")
            return None
        result = asyncio.run(self.apply_changes(zone, plan_result.changes))
        if result.verdict is not Verdict.SUCCESS:
            raise PartialApplyError(result)
        LOG.info("Apply complete for %s", zone)
        return result

    async def apply_changes(self, zone: str, changes: list[ChangeOp]) -> ReconciliationResult:
        """Run the executor against a fresh client."""
        async with self._client() as client:
            self.executor = ApplyExecutor(client, self.config)
            return await self.executor.apply(zone, changes)

    def pull_state(self, zone: str) -> Zone:
        """Fetch the current zone state."""
        return asyncio.run(self._fetch(zone))

    async def _fetch(self, zone: str) -> Zone:
        async with self._client() as client:
            await _require_authoritative(client)
            return await client.fetch_zone(zone)

    def server_info(self) -> dict[str, Any]:
        """Return the server description."""
        return asyncio.run(self._server_info())

    async def _server_info(self) -> dict[str, Any]:
        async with self._client() as client:
            return await client.get_server()

    def create_zone(self, template: ZoneTemplate) -> Zone:
        """Create a zone with an initial SOA and nameservers."""
        return asyncio.run(self._create_zone(template))

    async def _create_zone(self, template: ZoneTemplate) -> Zone:
        async with self._client() as client:
            await _require_authoritative(client)
            zone = await client.create_zone(template, initial_serial())
        LOG.info("Created zone %s", zone.name)
        return zone

    def remove_zone(self, zone: str, assume_yes: bool = False) -> bool:
        """Delete a zone; returns False when the operator declines."""
        if not assume_yes and not _confirm(zone, action="Remove zone"):
            LOG.info("Zone removal aborted by user.")
            return False
        asyncio.run(self._remove_zone(zone))
        LOG.info("Removed zone %s", zone)
        return True

    async def _remove_zone(self, zone: str) -> None:
        async with self._client() as client:
            await _require_authoritative(client)
            await client.delete_zone(zone)

    def list_zones(self) -> list[dict[str, Any]]:
        """Return the zones the server hosts."""
        return asyncio.run(self._list_zones())

    async def _list_zones(self) -> list[dict[str, Any]]:
        async with self._client() as client:
            return await client.list_zones()


def _confirm(zone: str, action: str = "Apply changes to") -> bool:
    """Prompt the operator to confirm a change."""
    prompt = f"{action} {zone}? [y/N]: "
    response = input(prompt).strip().lower()  # noqa: S322
    return response in {"y", "yes"}


async def _require_authoritative(client: PowerDnsClient) -> dict[str, Any]:
    """Fail unless the server is an authoritative PowerDNS daemon."""
    server = await client.get_server()
    daemon_type = server.get("daemon_type")
    if daemon_type != "authoritative":
        raise ConfigError(
            f"Server {server.get('id', '?')} is a {daemon_type or 'unknown'} server, expected authoritative"
        )
    return server


def initial_serial(now: datetime | None = None) -> int:
    """Return a date based SOA serial (YYYYMMDD01) for a new zone."""
    now = now or datetime.now(timezone.utc)
    return int(now.strftime("%Y%m%d")) * 100 + 1


def _filter_rrsets(zone: Zone, ignore_patterns: list[str]) -> Zone:
    """Drop the SOA and RRSets whose names match an ignore pattern."""
    return zone.without(lambda rrset: _is_ignored(rrset, ignore_patterns))


def _is_ignored(rrset: RRSet, patterns: list[str]) -> bool:
    if rrset.type is RecordType.SOA:
        return True
    return _matches_pattern(rrset.name, patterns)


def _matches_pattern(name: str, patterns: list[str]) -> bool:
    """Return True if name matches any ignore pattern."""
    lowered = name.lower()
    return any(
        fnmatch.fnmatch(lowered, pattern.lower()) or fnmatch.fnmatch(lowered.rstrip("."), pattern.lower())
        for pattern in patterns
    )
