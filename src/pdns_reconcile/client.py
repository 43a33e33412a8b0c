"""Async client for the PowerDNS authoritative REST API."""

from __future__ import annotations

import logging
from importlib import metadata
from typing import Any, Sequence
from urllib.parse import quote

import httpx

from .config import AppConfig
from .content import content_from_api
from .models import (
    ApiErrorKind,
    ChangeOp,
    PermanentApiError,
    RecordType,
    ResourceRecord,
    RRSet,
    TransientApiError,
    Zone,
    ZoneNotFoundError,
    ZoneTemplate,
)
from .names import normalise_name

LOG = logging.getLogger("pdns_reconcile.client")

RATE_LIMIT_STATUS = 429


def _package_version() -> str:
    try:
        return metadata.version("pdns-reconcile")
    except metadata.PackageNotFoundError:
        return "0+unknown"


def _error_detail(response: httpx.Response) -> str:
    """Extract the PowerDNS error message from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if not isinstance(body, dict):
        return str(body)
    detail = str(body.get("error", "")) or response.reason_phrase
    errors = body.get("errors")
    if errors:
        detail = f"{detail}, errors: {', '.join(str(error) for error in errors)}"
    return detail


class PowerDnsClient:
    """Thin typed facade over the zone endpoints of one PowerDNS server."""

    def __init__(self, config: AppConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._http = httpx.AsyncClient(
            base_url=config.server_url,
            headers={
                "X-API-Key": config.api_key,
                "Accept": "application/json",
                "Cache-Control": "no-cache",
                "User-Agent": f"pdns-reconcile/{_package_version()}",
            },
            timeout=config.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> PowerDnsClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _do(self, method: str, path: str, json: Any = None, zone: str | None = None) -> httpx.Response:
        """Send a request and translate failures into ApiError subclasses."""
        LOG.debug("Executing %s request to %s", method, path)
        try:
            response = await self._http.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise TransientApiError(ApiErrorKind.TIMEOUT, f"{method} {path} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientApiError(ApiErrorKind.NETWORK, f"{method} {path} failed: {exc}") from exc

        status = response.status_code
        if response.is_success:
            return response
        detail = _error_detail(response)
        message = f"{method} {path} returned {status}: {detail}"
        if status == RATE_LIMIT_STATUS:
            raise TransientApiError(ApiErrorKind.RATE_LIMITED, message, status_code=status)
        if status >= 500:
            raise TransientApiError(ApiErrorKind.SERVER, message, status_code=status)
        if status == 404 and zone is not None:
            raise ZoneNotFoundError(zone)
        raise PermanentApiError(ApiErrorKind.CLIENT, message, status_code=status)

    async def _do_json(self, method: str, path: str, json: Any = None, zone: str | None = None) -> Any:
        response = await self._do(method, path, json=json, zone=zone)
        try:
            return response.json()
        except ValueError as exc:
            raise PermanentApiError(
                ApiErrorKind.MALFORMED_RESPONSE,
                f"{method} {path} returned a body that is not JSON",
                status_code=response.status_code,
            ) from exc

    @staticmethod
    def _zone_path(zone_name: str) -> str:
        return f"/zones/{quote(normalise_name(zone_name), safe='.')}"

    async def get_server(self) -> dict[str, Any]:
        """Return the server description (id, daemon_type, version, ...)."""
        data = await self._do_json("GET", self.config.server_url)
        if not isinstance(data, dict):
            raise PermanentApiError(ApiErrorKind.MALFORMED_RESPONSE, "server description is not a JSON object")
        return data

    async def list_zones(self) -> list[dict[str, Any]]:
        """Return the zones hosted by the server."""
        data = await self._do_json("GET", "/zones")
        if not isinstance(data, list):
            raise PermanentApiError(ApiErrorKind.MALFORMED_RESPONSE, "zone list is not a JSON array")
        return data

    async def fetch_zone(self, zone_name: str) -> Zone:
        """Fetch a zone and its RRSets."""
        origin = normalise_name(zone_name)
        data = await self._do_json("GET", self._zone_path(origin), zone=origin)
        return _parse_zone(origin, data)

    async def create_zone(self, template: ZoneTemplate, serial: int) -> Zone:
        """Create a zone and return it as the server reports it."""
        LOG.info("Creating %s zone %s", template.kind, template.name)
        data = await self._do_json("POST", "/zones", json=template.to_api(serial))
        return _parse_zone(template.name, data)

    async def delete_zone(self, zone_name: str) -> None:
        """Delete a zone with all its RRSets."""
        origin = normalise_name(zone_name)
        LOG.info("Deleting zone %s", origin)
        await self._do("DELETE", self._zone_path(origin), zone=origin)

    async def apply_changes(self, zone_name: str, ops: Sequence[ChangeOp]) -> None:
        """Send one PATCH carrying every op as an RRSet change."""
        if not ops:
            return
        origin = normalise_name(zone_name)
        payload = {"rrsets": [op.to_patch() for op in ops]}
        await self._do("PATCH", self._zone_path(origin), json=payload, zone=origin)


def _parse_zone(origin: str, data: Any) -> Zone:
    try:
        return zone_from_api(origin, data)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise PermanentApiError(
            ApiErrorKind.MALFORMED_RESPONSE, f"zone {origin} has an unexpected shape: {exc}"
        ) from exc


def zone_from_api(origin: str, data: dict[str, Any]) -> Zone:
    """Convert a PowerDNS zone document into a Zone."""
    rrsets: list[RRSet] = []
    for item in data.get("rrsets") or []:
        try:
            rtype = RecordType.parse(item["type"])
        except ValueError:
            LOG.warning("Ignoring unsupported %s RRSet %s in %s", item["type"], item["name"], origin)
            continue
        records = frozenset(
            ResourceRecord(
                content=content_from_api(rtype, record["content"]),
                disabled=bool(record.get("disabled", False)),
            )
            for record in item.get("records") or []
        )
        if not records:
            # comment-only RRSets carry no data
            continue
        rrsets.append(RRSet(name=normalise_name(item["name"]), type=rtype, ttl=int(item["ttl"]), records=records))
    return Zone.from_rrsets(origin, rrsets)
