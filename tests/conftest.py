"""Shared fixtures: configuration and an in-memory PowerDNS API."""

from __future__ import annotations

import json

import httpx
import pytest

from pdns_reconcile.config import AppConfig, RetryPolicy

API_PREFIX = "/api/v1/servers/localhost"
SOA_CONTENT = "ns1.example.com. hostmaster.example.com. 2024010101 10800 3600 604800 3600"


class FakePowerDns:
    """Serves the zone endpoints from a dict of zone name -> rrsets."""

    def __init__(self, zones: dict[str, list[dict]] | None = None):
        self.zones = zones if zones is not None else {}
        self.requests: list[httpx.Request] = []
        self.patch_responses: list[httpx.Response] = []
        self.server = {"id": "localhost", "daemon_type": "authoritative", "version": "4.8.3"}

    @property
    def patches(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests if request.method == "PATCH"]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == API_PREFIX:
            return httpx.Response(200, json=self.server)
        if path == f"{API_PREFIX}/zones" and request.method == "POST":
            return self._create(json.loads(request.content))
        if path == f"{API_PREFIX}/zones":
            return httpx.Response(200, json=[{"name": name, "kind": "Native"} for name in sorted(self.zones)])
        zone = path[len(f"{API_PREFIX}/zones/") :]
        if zone not in self.zones:
            return httpx.Response(404, json={"error": "Could not find domain '" + zone + "'"})
        if request.method == "GET":
            return httpx.Response(200, json={"name": zone, "kind": "Native", "rrsets": self.zones[zone]})
        if request.method == "DELETE":
            del self.zones[zone]
            return httpx.Response(204)
        if self.patch_responses:
            return self.patch_responses.pop(0)
        self._patch(zone, json.loads(request.content))
        return httpx.Response(204)

    def _create(self, body: dict) -> httpx.Response:
        zone = body["name"]
        if zone in self.zones:
            return httpx.Response(409, json={"error": "Domain '" + zone + "' already exists"})
        rrsets = [{**rrset, "comments": []} for rrset in body.get("rrsets", [])]
        if body["nameservers"]:
            rrsets.append(api_rrset(zone, "NS", 3600, *body["nameservers"]))
        self.zones[zone] = rrsets
        return httpx.Response(201, json={"name": zone, "kind": body["kind"], "rrsets": rrsets})

    def _patch(self, zone: str, body: dict) -> None:
        rrsets = self.zones[zone]
        for change in body["rrsets"]:
            rrsets[:] = [
                rrset
                for rrset in rrsets
                if (rrset["name"], rrset["type"]) != (change["name"], change["type"])
            ]
            if change["changetype"] == "REPLACE":
                rrsets.append(
                    {
                        "name": change["name"],
                        "type": change["type"],
                        "ttl": change["ttl"],
                        "records": change["records"],
                        "comments": [],
                    }
                )


def api_rrset(name: str, rtype: str, ttl: int, *contents: str, disabled: bool = False) -> dict:
    return {
        "name": name,
        "type": rtype,
        "ttl": ttl,
        "records": [{"content": content, "disabled": disabled} for content in contents],
        "comments": [],
    }


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        api_url="http://pdns.test:8081/",
        api_key="secret",
        retry=RetryPolicy(max_attempts=3, base_delay=0, max_delay=0),
    )


@pytest.fixture
def fake_pdns() -> FakePowerDns:
    return FakePowerDns(
        {
            "example.com.": [
                api_rrset("example.com.", "SOA", 3600, SOA_CONTENT),
                api_rrset("example.com.", "NS", 3600, "ns1.example.com.", "ns2.example.com."),
                api_rrset("www.example.com.", "A", 300, "192.0.2.1"),
                api_rrset("old.example.com.", "CNAME", 300, "www.example.com."),
            ]
        }
    )
