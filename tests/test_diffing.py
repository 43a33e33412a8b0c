"""Tests for the diff engine."""

import pytest

from pdns_reconcile.content import RawContent, parse_content
from pdns_reconcile.diffing import diff_zones, summarize
from pdns_reconcile.models import ChangeAction, ChangeOp, PdnsReconcileError, RecordType, ResourceRecord, RRSet, Zone

ORIGIN = "example.com."


def rrset(name, rtype, ttl, *values):
    rtype = RecordType(rtype)
    records = frozenset(ResourceRecord(parse_content(rtype, value, ORIGIN)) for value in values)
    return RRSet(name=name, type=rtype, ttl=ttl, records=records)


def zone(*rrsets):
    return Zone.from_rrsets(ORIGIN, list(rrsets))


def apply_ops(current: Zone, changes: list[ChangeOp]) -> Zone:
    rrsets = dict(current.rrsets)
    for change in changes:
        if change.action is ChangeAction.DELETE:
            rrsets.pop(change.key, None)
        else:
            rrsets[change.key] = change.after
    return Zone(name=current.name, rrsets=rrsets)


class TestScenarios:
    def test_create(self):
        desired = zone(rrset("www.example.com.", "A", 300, "1.2.3.4"))
        changes = diff_zones(desired, zone())
        assert [change.label() for change in changes] == ["create www.example.com./A"]
        assert changes[0].after == desired.get("www.example.com.", RecordType.A)

    def test_equal_mx_is_noop(self):
        desired = zone(rrset("mail.example.com.", "MX", 3600, {"priority": 10, "exchange": "mx1.example.com."}))
        current = zone(rrset("mail.example.com.", "MX", 3600, "10 mx1.example.com."))
        assert diff_zones(desired, current) == []

    def test_absent_cname_deleted_last(self):
        desired = zone(rrset("www.example.com.", "A", 300, "1.2.3.4"))
        current = zone(rrset("old.example.com.", "CNAME", 300, "www.example.com."))
        changes = diff_zones(desired, current)
        assert [change.label() for change in changes] == [
            "create www.example.com./A",
            "delete old.example.com./CNAME",
        ]
        assert changes[-1].before == current.get("old.example.com.", RecordType.CNAME)
        assert changes[-1].after is None


class TestDiff:
    def test_identical_zones(self):
        same = zone(
            rrset("www.example.com.", "A", 300, "192.0.2.1", "192.0.2.2"),
            rrset("example.com.", "TXT", 300, "v=spf1 -all"),
        )
        assert diff_zones(same, same) == []

    def test_record_order_is_irrelevant(self):
        desired = zone(rrset("www.example.com.", "A", 300, "192.0.2.1", "192.0.2.2"))
        current = zone(rrset("www.example.com.", "A", 300, "192.0.2.2", "192.0.2.1"))
        assert diff_zones(desired, current) == []

    def test_ttl_change_is_update(self):
        desired = zone(rrset("www.example.com.", "A", 600, "192.0.2.1"))
        current = zone(rrset("www.example.com.", "A", 300, "192.0.2.1"))
        changes = diff_zones(desired, current)
        assert [change.action for change in changes] == [ChangeAction.UPDATE]
        assert changes[0].before.ttl == 300
        assert changes[0].after.ttl == 600

    def test_mx_priority_change_is_update(self):
        desired = zone(rrset("example.com.", "MX", 300, "20 mx1.example.com."))
        current = zone(rrset("example.com.", "MX", 300, "10 mx1.example.com."))
        assert [change.action for change in diff_zones(desired, current)] == [ChangeAction.UPDATE]

    def test_disabled_flag_is_update(self):
        enabled = rrset("www.example.com.", "A", 300, "192.0.2.1")
        disabled = RRSet(
            name=enabled.name,
            type=enabled.type,
            ttl=enabled.ttl,
            records=frozenset(ResourceRecord(record.content, disabled=True) for record in enabled.records),
        )
        assert [change.action for change in diff_zones(zone(enabled), zone(disabled))] == [ChangeAction.UPDATE]

    def test_raw_server_content_is_update(self):
        desired = zone(rrset("www.example.com.", "A", 300, "192.0.2.1"))
        raw = RRSet(
            name="www.example.com.",
            type=RecordType.A,
            ttl=300,
            records=frozenset({ResourceRecord(RawContent("192.0.2.1 "))}),
        )
        assert [change.action for change in diff_zones(desired, zone(raw))] == [ChangeAction.UPDATE]

    def test_same_name_different_type_are_independent(self):
        desired = zone(rrset("www.example.com.", "AAAA", 300, "2001:db8::1"))
        current = zone(rrset("www.example.com.", "A", 300, "192.0.2.1"))
        assert [change.label() for change in diff_zones(desired, current)] == [
            "create www.example.com./AAAA",
            "delete www.example.com./A",
        ]

    def test_ordering(self):
        desired = zone(
            rrset("b.example.com.", "A", 300, "192.0.2.2"),
            rrset("a.example.com.", "A", 600, "192.0.2.1"),
            rrset("c.example.com.", "TXT", 300, "new"),
        )
        current = zone(
            rrset("z.example.com.", "A", 300, "192.0.2.9"),
            rrset("a.example.com.", "A", 300, "192.0.2.1"),
            rrset("d.example.com.", "A", 300, "192.0.2.4"),
        )
        changes = diff_zones(desired, current)
        assert [change.label() for change in changes] == [
            "update a.example.com./A",
            "create b.example.com./A",
            "create c.example.com./TXT",
            "delete d.example.com./A",
            "delete z.example.com./A",
        ]

    def test_applying_changes_converges(self):
        desired = zone(
            rrset("www.example.com.", "A", 300, "192.0.2.1"),
            rrset("example.com.", "MX", 300, "10 mx1.example.com.", "20 mx2.example.com."),
        )
        current = zone(
            rrset("www.example.com.", "A", 60, "192.0.2.1"),
            rrset("old.example.com.", "A", 300, "192.0.2.7"),
        )
        converged = apply_ops(current, diff_zones(desired, current))
        assert converged == desired
        assert diff_zones(desired, converged) == []


class TestSummarize:
    def test_counts_every_action(self):
        desired = zone(rrset("www.example.com.", "A", 300, "192.0.2.1"))
        current = zone(rrset("old.example.com.", "A", 300, "192.0.2.1"))
        assert summarize(diff_zones(desired, current)) == {"create": 1, "update": 0, "delete": 1}

    def test_empty(self):
        assert summarize([]) == {"create": 0, "update": 0, "delete": 0}


class TestChangeOpPatch:
    def test_delete_entry(self):
        op = ChangeOp(ChangeAction.DELETE, "old.example.com.", RecordType.A)
        assert op.to_patch() == {"name": "old.example.com.", "type": "A", "changetype": "DELETE"}

    def test_upsert_without_target(self):
        op = ChangeOp(ChangeAction.CREATE, "www.example.com.", RecordType.A)
        with pytest.raises(PdnsReconcileError, match="create www.example.com./A has no target RRSet"):
            op.to_patch()
