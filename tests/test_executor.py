"""Tests for the apply executor."""

import asyncio
import dataclasses

import pytest

from pdns_reconcile.content import IPv4Content
from pdns_reconcile.executor import ApplyExecutor, chunked
from pdns_reconcile.models import (
    ApiErrorKind,
    ChangeAction,
    ChangeOp,
    OpStatus,
    PermanentApiError,
    RecordType,
    ResourceRecord,
    RRSet,
    TransientApiError,
    Verdict,
)

ZONE = "example.com."


def create(label: str) -> ChangeOp:
    name = f"{label}.{ZONE}"
    after = RRSet(name=name, type=RecordType.A, ttl=300, records=frozenset({ResourceRecord(IPv4Content("192.0.2.1"))}))
    return ChangeOp(ChangeAction.CREATE, name, RecordType.A, after=after)


def delete(label: str) -> ChangeOp:
    return ChangeOp(ChangeAction.DELETE, f"{label}.{ZONE}", RecordType.A)


def unavailable():
    return TransientApiError(ApiErrorKind.SERVER, "503 Service Unavailable", status_code=503)


def rejected():
    return PermanentApiError(ApiErrorKind.CLIENT, "422 Unprocessable Entity", status_code=422)


class FakeChangeClient:
    """Records every PATCH and raises queued errors per RRSet key."""

    def __init__(self, failures=None, delay=0.0):
        self.failures = failures or {}
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def apply_changes(self, zone_name, ops):
        self.calls.append([op.key for op in ops])
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            for op in ops:
                pending = self.failures.get(op.key)
                if pending:
                    raise pending.pop(0)
        finally:
            self.in_flight -= 1


def execute(client, config, changes, **overrides):
    config = dataclasses.replace(config, **overrides)
    executor = ApplyExecutor(client, config)
    return asyncio.run(executor.apply(ZONE, changes))


class TestChunked:
    def test_slices(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert list(chunked([], 3)) == []


class TestApply:
    def test_transient_failure_recovers(self, config):
        ops = [create("one"), create("two"), create("three")]
        client = FakeChangeClient(failures={ops[1].key: [unavailable(), unavailable()]})
        result = execute(client, config, ops, batch_size=1)
        assert [outcome.status for outcome in result.outcomes] == [OpStatus.APPLIED] * 3
        assert [outcome.attempts for outcome in result.outcomes] == [1, 3, 1]
        assert result.verdict is Verdict.SUCCESS
        assert len(client.calls) == 5

    def test_empty_change_set(self, config):
        client = FakeChangeClient()
        result = execute(client, config, [])
        assert result.verdict is Verdict.SUCCESS
        assert result.outcomes == []
        assert client.calls == []

    def test_batches_respect_size(self, config):
        ops = [create(f"host{index}") for index in range(5)]
        client = FakeChangeClient()
        result = execute(client, config, ops, batch_size=2)
        assert sorted(len(call) for call in client.calls) == [1, 2, 2]
        assert result.verdict is Verdict.SUCCESS

    def test_deletes_run_after_upserts(self, config):
        ops = [create("a"), create("b"), delete("c"), delete("d")]
        client = FakeChangeClient(delay=0.01)
        result = execute(client, config, ops, batch_size=1, max_concurrency=4)
        keys = [key for call in client.calls for key in call]
        assert set(keys[:2]) == {ops[0].key, ops[1].key}
        assert set(keys[2:]) == {ops[2].key, ops[3].key}
        assert result.verdict is Verdict.SUCCESS

    def test_concurrency_is_bounded(self, config):
        ops = [create(f"host{index}") for index in range(6)]
        client = FakeChangeClient(delay=0.01)
        execute(client, config, ops, batch_size=1, max_concurrency=2)
        assert client.max_in_flight == 2

    def test_permanent_failure_is_partial(self, config):
        ops = [create("a"), create("b"), delete("c")]
        client = FakeChangeClient(failures={ops[1].key: [rejected(), unavailable()]})
        result = execute(client, config, ops, batch_size=1)
        assert [outcome.status for outcome in result.outcomes] == [
            OpStatus.APPLIED,
            OpStatus.FAILED,
            OpStatus.SKIPPED,
        ]
        failed = result.failed[0]
        assert failed.attempts == 1
        assert failed.error.status_code == 422
        assert result.verdict is Verdict.PARTIAL
        assert [ops[2].key] not in client.calls

    def test_exhausted_retries_fail(self, config):
        ops = [create("a")]
        client = FakeChangeClient(failures={ops[0].key: [unavailable() for _ in range(5)]})
        result = execute(client, config, ops)
        outcome = result.outcomes[0]
        assert outcome.status is OpStatus.FAILED
        assert outcome.attempts == config.retry.max_attempts
        assert result.verdict is Verdict.FAILURE

    def test_batch_shares_outcome(self, config):
        ops = [create("a"), create("b"), create("c")]
        client = FakeChangeClient(failures={ops[0].key: [rejected()]})
        result = execute(client, config, ops, batch_size=2)
        statuses = {outcome.op.key: outcome.status for outcome in result.outcomes}
        assert statuses[ops[0].key] is OpStatus.FAILED
        assert statuses[ops[1].key] is OpStatus.FAILED
        assert statuses[ops[2].key] is OpStatus.APPLIED

    def test_only_deletes(self, config):
        ops = [delete("a"), delete("b")]
        client = FakeChangeClient()
        result = execute(client, config, ops)
        assert client.calls == [[ops[0].key, ops[1].key]]
        assert result.verdict is Verdict.SUCCESS

    def test_failed_delete_does_not_affect_upserts(self, config):
        ops = [create("a"), delete("b")]
        client = FakeChangeClient(failures={ops[1].key: [rejected()]})
        result = execute(client, config, ops, batch_size=1)
        assert [outcome.status for outcome in result.outcomes] == [OpStatus.APPLIED, OpStatus.FAILED]
        assert result.verdict is Verdict.PARTIAL


class BlockingClient:
    """Holds the first PATCH open until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = []

    async def apply_changes(self, zone_name, ops):
        self.calls.append([op.key for op in ops])
        self.started.set()
        await self.release.wait()


class TestCancellation:
    def test_in_flight_request_is_recorded(self, config):
        ops = [create("a"), create("b")]
        config = dataclasses.replace(config, batch_size=1, max_concurrency=1)

        async def scenario():
            client = BlockingClient()
            executor = ApplyExecutor(client, config)
            task = asyncio.create_task(executor.apply(ZONE, ops))
            await client.started.wait()
            task.cancel()
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            client.release.set()
            with pytest.raises(asyncio.CancelledError):
                await task
            return executor.result, client

        result, client = asyncio.run(scenario())
        assert result.cancelled
        assert [outcome.status for outcome in result.outcomes] == [OpStatus.APPLIED, OpStatus.SKIPPED]
        assert result.outcomes[0].attempts == 1
        assert client.calls == [[ops[0].key]]
        assert result.verdict is Verdict.PARTIAL
