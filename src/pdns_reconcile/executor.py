"""Apply a change set to PowerDNS in batches with retries."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterator, Protocol, Sequence

from .config import AppConfig
from .models import (
    ApiError,
    ChangeAction,
    ChangeOp,
    OpOutcome,
    OpStatus,
    ReconciliationResult,
)
from .retry import RetryOutcome, Sleep, call_with_retry

LOG = logging.getLogger("pdns_reconcile.executor")


class ChangeClient(Protocol):
    """What the executor needs from the remote client."""

    async def apply_changes(self, zone_name: str, ops: Sequence[ChangeOp]) -> None:
        ...


def chunked(items: Sequence[int], size: int) -> Iterator[list[int]]:
    """Yield consecutive slices of at most size items."""
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class ApplyExecutor:
    """Applies change sets; creates/updates first, deletes afterwards.

    Every op is its own RRSet key, so one key never spans two batches. Batches
    of the same phase run concurrently up to ``config.max_concurrency``.
    The result of the latest run stays available on ``self.result`` even when
    the run is cancelled.
    """

    def __init__(self, client: ChangeClient, config: AppConfig, sleep: Sleep = asyncio.sleep):
        self.client = client
        self.config = config
        self._sleep = sleep
        self.result: ReconciliationResult | None = None

    async def apply(self, zone_name: str, changes: Sequence[ChangeOp]) -> ReconciliationResult:
        """Apply changes and report the outcome of each one."""
        result = ReconciliationResult(
            zone=zone_name,
            outcomes=[OpOutcome(op=op, status=OpStatus.SKIPPED) for op in changes],
        )
        self.result = result
        upserts = [index for index, op in enumerate(changes) if op.action is not ChangeAction.DELETE]
        deletes = [index for index, op in enumerate(changes) if op.action is ChangeAction.DELETE]

        try:
            await self._run_phase(result, upserts)
            if any(result.outcomes[index].status is OpStatus.FAILED for index in upserts):
                if deletes:
                    LOG.warning(
                        "Skipping %d delete(s) in %s because creates/updates failed",
                        len(deletes),
                        zone_name,
                        extra={"zone": zone_name},
                    )
            else:
                await self._run_phase(result, deletes)
        except asyncio.CancelledError:
            result.cancelled = True
            LOG.warning(
                "Apply for %s cancelled; %d op(s) never attempted",
                zone_name,
                len(result.skipped),
                extra={"zone": zone_name},
            )
            raise
        return result

    async def _run_phase(self, result: ReconciliationResult, indices: list[int]) -> None:
        if not indices:
            return
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        batches = list(chunked(indices, self.config.batch_size))
        await asyncio.gather(*(self._run_batch(result, batch, semaphore) for batch in batches))

    async def _run_batch(self, result: ReconciliationResult, batch: list[int], semaphore: asyncio.Semaphore) -> None:
        ops = [result.outcomes[index].op for index in batch]
        requests: list[asyncio.Future] = []

        async def send() -> None:
            request = asyncio.ensure_future(self.client.apply_changes(result.zone, ops))
            requests.append(request)
            await asyncio.shield(request)

        async with semaphore:
            try:
                outcome = await call_with_retry(
                    send,
                    self.config.retry,
                    description=f"PATCH {result.zone} ({len(ops)} rrset(s))",
                    sleep=self._sleep,
                )
            except asyncio.CancelledError:
                if requests:
                    await self._settle_in_flight(result, batch, requests)
                raise
        self._record(result, batch, outcome)

    async def _settle_in_flight(
        self, result: ReconciliationResult, batch: list[int], requests: list[asyncio.Future]
    ) -> None:
        """Wait for the request already sent, then record what it did."""
        request = requests[-1]
        if not request.done():
            await asyncio.wait([request])
        error = request.exception()
        if error is None:
            self._mark(result, batch, OpStatus.APPLIED, None, len(requests))
            return
        api_error = error if isinstance(error, ApiError) else None
        self._mark(result, batch, OpStatus.FAILED, api_error, len(requests))

    def _record(self, result: ReconciliationResult, batch: list[int], outcome: RetryOutcome) -> None:
        status = OpStatus.APPLIED if outcome.ok else OpStatus.FAILED
        self._mark(result, batch, status, outcome.error, outcome.attempts)

    def _mark(
        self,
        result: ReconciliationResult,
        batch: list[int],
        status: OpStatus,
        error: ApiError | None,
        attempts: int,
    ) -> None:
        level = logging.INFO if status is OpStatus.APPLIED else logging.ERROR
        for index in batch:
            outcome = result.outcomes[index]
            outcome.status = status
            outcome.error = error if status is OpStatus.FAILED else None
            outcome.attempts = attempts
            op = outcome.op
            LOG.log(
                level,
                "%s %s/%s: %s after %d attempt(s)%s",
                op.action,
                op.name,
                op.type,
                status,
                attempts,
                f" ({error})" if outcome.error else "",
                extra={
                    "zone": result.zone,
                    "action": str(op.action),
                    "rrset": f"{op.name}/{op.type}",
                    "status": str(status),
                    "attempts": attempts,
                },
            )