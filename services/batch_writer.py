"""
Batched Resilient Writer
Pushes a record set to the remote store in bounded, strictly sequential batches.

Per batch:
    insert_many with retry (transient errors only, delay = base * attempt)
    -> on exhaustion, every record of the batch is retried on its own
    -> all rows failed: BatchWriteError; some failed: counted in the report

Permanent errors are never retried and escalate immediately, at batch and
at row level alike.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from services.errors import (
    BatchWriteError,
    PermanentRemoteError,
    RemoteStoreError,
    classify_remote_error,
    is_transient,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 0.05
    retryable: Callable[[BaseException], bool] = is_transient

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_s * attempt


async def attempt_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    label: str,
    sleep: Optional[Sleep] = None,
) -> T:
    """
    Run `operation` until it succeeds, fails permanently, or runs out of attempts.

    Failures are re-raised as RemoteStoreError subclasses: a
    TransientRemoteError after exhaustion, a PermanentRemoteError at once.
    """
    sleep = sleep or asyncio.sleep
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            err = classify_remote_error(e, label)
            if not policy.retryable(err):
                logger.error("WRITE: non-retryable error op=%s attempt=%d: %s", label, attempt, e)
                if err is e:
                    raise
                raise err from e
            if attempt >= policy.max_attempts:
                logger.error("WRITE: retries exhausted op=%s attempts=%d last_error=%s", label, attempt, e)
                if err is e:
                    raise
                raise err from e
            delay = policy.delay_for(attempt)
            logger.warning(
                "WRITE: transient error op=%s (attempt %d/%d): %s | sleeping %.2fs",
                label,
                attempt,
                policy.max_attempts,
                e,
                delay,
            )
            await sleep(delay)


@dataclass(frozen=True)
class RecordFailure:
    record_id: Optional[str]
    batch_index: int
    error: str


@dataclass
class WriteReport:
    kind: str
    attempted: int = 0
    written: int = 0
    batches: int = 0
    fallback_batches: int = 0
    failures: List[RecordFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def partial(self) -> bool:
        return self.failed > 0


class BatchedWriter:
    """Sequential batched insert with retry and per-row fallback."""

    def __init__(
        self,
        remote,
        policy: Optional[RetryPolicy] = None,
        batch_pause_s: float = 0.05,
        sleep: Optional[Sleep] = None,
    ):
        self.remote = remote
        self.policy = policy or RetryPolicy()
        self.batch_pause_s = batch_pause_s
        if sleep is not None:
            self._sleep = sleep

    @classmethod
    def from_settings(cls, remote, settings, sleep: Optional[Sleep] = None) -> "BatchedWriter":
        return cls(
            remote,
            policy=RetryPolicy(max_attempts=settings.retry_max, base_delay_s=settings.retry_delay_s),
            batch_pause_s=settings.batch_pause_s,
            sleep=sleep,
        )

    @staticmethod
    async def _sleep(seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def retry(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        return await attempt_with_retry(operation, self.policy, label, sleep=self._sleep)

    async def _write_rows(
        self, kind: str, batch: Sequence, batch_index: int, start: int, report: WriteReport
    ) -> int:
        written = 0
        for offset, record in enumerate(batch):
            record_id = getattr(record, "id", None)
            try:
                await self.retry(
                    lambda r=record, p=start + offset: self.remote.insert_one(kind, r, position=p),
                    f"{kind}.insert_one",
                )
                written += 1
            except PermanentRemoteError:
                raise
            except RemoteStoreError as exc:
                report.failures.append(RecordFailure(record_id, batch_index, str(exc)))
        return written

    async def write_all(self, kind: str, records: Sequence, batch_size: int) -> WriteReport:
        """Write every record; returns an account of what could not be written."""
        report = WriteReport(kind=kind)
        records = list(records)
        if not records:
            return report
        size = max(1, int(batch_size))
        total_batches = (len(records) - 1) // size + 1

        for batch_index, start in enumerate(range(0, len(records), size)):
            batch = records[start:start + size]
            report.attempted += len(batch)
            report.batches += 1
            try:
                await self.retry(
                    lambda b=batch, s=start: self.remote.insert_many(kind, b, start=s),
                    f"{kind}.insert_many",
                )
                report.written += len(batch)
            except PermanentRemoteError:
                raise
            except RemoteStoreError as exc:
                logger.warning(
                    "WRITE: batch %d/%d of %s failed after retries, falling back to row writes (rows=%d): %s",
                    batch_index + 1,
                    total_batches,
                    kind,
                    len(batch),
                    exc,
                )
                report.fallback_batches += 1
                before = report.failed
                written = await self._write_rows(kind, batch, batch_index, start, report)
                report.written += written
                if written == 0:
                    logger.error(
                        "WRITE: every record of batch %d/%d failed kind=%s rows=%d",
                        batch_index + 1,
                        total_batches,
                        kind,
                        len(batch),
                    )
                    raise BatchWriteError(
                        f"{kind} batch {batch_index + 1}/{total_batches} failed: "
                        f"all {len(batch)} records could not be written",
                        batch_index=batch_index,
                        batch_size=len(batch),
                        cause=exc,
                    ) from exc
                logger.warning(
                    "WRITE: batch %d/%d of %s partially written written=%d failed=%d",
                    batch_index + 1,
                    total_batches,
                    kind,
                    written,
                    report.failed - before,
                )

            if start + size < len(records) and self.batch_pause_s > 0:
                await self._sleep(self.batch_pause_s)

        logger.info(
            "WRITE: done kind=%s attempted=%d written=%d failed=%d batches=%d fallback_batches=%d",
            kind,
            report.attempted,
            report.written,
            report.failed,
            report.batches,
            report.fallback_batches,
        )
        return report
