"""
Error taxonomy for ingestion and remote sync.

Ingestion errors are raised only for run-level failures (no recognizable
schema). Row-level problems are never raised; they surface as skip
outcomes on the ingestion result.

Remote errors are split into transient (retried) and permanent (escalated
immediately). `classify_remote_error` maps arbitrary driver exceptions onto
that split.
"""
from __future__ import annotations

import asyncio
import re
from typing import Optional

from sqlalchemy.exc import DBAPIError, DisconnectionError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

TRANSIENT_MESSAGE_PATTERN = re.compile(
    r"rate limit|too many requests|timeout|timed out|gateway|server busy|"
    r"temporarily unavailable|service unavailable|connection reset|connection refused|"
    r"could not connect|restart transaction",
    re.IGNORECASE,
)


class IngestionError(Exception):
    """Run-level ingestion failure; zero records were produced."""


class SchemaMappingError(IngestionError):
    """Required fields could not be located by label or by position."""

    def __init__(self, kind: str, missing: list[str], header: Optional[list[str]] = None):
        self.kind = kind
        self.missing = list(missing)
        self.header = list(header or [])
        shown = ", ".join(self.header[:10]) if self.header else "(none)"
        super().__init__(
            f"{kind} CSV schema error: could not locate required columns "
            f"{', '.join(self.missing)}. Found headers: {shown}"
        )


class SyncError(Exception):
    """Base class for failures of the sync layer."""


class RemoteNotConfigured(SyncError):
    """The remote store is not configured; only the local cache is available."""


class RemoteStoreError(SyncError):
    """A remote operation failed."""

    def __init__(self, message: str, *, status: Optional[int] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.status = status
        self.cause = cause


class TransientRemoteError(RemoteStoreError):
    """Rate limited, timed out, gateway or server unavailable. Safe to retry."""


class PermanentRemoteError(RemoteStoreError):
    """Malformed payload, constraint violation. Never retried."""


class BatchWriteError(RemoteStoreError):
    """Every record of a batch failed, at batch and at row granularity."""

    def __init__(self, message: str, *, batch_index: int, batch_size: int, cause: Optional[BaseException] = None):
        super().__init__(message, cause=cause)
        self.batch_index = batch_index
        self.batch_size = batch_size


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status", "status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_transient(exc: BaseException) -> bool:
    """Decide whether a failed remote call is worth retrying."""
    if isinstance(exc, TransientRemoteError):
        return True
    if isinstance(exc, (PermanentRemoteError, RemoteNotConfigured)):
        return False
    status = _status_of(exc)
    if status is not None:
        return status in TRANSIENT_STATUS_CODES
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, PoolTimeoutError, DisconnectionError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, OperationalError):
        return True
    return bool(TRANSIENT_MESSAGE_PATTERN.search(str(exc) or ""))


def classify_remote_error(exc: BaseException, operation: str) -> RemoteStoreError:
    """Wrap a raw driver exception into the transient/permanent taxonomy."""
    if isinstance(exc, RemoteStoreError):
        return exc
    message = f"{operation} failed: {exc}"
    status = _status_of(exc)
    if is_transient(exc):
        return TransientRemoteError(message, status=status, cause=exc)
    return PermanentRemoteError(message, status=status, cause=exc)


class CloudSyncFailed(SyncError):
    """A remote write failed after the local snapshot was already written."""

    def __init__(self, kind: str, cause: BaseException):
        self.kind = kind
        self.cause = cause
        super().__init__(f"Cloud sync failed for {kind}; the local copy was kept. Cause: {cause}")


class RecordNotFound(SyncError):
    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"No {kind} record with id {record_id}")
