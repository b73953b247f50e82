"""Copy the ledger between two stores and verify the copy."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

from ledger import LedgerRow
from ledger_client import LedgerClient, LedgerQuery, StoreError

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    read: int = 0
    written: int = 0
    failed_batches: int = 0
    failures: list[str] = field(default_factory=list)


@dataclass
class VerificationReport:
    source_counts: dict[str, int]
    target_counts: dict[str, int]
    missing_ids: list[str]

    @property
    def matches(self) -> bool:
        return self.source_counts == self.target_counts and not self.missing_ids


def copy_ledger(
    source: LedgerClient, target: LedgerClient, batch_size: int = 100
) -> MigrationReport:
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    rows = source.query(LedgerQuery().order("created_at"))
    report = MigrationReport(read=len(rows))
    for start in range(0, len(rows), batch_size):
        batch = rows[start : start + batch_size]
        number = start // batch_size + 1
        try:
            report.written += target.upsert_batch(batch)
            logger.info(f"migration_batch: batch={number} rows={len(batch)}")
        except StoreError as exc:
            report.failed_batches += 1
            report.failures.append(f"batch {number}: {exc}")
            logger.error(f"migration_batch_failed: batch={number} error={exc}")
    return report


def _bucket(row: LedgerRow) -> str:
    return f"{row.kind.value}:{'template' if row.is_template else 'row'}"


def verify_ledger(source: LedgerClient, target: LedgerClient) -> VerificationReport:
    source_rows = source.query(LedgerQuery())
    target_rows = target.query(LedgerQuery())
    target_ids = {r.id for r in target_rows}
    return VerificationReport(
        source_counts=dict(Counter(_bucket(r) for r in source_rows)),
        target_counts=dict(Counter(_bucket(r) for r in target_rows)),
        missing_ids=[r.id for r in source_rows if r.id not in target_ids],
    )
