"""Reconciliation jobs over the ledger.

Every job runs the same pipeline: fetch candidate rows, compute a delta with
pure functions, stop there in dry-run mode, otherwise apply each write
independently and report counts. Fetch failures propagate as ``FetchError``;
per-row write failures and malformed templates are counted and skipped.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from duplicates import cascade_rows, resolve_installments, resolve_templates
from ledger import LedgerRow, MalformedTemplateError, Template
from ledger_client import (
    FetchError,
    LedgerClient,
    LedgerQuery,
    RowWriteError,
    WriteAction,
    WriteResult,
)
from models import TransactionKind
from recurrence import expand, inspect_expansion, missing_installments, roll_forward

logger = logging.getLogger(__name__)


@dataclass
class Regeneration:
    template: Template
    stale: list[LedgerRow]
    fresh: list[LedgerRow]


@dataclass
class Delta:
    deletes: list[LedgerRow] = field(default_factory=list)
    inserts: list[LedgerRow] = field(default_factory=list)
    updates: list[tuple[LedgerRow, dict[str, Any]]] = field(default_factory=list)
    regenerations: list[Regeneration] = field(default_factory=list)
    kept: int = 0
    skipped: list[LedgerRow] = field(default_factory=list)
    details: list[str] = field(default_factory=list)

    @property
    def planned_deletes(self) -> int:
        return len(self.deletes) + sum(len(r.stale) for r in self.regenerations)

    @property
    def planned_inserts(self) -> int:
        return len(self.inserts) + sum(len(r.fresh) for r in self.regenerations)


@dataclass
class JobReport:
    job: str
    dry_run: bool
    fetched: int = 0
    kept: int = 0
    removed: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    failures: list[str] = field(default_factory=list)
    details: list[str] = field(default_factory=list)

    def record(self, result: WriteResult) -> None:
        if not result.ok:
            self.failed += 1
            self.failures.append(str(result.error))
        elif result.action == WriteAction.delete:
            self.removed += 1
        elif result.action == WriteAction.insert:
            self.inserted += 1
        else:
            self.updated += 1

    def summary(self) -> str:
        mode = "dry-run" if self.dry_run else "execute"
        return (
            f"{self.job} ({mode}): fetched={self.fetched} kept={self.kept} "
            f"removed={self.removed} inserted={self.inserted} updated={self.updated} "
            f"failed={self.failed} skipped={self.skipped}"
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _series(rows: Iterable[LedgerRow]) -> dict[tuple[str, str], list[LedgerRow]]:
    grouped: dict[tuple[str, str], list[LedgerRow]] = defaultdict(list)
    for row in rows:
        grouped[row.series_key].append(row)
    return grouped


def _split_templates(
    rows: Iterable[LedgerRow],
) -> tuple[list[Template], list[LedgerRow]]:
    templates: list[Template] = []
    malformed: list[LedgerRow] = []
    for row in rows:
        if not row.is_template:
            continue
        try:
            templates.append(Template.from_row(row))
        except MalformedTemplateError as exc:
            logger.warning(f"template_skipped: {exc}")
            malformed.append(row)
    return templates, malformed


def series_query(kind: TransactionKind, description: str, cost_center_id: str) -> LedgerQuery:
    return (
        LedgerQuery()
        .eq("kind", kind)
        .eq("description", description)
        .eq("cost_center_id", cost_center_id)
        .eq("is_template", False)
    )


class ReconciliationJob:
    name = "job"

    def __init__(self, client: LedgerClient) -> None:
        self.client = client

    def fetch(self) -> list[LedgerRow]:
        raise NotImplementedError

    def compute(self, rows: list[LedgerRow]) -> Delta:
        raise NotImplementedError

    def run(
        self,
        apply: bool = False,
        on_fetched: Optional[Callable[[list[LedgerRow]], None]] = None,
    ) -> JobReport:
        rows = self.fetch()
        logger.info(f"job_fetch: job={self.name} rows={len(rows)}")
        if on_fetched is not None:
            on_fetched(rows)

        delta = self.compute(rows)
        report = JobReport(
            job=self.name,
            dry_run=not apply,
            fetched=len(rows),
            kept=delta.kept,
            details=list(delta.details),
        )

        if apply:
            for result in self.apply(delta):
                report.record(result)
        else:
            report.removed = delta.planned_deletes
            report.inserted = delta.planned_inserts
            report.updated = len(delta.updates)

        # apply() may add templates found malformed on re-fetch
        report.skipped = len(delta.skipped)
        for row in delta.skipped:
            report.details.append(f"skipped malformed template: {row.label()}")
        logger.info(f"job_{'apply' if apply else 'dry_run'}: {report.summary()}")
        return report

    def apply(self, delta: Delta) -> list[WriteResult]:
        results: list[WriteResult] = []
        for row in delta.deletes:
            results.append(self.client.delete(row.id))
        for row, fields in delta.updates:
            results.append(self.client.update(row.id, fields))
        for row in delta.inserts:
            results.append(self.client.insert(row))
        return results


class InstallmentDedupJob(ReconciliationJob):
    """Remove installments that repeat another row's logical identity."""

    name = "dedup-installments"

    def __init__(
        self,
        client: LedgerClient,
        kind: TransactionKind = TransactionKind.expense,
    ) -> None:
        super().__init__(client)
        self.kind = kind

    def fetch(self) -> list[LedgerRow]:
        return self.client.query(
            LedgerQuery().eq("kind", self.kind).order("created_at")
        )

    def compute(self, rows: list[LedgerRow]) -> Delta:
        # Templates are left to TemplateDedupJob, which cascades.
        _, malformed = _split_templates(rows)
        resolution = resolve_installments(r for r in rows if not r.is_template)
        delta = Delta(deletes=resolution.remove, kept=len(resolution.keep), skipped=malformed)
        for survivor in resolution.keep:
            losers = resolution.removed_for.get(survivor.id)
            if not losers:
                continue
            delta.details.append(f"keep {survivor.label()}")
            delta.details.extend(f"  remove {r.label()}" for r in losers)
        return delta


class TemplateDedupJob(ReconciliationJob):
    """Keep one template per description and cost center, cascading removals."""

    name = "dedup-templates"

    def __init__(
        self,
        client: LedgerClient,
        kind: TransactionKind = TransactionKind.expense,
    ) -> None:
        super().__init__(client)
        self.kind = kind

    def fetch(self) -> list[LedgerRow]:
        templates = self.client.query(
            LedgerQuery()
            .eq("kind", self.kind)
            .eq("is_template", True)
            .order("created_at")
        )
        counts: dict[tuple[str, str], int] = defaultdict(int)
        for t in templates:
            counts[t.series_key] += 1
        rows = list(templates)
        for description, center in (k for k, n in counts.items() if n > 1):
            rows.extend(self.client.query(series_query(self.kind, description, center)))
        return rows

    def compute(self, rows: list[LedgerRow]) -> Delta:
        templates, malformed = _split_templates(rows)
        series = _series(rows)
        resolution = resolve_templates(t.row for t in templates)
        by_id = {t.row.id: t for t in templates}

        delta = Delta(kept=len(resolution.keep), skipped=malformed)
        for survivor_row in resolution.keep:
            losers = resolution.removed_for.get(survivor_row.id)
            if not losers:
                continue
            survivor = by_id[survivor_row.id]
            delta.details.append(f"keep template {survivor_row.label()}")
            for loser_row in losers:
                loser = by_id[loser_row.id]
                cascade = cascade_rows(loser, survivor, series[loser_row.series_key])
                delta.details.append(
                    f"  remove template {loser_row.label()} with {len(cascade)} installment(s)"
                )
                delta.deletes.extend(cascade)
                delta.deletes.append(loser_row)
        return delta


class RegenerationJob(ReconciliationJob):
    """Rebuild a template's installments from scratch.

    With ``template_id`` the template is regenerated unconditionally. Without
    it, every template whose stored expansion is inconsistent is regenerated.
    """

    name = "regenerate"

    def __init__(
        self,
        client: LedgerClient,
        template_id: Optional[str] = None,
        kind: TransactionKind = TransactionKind.expense,
    ) -> None:
        super().__init__(client)
        self.template_id = template_id
        self.kind = kind

    def fetch(self) -> list[LedgerRow]:
        if self.template_id is not None:
            template = self.client.get(self.template_id)
            if template is None or not template.is_template:
                raise FetchError(f"Template {self.template_id} not found")
            return [template] + self.client.query(
                series_query(template.kind, template.description, template.cost_center_id)
            )
        return self.client.query(LedgerQuery().eq("kind", self.kind).order("created_at"))

    def compute(self, rows: list[LedgerRow]) -> Delta:
        templates, malformed = _split_templates(rows)
        series = _series(rows)
        template_counts: dict[tuple[str, str], int] = defaultdict(int)
        for t in templates:
            template_counts[t.row.series_key] += 1

        delta = Delta(skipped=malformed)
        for template in templates:
            key = template.row.series_key
            generated = [r for r in series[key] if not r.is_template]
            if self.template_id is None:
                if template_counts[key] > 1:
                    delta.details.append(
                        f"series {key} has {template_counts[key]} templates; "
                        "run dedup-templates first"
                    )
                    continue
                check = inspect_expansion(template, generated)
                if check.consistent:
                    delta.kept += 1
                    continue
                delta.details.append(
                    f"regenerate {template.row.label()}: missing={check.missing_numbers} "
                    f"mismatched={len(check.mismatched)} surplus={len(check.surplus)} "
                    f"month_collisions={len(check.month_collisions)}"
                )
            else:
                delta.details.append(
                    f"regenerate {template.row.label()}: replacing {len(generated)} row(s)"
                )
            delta.regenerations.append(
                Regeneration(template=template, stale=generated, fresh=expand(template))
            )
        return delta

    def apply(self, delta: Delta) -> list[WriteResult]:
        results: list[WriteResult] = []
        for plan in delta.regenerations:
            template_id = plan.template.row.id
            for row in plan.stale:
                results.append(self.client.delete(row.id))
            try:
                current = self.client.get(template_id)
            except FetchError as exc:
                results.append(self._vanished(template_id, str(exc)))
                continue
            if current is None or not current.is_template:
                results.append(self._vanished(template_id, "template disappeared before regeneration"))
                continue
            try:
                template = Template.from_row(current)
            except MalformedTemplateError as exc:
                logger.warning(f"template_skipped: {exc}")
                delta.skipped.append(current)
                continue
            for row in expand(template):
                results.append(self.client.insert(row))
        return results

    def _vanished(self, template_id: Optional[str], reason: str) -> WriteResult:
        logger.warning(f"regeneration_failed: template={template_id} error={reason}")
        error = RowWriteError(WriteAction.insert, template_id, reason)
        return WriteResult(WriteAction.insert, template_id, error=error)


class BackfillJob(ReconciliationJob):
    """Insert installments a template implies but the ledger lacks."""

    name = "backfill"

    def __init__(
        self,
        client: LedgerClient,
        kind: TransactionKind = TransactionKind.expense,
    ) -> None:
        super().__init__(client)
        self.kind = kind

    def fetch(self) -> list[LedgerRow]:
        return self.client.query(LedgerQuery().eq("kind", self.kind).order("created_at"))

    def compute(self, rows: list[LedgerRow]) -> Delta:
        templates, malformed = _split_templates(rows)
        series = _series(rows)
        template_counts: dict[tuple[str, str], int] = defaultdict(int)
        for t in templates:
            template_counts[t.row.series_key] += 1

        delta = Delta(skipped=malformed)
        for template in templates:
            key = template.row.series_key
            if template_counts[key] > 1:
                delta.details.append(
                    f"series {key} has {template_counts[key]} templates; "
                    "run dedup-templates first"
                )
                continue
            generated = [r for r in series[key] if not r.is_template]
            missing = missing_installments(template, generated)
            if not missing:
                delta.kept += 1
                continue
            delta.details.append(
                f"backfill {template.row.label()}: installments "
                f"{[r.installment_number for r in missing]}"
            )
            delta.inserts.extend(missing)
        return delta


Transform = Callable[[LedgerRow], dict[str, Any]]


class FieldCorrectionJob(ReconciliationJob):
    """Apply a pure field transform to every row a query matches.

    ``transform`` returns the fields to write; rows whose values already
    match are left alone so re-runs write nothing.
    """

    def __init__(
        self,
        client: LedgerClient,
        query: LedgerQuery,
        transform: Transform,
        name: str = "field-correction",
    ) -> None:
        super().__init__(client)
        self.query = query
        self.transform = transform
        self.name = name

    def fetch(self) -> list[LedgerRow]:
        return self.client.query(self.query)

    def compute(self, rows: list[LedgerRow]) -> Delta:
        delta = Delta()
        for row in rows:
            changes = row.changed_fields(**self.transform(row))
            if not changes:
                delta.kept += 1
                continue
            delta.updates.append((row, changes))
            delta.details.append(f"update {row.label()}: {changes}")
        return delta


def sector_relabel_job(
    client: LedgerClient,
    description_contains: str,
    sector: str,
    kind: TransactionKind = TransactionKind.expense,
) -> FieldCorrectionJob:
    query = LedgerQuery().eq("kind", kind).contains("description", description_contains)
    return FieldCorrectionJob(
        client, query, lambda row: {"sector": sector}, name="relabel-sector"
    )


def category_relabel_job(
    client: LedgerClient, old_category: str, new_category: str
) -> FieldCorrectionJob:
    query = LedgerQuery().eq("category", old_category)
    return FieldCorrectionJob(
        client, query, lambda row: {"category": new_category}, name="relabel-category"
    )


class DateShiftJob(FieldCorrectionJob):
    """Move matching templates to a target month and re-date their installments.

    The day of month comes from ``anchor_day`` when given, otherwise from the
    template's current date; each installment is rolled forward from the new
    anchor by its installment number.
    """

    def __init__(
        self,
        client: LedgerClient,
        description_contains: str,
        target_year: int,
        target_month: int,
        anchor_day: Optional[int] = None,
        kind: TransactionKind = TransactionKind.expense,
    ) -> None:
        if not 1 <= target_month <= 12:
            raise ValueError(f"target_month must be 1..12, got {target_month}")
        if anchor_day is not None and not 1 <= anchor_day <= 31:
            raise ValueError(f"anchor_day must be 1..31, got {anchor_day}")
        query = (
            LedgerQuery()
            .eq("kind", kind)
            .eq("is_template", True)
            .eq("installment_number", 1)
            .contains("description", description_contains)
        )
        super().__init__(client, query, lambda row: {}, name="shift-date")
        self.target_year = target_year
        self.target_month = target_month
        self.anchor_day = anchor_day
        self.kind = kind

    def fetch(self) -> list[LedgerRow]:
        templates = self.client.query(self.query)
        rows = list(templates)
        seen = {t.id for t in templates}
        for key in dict.fromkeys((t.kind, t.description, t.cost_center_id) for t in templates):
            for row in self.client.query(
                series_query(*key).not_null("installment_number").order("installment_number")
            ):
                if row.id not in seen:
                    seen.add(row.id)
                    rows.append(row)
        return rows

    def compute(self, rows: list[LedgerRow]) -> Delta:
        templates, malformed = _split_templates(rows)
        series = _series(rows)
        template_counts: dict[tuple[str, str], int] = defaultdict(int)
        for t in templates:
            template_counts[t.row.series_key] += 1

        delta = Delta(skipped=malformed)
        for template in templates:
            key = template.row.series_key
            if template_counts[key] > 1:
                delta.details.append(
                    f"series {key} has {template_counts[key]} templates; "
                    "run dedup-templates first"
                )
                continue
            day = self.anchor_day or template.anchor.day
            new_anchor = roll_forward(self.target_year, self.target_month, day, 0)
            members = [template.row] + [r for r in series[key] if not r.is_template]
            for row in members:
                number = row.installment_number or 1
                target = roll_forward(new_anchor.year, new_anchor.month, day, number - 1)
                changes = row.changed_fields(date=target)
                if not changes:
                    delta.kept += 1
                    continue
                delta.updates.append((row, changes))
                delta.details.append(f"re-date {row.label()} -> {target.isoformat()}")
        return delta


__all__ = [
    "Delta",
    "JobReport",
    "ReconciliationJob",
    "InstallmentDedupJob",
    "TemplateDedupJob",
    "RegenerationJob",
    "BackfillJob",
    "FieldCorrectionJob",
    "DateShiftJob",
    "sector_relabel_job",
    "category_relabel_job",
]
