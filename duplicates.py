"""Duplicate grouping and keep-policies for ledger rows.

Public surface:
- ``resolve``: group rows by a key and split them into keep/remove lists with
  exactly one survivor per group.
- ``installment_key`` / ``keep_oldest``: installment identity, oldest wins.
- ``template_key`` / ``keep_largest_amount``: one template per description and
  cost center, largest magnitude wins, newest on ties.
- ``cascade_rows``: installments to delete together with a removed template.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ledger import LedgerRow, Template
from recurrence import claims

InstallmentKey = tuple[str, str, object, Decimal, Optional[int]]
TemplateKey = tuple[str, str]


@dataclass
class Resolution:
    keep: list[LedgerRow] = field(default_factory=list)
    remove: list[LedgerRow] = field(default_factory=list)
    # survivor id -> rows removed in its favour
    removed_for: dict[Optional[str], list[LedgerRow]] = field(default_factory=dict)

    @property
    def duplicate_groups(self) -> int:
        return len(self.removed_for)


def resolve(
    rows: Iterable[LedgerRow],
    key_of: Callable[[LedgerRow], Hashable],
    keep: Callable[[Sequence[LedgerRow]], LedgerRow],
) -> Resolution:
    groups: dict[Hashable, list[LedgerRow]] = {}
    for row in rows:
        groups.setdefault(key_of(row), []).append(row)

    result = Resolution()
    for group in groups.values():
        if len(group) == 1:
            result.keep.append(group[0])
            continue
        survivor_index = group.index(keep(group))
        losers = [r for i, r in enumerate(group) if i != survivor_index]
        survivor = group[survivor_index]
        result.keep.append(survivor)
        result.remove.extend(losers)
        result.removed_for[survivor.id] = losers
    return result


def installment_key(row: LedgerRow) -> InstallmentKey:
    # Legacy rows (installment_number None) only collide with each other.
    return (
        row.description,
        row.cost_center_id,
        row.date,
        row.value,
        row.installment_number,
    )


def template_key(row: LedgerRow) -> TemplateKey:
    return row.series_key


def _created_or(row: LedgerRow, default: datetime) -> datetime:
    return row.created_at if row.created_at is not None else default


def keep_oldest(group: Sequence[LedgerRow]) -> LedgerRow:
    return min(
        group,
        key=lambda r: (_created_or(r, datetime.max), r.id or ""),
    )


def keep_largest_amount(group: Sequence[LedgerRow]) -> LedgerRow:
    return max(
        group,
        key=lambda r: (abs(r.value), _created_or(r, datetime.min), r.id or ""),
    )


def resolve_installments(rows: Iterable[LedgerRow]) -> Resolution:
    return resolve(rows, installment_key, keep_oldest)


def resolve_templates(templates: Iterable[LedgerRow]) -> Resolution:
    return resolve(
        (t for t in templates if t.is_template), template_key, keep_largest_amount
    )


def cascade_rows(
    removed: Template, survivor: Template, rows: Iterable[LedgerRow]
) -> list[LedgerRow]:
    """Installments that belong to ``removed`` and not to ``survivor``.

    A generated row belongs to a template when it shares its description, cost
    center and value. Rows that are exactly part of the survivor's expansion
    stay; leftover duplicates among them are the installment dedup's job.
    """
    key = removed.row.series_key
    return [
        row
        for row in rows
        if not row.is_template
        and row.series_key == key
        and row.value == removed.value
        and not claims(survivor, row)
    ]


__all__ = [
    "Resolution",
    "resolve",
    "installment_key",
    "template_key",
    "keep_oldest",
    "keep_largest_amount",
    "resolve_installments",
    "resolve_templates",
    "cascade_rows",
]
