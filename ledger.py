"""Row types shared by the installment engine and the ledger client.

``LedgerRow`` mirrors one stored ``financial_transactions`` row, legacy rows
included, so ``installment_number`` stays optional. ``Template`` is the only
shape the generator accepts: it can only be built through
``Template.from_row``, which guarantees a usable ``duration_months``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from models import LedgerTransaction, TransactionKind


class MalformedTemplateError(ValueError):
    """A row flagged as template has no usable duration."""

    def __init__(self, row: "LedgerRow") -> None:
        super().__init__(
            f"Template {row.id} ({row.description!r}, center={row.cost_center_id}) "
            f"has unusable duration_months={row.duration_months!r}"
        )
        self.row = row


# LedgerRow field -> ORM attribute
FIELD_COLUMNS: dict[str, str] = {
    "id": "id",
    "kind": "type",
    "status": "status",
    "cost_center_id": "cost_center_id",
    "equipment_id": "equipment_id",
    "value": "value",
    "date": "date",
    "category": "category",
    "sector": "sector",
    "description": "description",
    "payment_method": "payment_method",
    "reference": "reference",
    "is_template": "is_fixed",
    "duration_months": "fixed_duration_months",
    "installment_number": "installment_number",
    "created_at": "created_at",
}


@dataclass(frozen=True)
class LedgerRow:
    kind: TransactionKind
    cost_center_id: str
    value: Decimal
    date: date
    description: str
    status: Optional[str] = None
    equipment_id: Optional[str] = None
    category: Optional[str] = None
    sector: Optional[str] = None
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    is_template: bool = False
    duration_months: Optional[int] = None
    installment_number: Optional[int] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def series_key(self) -> tuple[str, str]:
        return (self.description, self.cost_center_id)

    def label(self) -> str:
        number = self.installment_number if self.installment_number is not None else "-"
        return (
            f"{self.description} [{self.cost_center_id}] {self.date.isoformat()} "
            f"value={self.value} n={number} id={self.id}"
        )

    def changed_fields(self, **fields: Any) -> dict[str, Any]:
        return {k: v for k, v in fields.items() if getattr(self, k) != v}

    def with_fields(self, **fields: Any) -> "LedgerRow":
        return replace(self, **fields)


@dataclass(frozen=True)
class Template:
    row: LedgerRow
    duration_months: int

    @classmethod
    def from_row(cls, row: LedgerRow) -> "Template":
        if not row.is_template:
            raise ValueError(f"Row {row.id} is not a template")
        duration = row.duration_months
        if duration is None or duration < 1:
            raise MalformedTemplateError(row)
        return cls(row=row, duration_months=duration)

    @property
    def anchor(self) -> date:
        return self.row.date

    @property
    def value(self) -> Decimal:
        return self.row.value


def row_from_model(obj: LedgerTransaction) -> LedgerRow:
    return LedgerRow(
        **{field: getattr(obj, column) for field, column in FIELD_COLUMNS.items()}
    )


def row_to_values(row: LedgerRow, *, include_id: bool = False) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field, column in FIELD_COLUMNS.items():
        value = getattr(row, field)
        if field == "id" and not include_id:
            continue
        if field == "created_at" and value is None:
            continue
        values[column] = value
    if values.get("id") is None:
        values.pop("id", None)
    return values


def fields_to_values(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - set(FIELD_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown ledger fields: {', '.join(sorted(unknown))}")
    return {FIELD_COLUMNS[k]: v for k, v in fields.items()}
