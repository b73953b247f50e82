"""Thin client over the ``financial_transactions`` store.

Reads raise ``FetchError``. Single-row writes never raise: each returns a
``WriteResult`` carrying either the written row or a ``RowWriteError`` so
callers aggregate outcomes row by row. Every write commits on its own.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger import FIELD_COLUMNS, LedgerRow, fields_to_values, row_from_model, row_to_values
from models import LedgerTransaction

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for ledger store operations."""


class FetchError(StoreError):
    """A ledger query failed; nothing was written."""


class RowWriteError(StoreError):
    def __init__(self, action: "WriteAction", row_id: Optional[str], reason: str) -> None:
        super().__init__(f"{action.value} failed for row {row_id}: {reason}")
        self.action = action
        self.row_id = row_id
        self.reason = reason


class WriteAction(str, Enum):
    insert = "insert"
    update = "update"
    delete = "delete"


@dataclass(frozen=True)
class WriteResult:
    action: WriteAction
    row_id: Optional[str]
    row: Optional[LedgerRow] = None
    error: Optional[RowWriteError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Condition:
    field: str
    op: str
    value: Any = None


_OPS = {"eq", "neq", "is_null", "not_null", "contains"}


@dataclass(frozen=True)
class LedgerQuery:
    conditions: tuple[Condition, ...] = ()
    order_field: Optional[str] = None
    descending: bool = False
    max_rows: Optional[int] = None

    def _with(self, field: str, op: str, value: Any = None) -> "LedgerQuery":
        if field not in FIELD_COLUMNS:
            raise ValueError(f"Unknown ledger field: {field}")
        return replace(self, conditions=self.conditions + (Condition(field, op, value),))

    def eq(self, field: str, value: Any) -> "LedgerQuery":
        return self._with(field, "eq", value)

    def neq(self, field: str, value: Any) -> "LedgerQuery":
        return self._with(field, "neq", value)

    def is_null(self, field: str) -> "LedgerQuery":
        return self._with(field, "is_null")

    def not_null(self, field: str) -> "LedgerQuery":
        return self._with(field, "not_null")

    def contains(self, field: str, text: str) -> "LedgerQuery":
        """Case-insensitive substring match."""
        return self._with(field, "contains", text)

    def order(self, field: str, *, descending: bool = False) -> "LedgerQuery":
        if field not in FIELD_COLUMNS:
            raise ValueError(f"Unknown ledger field: {field}")
        return replace(self, order_field=field, descending=descending)

    def limit(self, count: int) -> "LedgerQuery":
        if count < 1:
            raise ValueError("limit must be >= 1")
        return replace(self, max_rows=count)

    def describe(self) -> str:
        parts = [f"{c.field} {c.op} {c.value!r}" for c in self.conditions]
        return " and ".join(parts) or "all rows"


def _column(field: str):
    return getattr(LedgerTransaction, FIELD_COLUMNS[field])


def _clause(cond: Condition):
    col = _column(cond.field)
    if cond.op == "eq":
        return col.is_(None) if cond.value is None else col == cond.value
    if cond.op == "neq":
        return col.is_not(None) if cond.value is None else col != cond.value
    if cond.op == "is_null":
        return col.is_(None)
    if cond.op == "not_null":
        return col.is_not(None)
    if cond.op == "contains":
        return col.icontains(cond.value, autoescape=True)
    raise ValueError(f"Unsupported operator {cond.op!r}; expected one of {sorted(_OPS)}")


class LedgerClient:
    def __init__(self, session: Session) -> None:
        self.session = session

    def query(self, q: LedgerQuery) -> list[LedgerRow]:
        stmt = (
            select(LedgerTransaction)
            .where(*[_clause(c) for c in q.conditions])
            .execution_options(populate_existing=True)
        )
        if q.order_field is not None:
            col = _column(q.order_field)
            stmt = stmt.order_by(col.desc() if q.descending else col.asc())
        stmt = stmt.order_by(LedgerTransaction.created_at, LedgerTransaction.id)
        if q.max_rows is not None:
            stmt = stmt.limit(q.max_rows)
        try:
            objs = self.session.scalars(stmt).all()
            return [row_from_model(obj) for obj in objs]
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise FetchError(f"Query failed ({q.describe()}): {exc}") from exc

    def get(self, row_id: str) -> Optional[LedgerRow]:
        rows = self.query(LedgerQuery().eq("id", row_id).limit(1))
        return rows[0] if rows else None

    def insert(self, row: LedgerRow) -> WriteResult:
        obj = LedgerTransaction(**row_to_values(row, include_id=row.id is not None))
        try:
            self.session.add(obj)
            self.session.flush()
            written = row_from_model(obj)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            return self._failed(WriteAction.insert, row.id, exc)
        return WriteResult(WriteAction.insert, written.id, row=written)

    def update(self, row_id: str, fields: dict[str, Any]) -> WriteResult:
        values = fields_to_values(fields)
        stmt = (
            update(LedgerTransaction)
            .where(LedgerTransaction.id == row_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
            if result.rowcount == 0:
                self.session.rollback()
                return self._missing(WriteAction.update, row_id)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            return self._failed(WriteAction.update, row_id, exc)
        return WriteResult(WriteAction.update, row_id)

    def delete(self, row_id: str) -> WriteResult:
        stmt = (
            delete(LedgerTransaction)
            .where(LedgerTransaction.id == row_id)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
            if result.rowcount == 0:
                self.session.rollback()
                return self._missing(WriteAction.delete, row_id)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            return self._failed(WriteAction.delete, row_id, exc)
        return WriteResult(WriteAction.delete, row_id)

    def upsert_batch(self, rows: Sequence[LedgerRow]) -> int:
        """Insert or replace rows by id in one transaction."""
        if not rows:
            return 0
        payloads: list[dict[str, Any]] = []
        for row in rows:
            if row.id is None:
                raise ValueError(f"upsert_batch requires ids: {row.label()}")
            payloads.append(row_to_values(row, include_id=True))

        dialect = self.session.get_bind().dialect.name
        try:
            if dialect in {"postgresql", "sqlite"}:
                insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
                stmt = insert_fn(LedgerTransaction).values(payloads)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[LedgerTransaction.id],
                    set_={
                        col: getattr(stmt.excluded, col)
                        for col in payloads[0]
                        if col != "id"
                    },
                )
                self.session.execute(stmt)
            else:
                for payload in payloads:
                    self.session.merge(LedgerTransaction(**payload))
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(f"Upsert of {len(rows)} rows failed: {exc}") from exc
        return len(payloads)

    def _failed(self, action: WriteAction, row_id: Optional[str], exc: Exception) -> WriteResult:
        error = RowWriteError(action, row_id, str(exc))
        logger.warning(f"ledger_write_failed: action={action.value} id={row_id} error={exc}")
        return WriteResult(action, row_id, error=error)

    def _missing(self, action: WriteAction, row_id: Optional[str]) -> WriteResult:
        error = RowWriteError(action, row_id, "row not found")
        logger.warning(f"ledger_write_failed: action={action.value} id={row_id} error=row not found")
        return WriteResult(action, row_id, error=error)
