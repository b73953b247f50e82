from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from jobs import BackfillJob
from ledger_client import LedgerClient, LedgerQuery, RowWriteError, WriteAction, WriteResult
from models import TransactionKind
from schemas import TemplateIn
from services import FixedExpenseService


def make_client() -> LedgerClient:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return LedgerClient(Session(engine))


def _payload(**overrides) -> TemplateIn:
    data = dict(
        cost_center_id="c1",
        value=Decimal("-500"),
        date=date(2024, 1, 31),
        description="Rent",
        duration_months=3,
    )
    data.update(overrides)
    return TemplateIn(**data)


def test_create_stores_template_and_installments():
    client = make_client()

    created = FixedExpenseService(client).create(_payload())

    assert created.template.is_template
    assert created.template.installment_number == 1
    assert created.template.category == "diversos"
    assert [(r.installment_number, r.date) for r in created.installments] == [
        (2, date(2024, 2, 29)),
        (3, date(2024, 3, 31)),
    ]
    assert created.failures == []
    assert len(client.query(LedgerQuery().eq("description", "Rent"))) == 3


def test_create_rejects_a_second_template_for_the_same_series():
    client = make_client()
    service = FixedExpenseService(client)
    service.create(_payload())

    with pytest.raises(ValueError, match="already exists"):
        service.create(_payload(value=Decimal("-600")))

    service.create(_payload(cost_center_id="c2"))
    assert len(service.list_templates()) == 2


def test_create_returns_installment_failures_for_backfill(monkeypatch):
    client = make_client()
    original_insert = client.insert

    def flaky_insert(row):
        if row.installment_number == 3:
            error = RowWriteError(WriteAction.insert, row.id, "timeout")
            return WriteResult(WriteAction.insert, row.id, error=error)
        return original_insert(row)

    monkeypatch.setattr(client, "insert", flaky_insert)
    created = FixedExpenseService(client).create(_payload())
    monkeypatch.undo()

    assert len(created.installments) == 1
    assert len(created.failures) == 1

    report = BackfillJob(client).run(apply=True)
    assert report.inserted == 1


def test_list_templates_filters_by_kind():
    client = make_client()
    service = FixedExpenseService(client)
    service.create(_payload(description="Rent"))
    service.create(_payload(description="Consulting", kind=TransactionKind.receipt))

    assert [t.description for t in service.list_templates()] == ["Rent"]
    assert [t.description for t in service.list_templates(TransactionKind.receipt)] == [
        "Consulting"
    ]


def test_template_input_rejects_blank_description_and_bad_duration():
    with pytest.raises(ValidationError):
        _payload(description="   ")
    with pytest.raises(ValidationError):
        _payload(duration_months=0)
    assert _payload(description="  Rent ").description == "Rent"
