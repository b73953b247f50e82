from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from typer.testing import CliRunner

from cli import app
from database import Base
from ledger import LedgerRow
from ledger_client import LedgerClient, LedgerQuery
from models import TransactionKind

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("FIXED_EXPENSES_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)


def make_store(path, *rows: LedgerRow) -> tuple[str, LedgerClient]:
    url = f"sqlite:///{path}"
    engine = create_engine(url)
    Base.metadata.create_all(engine)
    client = LedgerClient(Session(engine))
    for row in rows:
        assert client.insert(row).ok
    return url, client


def _duplicate(row_id: str, created: datetime) -> LedgerRow:
    return LedgerRow(
        kind=TransactionKind.expense,
        cost_center_id="c1",
        value=Decimal("-100"),
        date=date(2024, 3, 10),
        description="Internet",
        installment_number=2,
        id=row_id,
        created_at=created,
    )


def _duplicates() -> list[LedgerRow]:
    return [
        _duplicate("dup-1", datetime(2024, 1, 1)),
        _duplicate("dup-2", datetime(2024, 1, 2)),
        _duplicate("dup-3", datetime(2024, 1, 3)),
    ]


def test_dedup_installments_defaults_to_dry_run(tmp_path):
    url, client = make_store(tmp_path / "ledger.db", *_duplicates())

    result = runner.invoke(app, ["dedup-installments", "--database-url", url])

    assert result.exit_code == 0, result.output
    assert "removed=2" in result.output
    assert "Dry run" in result.output
    assert len(client.query(LedgerQuery())) == 3


def test_dedup_installments_execute_deletes_rows(tmp_path):
    url, client = make_store(tmp_path / "ledger.db", *_duplicates())

    result = runner.invoke(
        app, ["dedup-installments", "--database-url", url, "--execute", "--debug"]
    )

    assert result.exit_code == 0, result.output
    assert "3 candidate row(s)" in result.output
    assert "(execute)" in result.output
    assert [r.id for r in client.query(LedgerQuery())] == ["dup-1"]


def test_regenerate_unknown_template_exits_with_error(tmp_path):
    url, _ = make_store(tmp_path / "ledger.db")

    result = runner.invoke(
        app, ["regenerate", "--template-id", "missing", "--database-url", url]
    )

    assert result.exit_code == 1
    assert "not found" in result.output


def test_unreachable_store_exits_with_error(tmp_path):
    url = f"sqlite:///{tmp_path / 'empty.db'}"

    result = runner.invoke(app, ["backfill", "--database-url", url])

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_shift_date_command_applies_new_month(tmp_path):
    template = LedgerRow(
        kind=TransactionKind.expense,
        cost_center_id="c1",
        value=Decimal("-500"),
        date=date(2024, 1, 31),
        description="Aluguel sala",
        is_template=True,
        duration_months=2,
        installment_number=1,
        id="rent",
    )
    url, client = make_store(tmp_path / "ledger.db", template)

    result = runner.invoke(
        app,
        [
            "shift-date",
            "--description",
            "aluguel",
            "--year",
            "2024",
            "--month",
            "4",
            "--database-url",
            url,
            "--execute",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "updated=1" in result.output
    assert client.get("rent").date == date(2024, 4, 30)


def test_relabel_category_command(tmp_path):
    row = _duplicate("dup-1", datetime(2024, 1, 1)).with_fields(category="luz")
    url, client = make_store(tmp_path / "ledger.db", row)

    result = runner.invoke(
        app,
        ["relabel-category", "--from", "luz", "--to", "energia", "--database-url", url, "--execute"],
    )

    assert result.exit_code == 0, result.output
    assert client.get("dup-1").category == "energia"


def test_migrate_then_verify(tmp_path):
    source_url, _ = make_store(tmp_path / "source.db", *_duplicates())
    target_url, target = make_store(tmp_path / "target.db")

    before = runner.invoke(
        app, ["verify", "--target-url", target_url, "--database-url", source_url]
    )
    migrated = runner.invoke(
        app,
        ["migrate", "--target-url", target_url, "--database-url", source_url, "--batch-size", "2"],
    )
    after = runner.invoke(
        app, ["verify", "--target-url", target_url, "--database-url", source_url]
    )

    assert before.exit_code == 2
    assert "missing in target: 3 row(s)" in before.output
    assert migrated.exit_code == 0, migrated.output
    assert "written=3" in migrated.output
    assert after.exit_code == 0, after.output
    assert "stores match" in after.output
    assert len(target.query(LedgerQuery())) == 3
