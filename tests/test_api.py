import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from ledger_client import LedgerClient, LedgerQuery
from main import app, get_db


@pytest.fixture()
def api():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app), SessionLocal
    finally:
        app.dependency_overrides.clear()


RENT = {
    "cost_center_id": "c1",
    "value": "-500.00",
    "date": "2024-01-31",
    "description": "Rent",
    "duration_months": 3,
}


def test_health(api):
    client, _ = api
    assert client.get("/health").json() == {"status": "ok"}


def test_create_and_list_templates(api):
    client, _ = api

    response = client.post("/templates", json=RENT)

    assert response.status_code == 201
    body = response.json()
    assert body["template"]["is_template"] is True
    assert [i["date"] for i in body["installments"]] == ["2024-02-29", "2024-03-31"]
    assert body["failures"] == []

    listed = client.get("/templates").json()
    assert [t["description"] for t in listed] == ["Rent"]


def test_duplicate_template_is_rejected(api):
    client, _ = api
    client.post("/templates", json=RENT)

    response = client.post("/templates", json={**RENT, "value": "-600.00"})

    assert response.status_code == 400
    assert "already exists" in response.json()["detail"]


def test_invalid_template_payload(api):
    client, _ = api
    response = client.post("/templates", json={**RENT, "duration_months": 0})
    assert response.status_code == 422


def test_backfill_job_dry_run_then_execute(api):
    client, SessionLocal = api
    client.post("/templates", json=RENT)
    installments = [
        r.id
        for r in LedgerClient(SessionLocal()).query(LedgerQuery().eq("is_template", False))
    ]
    LedgerClient(SessionLocal()).delete(installments[-1])

    dry = client.post("/jobs/backfill").json()
    applied = client.post("/jobs/backfill", params={"execute": True}).json()
    again = client.post("/jobs/backfill", params={"execute": True}).json()

    assert dry["dry_run"] is True and dry["inserted"] == 1
    assert applied["dry_run"] is False and applied["inserted"] == 1
    assert again["inserted"] == 0
    assert again["kept"] == 1


def test_regenerate_unknown_template_returns_bad_gateway(api):
    client, _ = api
    response = client.post("/jobs/regenerate", params={"template_id": "missing"})
    assert response.status_code == 502


def test_shift_date_and_relabel_jobs(api):
    client, _ = api
    client.post("/templates", json={**RENT, "description": "Aluguel sala"})

    shifted = client.post(
        "/jobs/shift-date",
        params={"execute": True},
        json={
            "description_contains": "aluguel",
            "target_year": 2024,
            "target_month": 4,
            "anchor_day": 31,
        },
    ).json()
    relabeled = client.post(
        "/jobs/relabel-sector",
        params={"execute": True},
        json={"description_contains": "aluguel", "sector": "adm"},
    ).json()
    renamed = client.post(
        "/jobs/relabel-category",
        json={"old_category": "diversos", "new_category": "aluguel"},
    ).json()

    assert shifted["updated"] == 3
    assert relabeled["updated"] == 3
    assert renamed["dry_run"] is True and renamed["updated"] == 3

    templates = client.get("/templates").json()
    assert templates[0]["date"] == "2024-04-30"
    assert templates[0]["sector"] == "adm"
    assert templates[0]["category"] == "diversos"
