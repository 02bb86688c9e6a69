"""Tests for the FastAPI transactions endpoints."""

from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient

import backend.api as api
from backend.api import app
from backend.db.schema import ensure_schema
from backend.repositories.errors import ConnectivityFailure, TransactionFailure
from backend.repositories.transactions_repository import (
    MONTH_LABELS,
    InMemoryTransactionsRepository,
    SqlTransactionsRepository,
)
from backend.services.transaction_service import TransactionService
from tests.fakes import build_sqlite_engine


client = TestClient(app)


def _use_service(monkeypatch: pytest.MonkeyPatch, repository) -> TransactionService:
    service = TransactionService(repository=repository)
    monkeypatch.setattr(api, "get_transaction_service", lambda: service)
    return service


@pytest.fixture
def service(monkeypatch: pytest.MonkeyPatch) -> TransactionService:
    return _use_service(monkeypatch, InMemoryTransactionsRepository())


def _create(payload: dict[str, object]) -> dict[str, object]:
    response = client.post("/api/transactions", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_reports_ok(service) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_health_reports_unreachable_store(monkeypatch: pytest.MonkeyPatch) -> None:
    class _DownRepository(InMemoryTransactionsRepository):
        def ping(self) -> None:
            raise ConnectivityFailure("down")

    _use_service(monkeypatch, _DownRepository())

    response = client.get("/api/health")

    assert response.status_code == 503
    assert response.json()["detail"] == "database unreachable"


def test_create_transaction_applies_defaults(service) -> None:
    created = _create({"type": "expense", "amount": 42.5, "category": " Food ", "method": "", "date": ""})

    assert created["type"] == "expense"
    assert created["amount"] == 42.5
    assert created["category"] == "Food"
    assert created["method"] == "Cash"
    assert created["date"] == date.today().isoformat()
    assert created["note"] == ""
    assert created["id"]
    assert created["created_at"]


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "gift", "amount": 10, "category": "Food", "date": "2024-01-01"},
        {"type": "expense", "amount": 0, "category": "Food", "date": "2024-01-01"},
        {"type": "expense", "amount": -4, "category": "Food", "date": "2024-01-01"},
        {"type": "expense", "amount": 4, "category": "", "date": "2024-01-01"},
        {"type": "expense", "category": "Food", "date": "2024-01-01"},
    ],
)
def test_create_transaction_rejects_invalid_payload_with_400(service, payload) -> None:
    response = client.post("/api/transactions", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"]
    assert service.list_transactions() == []


def test_get_list_and_delete_transaction(service) -> None:
    created = _create({"type": "income", "amount": "1000.00", "category": "Salary", "date": "2024-03-01"})

    fetched = client.get(f"/api/transactions/{created['id']}")
    listed = client.get("/api/transactions")
    deleted = client.delete(f"/api/transactions/{created['id']}")
    missing = client.get(f"/api/transactions/{created['id']}")
    deleted_again = client.delete(f"/api/transactions/{created['id']}")

    assert fetched.status_code == 200
    assert fetched.json() == created
    assert listed.json() == [created]
    assert deleted.status_code == 204
    assert missing.status_code == 404
    assert missing.json() == {"detail": "transaction not found"}
    assert deleted_again.status_code == 404


def test_list_transactions_returns_empty_array(service) -> None:
    response = client.get("/api/transactions")

    assert response.status_code == 200
    assert response.json() == []


def test_import_is_idempotent_and_reports_counts(service) -> None:
    body = {
        "transactions": [
            {"id": "a", "type": "expense", "amount": 10, "category": "Food", "date": "2024-03-01"},
            {"id": "b", "type": "income", "amount": 20, "category": "Gift", "date": "2024-03-02"},
            {"type": "expense", "amount": 5, "category": "Fun", "date": "2024-03-03"},
        ]
    }

    first = client.post("/api/import", json=body)
    second = client.post("/api/import", json={"transactions": body["transactions"][:2]})

    assert first.status_code == 200
    assert first.json() == {"inserted": 3, "skipped": 0, "total": 3}
    assert second.json() == {"inserted": 0, "skipped": 2, "total": 2}
    assert len(client.get("/api/transactions").json()) == 3


def test_import_accepts_bare_array(service) -> None:
    response = client.post(
        "/api/import",
        json=[{"id": "x", "type": "expense", "amount": 1, "category": "Food", "date": "2024-03-01"}],
    )

    assert response.status_code == 200
    assert response.json() == {"inserted": 1, "skipped": 0, "total": 1}


@pytest.mark.parametrize("body", [{"transactions": []}, {}, []])
def test_import_rejects_empty_payload(service, body) -> None:
    response = client.post("/api/import", json=body)

    assert response.status_code == 400
    assert response.json() == {"detail": "no transactions provided"}


@pytest.mark.parametrize("amount", ["0.004", "0", "-1", "1.005"])
def test_import_rejects_unstorable_amount_with_400(monkeypatch: pytest.MonkeyPatch, amount) -> None:
    engine = build_sqlite_engine()
    ensure_schema(engine)
    service = _use_service(monkeypatch, SqlTransactionsRepository(engine))

    response = client.post(
        "/api/import",
        json=[
            {"id": "ok", "type": "expense", "amount": 10, "category": "Food", "date": "2024-03-01"},
            {"id": "bad", "type": "expense", "amount": amount, "category": "Food", "date": "2024-03-01"},
        ],
    )

    assert response.status_code == 400
    assert "amount" in response.json()["detail"]
    assert service.list_transactions() == []
    assert service.stats().count == 0


def test_import_storage_failure_returns_500(monkeypatch: pytest.MonkeyPatch) -> None:
    class _FailingRepository(InMemoryTransactionsRepository):
        def bulk_import(self, records):
            raise TransactionFailure("Import rolled back: disk full")

    service = _use_service(monkeypatch, _FailingRepository())

    response = client.post(
        "/api/import",
        json={"transactions": [{"id": "a", "type": "expense", "amount": 10, "category": "Food", "date": "2024-03-01"}]},
    )

    assert response.status_code == 500
    assert response.json() == {"detail": "import failed"}
    assert service.list_transactions() == []


def test_stats_and_category_breakdown(service) -> None:
    _create({"type": "income", "amount": 1000, "category": "Salary", "date": "2024-03-01"})
    _create({"type": "expense", "amount": 300, "category": "Rent", "date": "2024-03-02"})
    _create({"type": "expense", "amount": 42.5, "category": "Food", "date": "2024-03-03"})

    stats = client.get("/api/stats").json()
    breakdown = client.get("/api/category-breakdown").json()

    assert stats == {"total_income": 1000.0, "total_expense": 342.5, "balance": 657.5, "count": 3}
    assert breakdown == [{"category": "Rent", "total": 300.0}, {"category": "Food", "total": 42.5}]


def test_monthly_flow_uses_default_for_invalid_months(monkeypatch: pytest.MonkeyPatch) -> None:
    requested: list[int] = []

    class _Repository(InMemoryTransactionsRepository):
        def monthly_flow(self, months: int, *, today: date | None = None):
            requested.append(months)
            return super().monthly_flow(months, today=today)

    _use_service(monkeypatch, _Repository())

    for query in ("", "?months=abc", "?months=30", "?months=0", "?months=12"):
        response = client.get(f"/api/monthly-flow{query}")
        assert response.status_code == 200
        assert response.json() == []

    assert requested == [7, 7, 7, 7, 12]


def test_monthly_flow_returns_current_month_row(service) -> None:
    today = date.today()
    _create({"type": "expense", "amount": 12.5, "category": "Food", "date": today.isoformat()})

    rows = client.get("/api/monthly-flow?months=1").json()

    assert rows == [
        {
            "month": MONTH_LABELS[today.month - 1],
            "year": today.year,
            "income": 0.0,
            "expense": 12.5,
        }
    ]


def test_sql_backed_round_trip(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = build_sqlite_engine()
    ensure_schema(engine)
    _use_service(monkeypatch, SqlTransactionsRepository(engine))

    created = _create({"type": "expense", "amount": "19.99", "category": "Books", "date": "2024-02-29"})

    assert client.get(f"/api/transactions/{created['id']}").json() == created
    assert client.get("/api/category-breakdown").json() == [{"category": "Books", "total": 19.99}]


def test_unknown_api_path_returns_404(service) -> None:
    response = client.get("/api/nope")

    assert response.status_code == 404


def test_static_frontend_serves_files_and_falls_back_to_index(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    (tmp_path / "index.html").write_text("<html>finset</html>", encoding="utf-8")
    (tmp_path / "app.js").write_text("console.log('finset');", encoding="utf-8")
    monkeypatch.setenv("STATIC_DIR", str(tmp_path))

    asset = client.get("/app.js")
    spa_route = client.get("/dashboard/monthly")
    root = client.get("/")

    assert asset.status_code == 200
    assert "console.log" in asset.text
    assert spa_route.status_code == 200
    assert "finset" in spa_route.text
    assert root.status_code == 200


def test_static_frontend_disabled_without_static_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STATIC_DIR", raising=False)

    response = client.get("/")

    assert response.status_code == 404


def test_api_calls_are_logged_with_status(service, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("INFO", logger="backend.api")

    client.get("/api/stats")

    messages = [record.getMessage() for record in caplog.records if record.name == "backend.api"]
    assert any(message.startswith("api_call method=GET path=/api/stats status=200") for message in messages)


def test_unexpected_error_returns_json_500(monkeypatch: pytest.MonkeyPatch) -> None:
    class _BrokenRepository(InMemoryTransactionsRepository):
        def aggregate_stats(self):
            raise RuntimeError("boom")

    _use_service(monkeypatch, _BrokenRepository())
    lenient_client = TestClient(app, raise_server_exceptions=False)

    response = lenient_client.get("/api/stats")

    assert response.status_code == 500
    assert response.json() == {"detail": "internal error"}
