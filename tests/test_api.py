"""
Integration tests for the Cooperative Banking API
Tests end-to-end workflows using FastAPI TestClient
"""

import csv
import io
import pytest
from fastapi.testclient import TestClient

from coop_banking.api import create_app
from coop_banking.api.dependencies import set_coop_system


@pytest.fixture
def client(system):
    """Test client served by an in-memory cooperative"""
    set_coop_system(system)
    yield TestClient(create_app())
    set_coop_system(None)


def apply(client, user_id="USER001", amount="10000", term_months=12):
    r = client.post("/loans", json={
        "user_id": user_id,
        "amount": amount,
        "term_months": term_months,
        "purpose": "Greenhouse"
    })
    assert r.status_code == 201
    return r.json()


def approve(client, loan_id, rate="12"):
    r = client.post(f"/loans/{loan_id}/decision", json={
        "status": "approved",
        "approved_by": "MGR001",
        "interest_rate": rate
    })
    assert r.status_code == 200
    return r.json()


class TestHealthEndpoints:
    """Basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert "loans" in r.json()["endpoints"]


class TestLoanFlow:
    """Application and decision endpoints"""

    def test_apply(self, client):
        loan = apply(client)

        assert loan["status"] == "pending"
        assert loan["amount"] == "10000.00"
        assert loan["monthly_payment"] == "0"
        assert loan["approved_at"] is None

    def test_apply_unknown_user(self, client):
        r = client.post("/loans", json={"user_id": "GHOST", "amount": "100", "term_months": 6})
        assert r.status_code == 404
        assert r.json()["detail"]["kind"] == "NotFound"

    @pytest.mark.parametrize("amount", ["-5", "1" + "0" * 30, "100.005"])
    def test_apply_invalid_amount(self, client, amount):
        r = client.post("/loans", json={"user_id": "USER001", "amount": amount, "term_months": 6})
        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "ValidationError"

    def test_approve_with_out_of_range_rate(self, client):
        loan_id = apply(client)["id"]
        r = client.post(f"/loans/{loan_id}/decision", json={
            "status": "approved", "approved_by": "MGR001", "interest_rate": "1e40"
        })

        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "ValidationError"
        assert client.get(f"/loans/{loan_id}").json()["status"] == "pending"

    def test_approve(self, client):
        loan = approve(client, apply(client)["id"])

        assert loan["status"] == "active"
        assert loan["monthly_payment"] == "888.49"
        assert loan["total_amount"] == "10661.88"
        assert loan["remaining_balance"] == "10661.88"
        assert loan["approved_by"] == "MGR001"

    def test_reject(self, client):
        loan_id = apply(client)["id"]
        r = client.post(f"/loans/{loan_id}/decision", json={"status": "rejected", "approved_by": "MGR002"})

        assert r.status_code == 200
        assert r.json()["status"] == "rejected"
        assert r.json()["approved_at"] is None

    def test_approve_without_rate(self, client):
        loan_id = apply(client)["id"]
        r = client.post(f"/loans/{loan_id}/decision", json={"status": "approved", "approved_by": "MGR001"})

        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "MissingArgument"

    def test_decide_twice(self, client):
        loan_id = apply(client)["id"]
        approve(client, loan_id)
        r = client.post(f"/loans/{loan_id}/decision", json={"status": "rejected", "approved_by": "MGR001"})

        assert r.status_code == 409
        assert r.json()["detail"]["kind"] == "InvalidState"

    def test_get_and_list(self, client):
        first = apply(client)
        second = apply(client, user_id="USER002", amount="500", term_months=6)
        approve(client, first["id"])

        assert client.get(f"/loans/{first['id']}").json()["status"] == "active"
        assert client.get("/loans").json()["count"] == 2

        active = client.get("/loans", params={"status": "active"}).json()["loans"]
        assert [x["id"] for x in active] == [first["id"]]

        user_loans = client.get("/users/USER002/loans").json()["loans"]
        assert [x["id"] for x in user_loans] == [second["id"]]

    def test_list_invalid_status(self, client):
        r = client.get("/loans", params={"status": "lost"})
        assert r.status_code == 400

    def test_get_unknown_loan(self, client):
        r = client.get("/loans/missing")
        assert r.status_code == 404

    def test_installments(self, client):
        loan_id = approve(client, apply(client)["id"])["id"]
        r = client.get(f"/loans/{loan_id}/installments")

        assert r.status_code == 200
        rows = r.json()["installments"]
        assert [x["installment_number"] for x in rows] == list(range(1, 13))
        assert rows[0]["amount"] == "888.49"
        assert rows[0]["due_date"].startswith("2024-02-15")

    def test_installments_unknown_loan(self, client):
        assert client.get("/loans/missing/installments").status_code == 404


class TestPaymentFlow:
    """Installment payment endpoints"""

    def test_partial_then_full_payment(self, client):
        loan_id = approve(client, apply(client, amount="1000")["id"], rate="10")["id"]
        installment = client.get(f"/loans/{loan_id}/installments").json()["installments"][0]
        assert installment["amount"] == "87.92"

        r = client.post(f"/installments/{installment['id']}/payments",
                        json={"paid_amount": "50.00", "recorded_by": "CLERK01"})
        assert r.status_code == 200
        assert r.json()["is_paid"] is False
        assert r.json()["paid_at"] is None
        assert r.json()["remaining_amount"] == "37.92"

        r = client.post(f"/installments/{installment['id']}/payments",
                        json={"paid_amount": "37.92", "recorded_by": "CLERK01"})
        assert r.json()["is_paid"] is True
        assert r.json()["paid_at"] is not None

        assert client.get(f"/loans/{loan_id}").json()["remaining_balance"] == "967.12"

    def test_overpayment(self, client):
        loan_id = approve(client, apply(client)["id"])["id"]
        installment = client.get(f"/loans/{loan_id}/installments").json()["installments"][0]

        r = client.post(f"/installments/{installment['id']}/payments",
                        json={"paid_amount": "900.00", "recorded_by": "CLERK01"})
        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "OverpaymentError"

    def test_unknown_installment(self, client):
        r = client.post("/installments/missing/payments", json={"paid_amount": "1", "recorded_by": "CLERK01"})
        assert r.status_code == 404

    def test_pending_and_overdue(self, client):
        approve(client, apply(client)["id"])

        assert client.get("/installments/pending").json()["count"] == 12
        overdue = client.get("/installments/overdue", params={"as_of": "2024-03-20T00:00:00"}).json()
        assert overdue["count"] == 2
        assert client.get("/installments/overdue").json()["count"] == 0


class TestReportEndpoint:
    """Financial report endpoint"""

    def test_empty_report(self, client):
        r = client.get("/reports/financial", params={"start_date": "2024-01-01", "end_date": "2024-12-31"})

        assert r.status_code == 200
        data = r.json()
        assert data["loans"]["total_disbursed"] == "0.00"
        assert data["loans"]["active_loans"] == 0
        assert data["installments"]["collection_rate"] == "0.00"

    def test_report_with_loan(self, client):
        approve(client, apply(client)["id"])
        r = client.get("/reports/financial", params={"start_date": "2024-01-01", "end_date": "2024-01-31"})

        data = r.json()
        assert data["period"]["start_date"] == "2024-01-01T00:00:00+00:00"
        assert data["loans"]["total_disbursed"] == "10000.00"
        assert data["loans"]["outstanding_principal"] == "10661.88"

    def test_csv_format(self, client):
        r = client.get("/reports/financial",
                       params={"start_date": "2024-01-01", "end_date": "2024-01-31", "format": "csv"})

        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        rows = list(csv.reader(io.StringIO(r.text)))
        assert rows[0] == ["section", "metric", "value"]

    def test_json_format(self, client):
        r = client.get("/reports/financial",
                       params={"start_date": "2024-01-01", "end_date": "2024-01-31", "format": "json"})
        assert r.json()["savings"]["total_balance"] == "0.00"

    def test_invalid_window(self, client):
        r = client.get("/reports/financial", params={"start_date": "2024-02-01", "end_date": "2024-01-01"})
        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "ValidationError"

    def test_invalid_format(self, client):
        r = client.get("/reports/financial",
                       params={"start_date": "2024-01-01", "end_date": "2024-01-31", "format": "xml"})
        assert r.status_code == 400

    def test_missing_dates(self, client):
        assert client.get("/reports/financial").status_code == 422
