"""
Integration tests for the SACCO Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from sacco_ledger.api import create_app
from sacco_ledger.config import SaccoConfig
from sacco_ledger.storage import InMemoryStorage
from sacco_ledger.system import SaccoSystem


ADMIN = {"X-Caller-Id": "admin_1", "X-Caller-Role": "admin"}


def member(account_ids, user_id="user_1"):
    return {"X-Caller-Id": user_id, "X-Caller-Role": "member", "X-Caller-Accounts": ",".join(account_ids)}


@pytest.fixture
def system():
    """In-memory system shared by the app and the test"""
    return SaccoSystem(storage=InMemoryStorage(), config=SaccoConfig(currency="UGX"))


@pytest.fixture
def client(system):
    return TestClient(create_app(system))


def open_account(client, owner_id="user_1", holder_name="Jane Nakato", account_number=None):
    r = client.post("/accounts", json={
        "owner_id": owner_id,
        "holder_name": holder_name,
        "account_number": account_number
    }, headers=ADMIN)
    assert r.status_code == 201
    return r.json()


def deposit(client, account_id, amount):
    r = client.post("/transactions", json={
        "account_id": account_id, "transaction_type": "deposit", "amount": amount
    }, headers=member([account_id]))
    assert r.status_code == 201
    r = client.post(f"/transactions/{r.json()['id']}/approve", headers=ADMIN)
    assert r.status_code == 200
    return r.json()


class TestHealthEndpoints:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "SACCO Ledger API"
        assert "loans" in data["endpoints"]


class TestCallerIdentity:

    def test_missing_caller_is_unauthorized(self, client):
        r = client.get("/accounts")
        assert r.status_code == 401

    def test_unknown_role_is_rejected(self, client):
        r = client.get("/accounts", headers={"X-Caller-Id": "user_1", "X-Caller-Role": "teller"})
        assert r.status_code == 400

    def test_member_cannot_use_admin_routes(self, client):
        account = open_account(client)
        headers = member([account["id"]])

        assert client.get("/accounts", headers=headers).status_code == 403
        assert client.post("/admin/batch/welfare", headers=headers).status_code == 403
        r = client.post("/accounts", json={"owner_id": "user_1", "holder_name": "Me"}, headers=headers)
        assert r.status_code == 403

    def test_member_sees_only_own_accounts(self, client):
        mine = open_account(client, "user_1", "Jane Nakato")
        theirs = open_account(client, "user_2", "Peter Okello")
        headers = member([mine["id"]])

        assert client.get(f"/accounts/{mine['id']}", headers=headers).status_code == 200
        assert client.get(f"/accounts/{theirs['id']}", headers=headers).status_code == 403
        r = client.post("/transactions", json={
            "account_id": theirs["id"], "transaction_type": "deposit", "amount": "1000"
        }, headers=headers)
        assert r.status_code == 403


class TestTransactionFlow:

    def test_deposit_and_withdraw(self, client):
        account = open_account(client)
        approved = deposit(client, account["id"], "10,000")
        assert approved["status"] == "approved"
        assert approved["balance_after"] == "10000"

        r = client.post("/transactions", json={
            "account_id": account["id"], "transaction_type": "withdrawal", "amount": "4000"
        }, headers=member([account["id"]]))
        client.post(f"/transactions/{r.json()['id']}/approve", headers=ADMIN)

        data = client.get(f"/accounts/{account['id']}", headers=member([account["id"]])).json()
        assert data["balance"] == "6000"
        assert data["total_savings"] == "10000"

    def test_overdraft_is_a_conflict(self, client, system):
        account = open_account(client)
        deposit(client, account["id"], "3000")
        r = client.post("/transactions", json={
            "account_id": account["id"], "transaction_type": "withdrawal", "amount": "5000"
        }, headers=member([account["id"]]))

        r = client.post(f"/transactions/{r.json()['id']}/approve", headers=ADMIN)

        assert r.status_code == 409
        assert r.json()["error"] == "InsufficientFundsError"
        assert str(system.ledger.require_account(account["id"]).balance.amount) == "3000"

    def test_invalid_amount_is_bad_request(self, client):
        account = open_account(client)
        r = client.post("/transactions", json={
            "account_id": account["id"], "transaction_type": "deposit", "amount": "-50"
        }, headers=member([account["id"]]))
        assert r.status_code == 400
        assert r.json()["error"] == "ValidationError"

    def test_unknown_transaction(self, client):
        assert client.post("/transactions/missing/approve", headers=ADMIN).status_code == 404
        assert client.get("/transactions/missing", headers=ADMIN).status_code == 404

    def test_delete_reverses_and_receipt_number(self, client):
        account = open_account(client)
        first = deposit(client, account["id"], "5000")
        second = deposit(client, account["id"], "2000")

        r = client.put(f"/transactions/{first['id']}/receipt", json={"receipt_number": "R-1"}, headers=ADMIN)
        assert r.json()["receipt_number"] == "R-1"

        assert client.delete(f"/transactions/{second['id']}", headers=ADMIN).status_code == 204
        data = client.get(f"/accounts/{account['id']}", headers=ADMIN).json()
        assert data["balance"] == "5000"


class TestLoanFlow:

    def test_apply_approve_disburse_repay(self, client):
        account = open_account(client)
        headers = member([account["id"]])
        deposit(client, account["id"], "50000")

        r = client.post("/loans", json={"account_id": account["id"], "amount": "100000"}, headers=headers)
        assert r.status_code == 201
        loan = r.json()
        assert loan["total_amount"] == "102000"

        assert client.post(f"/loans/{loan['id']}/approve", headers=headers).status_code == 403
        assert client.post(f"/loans/{loan['id']}/approve", headers=ADMIN).json()["status"] == "active"

        r = client.post(f"/loans/{loan['id']}/disburse", headers=ADMIN)
        assert r.json()["loan"]["status"] == "disbursed"
        client.post(f"/transactions/{r.json()['transaction']['id']}/approve", headers=ADMIN)

        r = client.get(f"/loans/{loan['id']}/breakdown", params={"amount": "51000"}, headers=headers)
        assert r.json() == {"principal_portion": "50000", "interest_portion": "1000"}

        r = client.post("/transactions", json={
            "account_id": account["id"], "transaction_type": "loan_repayment",
            "amount": "102000", "loan_id": loan["id"]
        }, headers=headers)
        client.post(f"/transactions/{r.json()['id']}/approve", headers=ADMIN)

        data = client.get(f"/loans/{loan['id']}", headers=headers).json()
        assert data["status"] == "fully_paid"
        assert data["outstanding_balance"] == "0"

    def test_pending_guarantor_blocks_approval(self, client):
        applicant = open_account(client, "user_1", "Jane Nakato")
        guarantor = open_account(client, "user_2", "Peter Okello")
        deposit(client, applicant["id"], "50000")
        deposit(client, guarantor["id"], "80000")

        r = client.post("/loans", json={
            "account_id": applicant["id"], "amount": "40000", "guarantor_account_id": guarantor["id"]
        }, headers=member([applicant["id"]]))
        loan = r.json()

        r = client.post(f"/loans/{loan['id']}/approve", headers=ADMIN)
        assert r.status_code == 409
        assert r.json()["error"] == "GuarantorPendingError"

        guarantor_headers = member([guarantor["id"]], user_id="user_2")
        assert client.get(f"/loans/{loan['id']}", headers=guarantor_headers).status_code == 200
        r = client.post(f"/loans/{loan['id']}/guarantor/respond", json={
            "guarantor_account_id": guarantor["id"], "decision": "approved"
        }, headers=guarantor_headers)
        assert r.json()["guarantor_status"] == "approved"
        assert client.post(f"/loans/{loan['id']}/approve", headers=ADMIN).status_code == 200

    def test_unknown_loan(self, client):
        assert client.get("/loans/missing", headers=ADMIN).status_code == 404


class TestAdminEndpoints:

    def test_weekly_welfare_batch(self, client):
        account = open_account(client)
        deposit(client, account["id"], "5000")

        r = client.post("/admin/batch/welfare", json={"as_of": "2024-03-27T09:00:00+00:00"}, headers=ADMIN)

        assert r.status_code == 200
        assert r.json()["processed"] == 1
        r = client.get(f"/accounts/{account['id']}/welfare", headers=ADMIN)
        assert r.json()["total"] == "2000"
        assert r.json()["entries"][0]["week_date"] == "2024-03-24"

    def test_batch_without_body(self, client):
        r = client.post("/admin/batch/overdue-interest", headers=ADMIN)
        assert r.status_code == 200
        assert r.json()["job"] == "apply_overdue_interest"

    def test_reminders(self, client):
        account = open_account(client)
        r = client.post("/admin/reminders/savings", headers=ADMIN)
        assert r.json() == {"created": 1}

        r = client.get(f"/accounts/{account['id']}/reminders", params={"unread_only": True},
                       headers=member([account["id"]]))
        reminders = r.json()["reminders"]
        assert len(reminders) == 1

        r = client.post(f"/accounts/{account['id']}/reminders/{reminders[0]['id']}/read",
                        headers=member([account["id"]]))
        assert r.json()["is_read"]
        assert client.delete(f"/admin/reminders/{reminders[0]['id']}", headers=ADMIN).status_code == 204
        assert client.delete(f"/admin/reminders/{reminders[0]['id']}", headers=ADMIN).status_code == 404

    def test_audit_verify(self, client):
        account = open_account(client)
        deposit(client, account["id"], "5000")

        r = client.get("/admin/audit/verify", headers=ADMIN)
        assert r.status_code == 200
        assert r.json()["valid"]
        assert r.json()["total_events"] >= 3
