from sqlalchemy.exc import OperationalError

import audit
import db as database

ACTOR = {"X-Actor-Id": "admin-1"}


class _BrokenSession:
    def __init__(self):
        self.rolled_back = False
        self.closed = False

    def add(self, obj):
        pass

    def commit(self):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


def test_record_writes_row_and_redacts_secrets(db_session):
    ok = audit.record(
        "admin-1",
        "update",
        "employees",
        "emp-1",
        old_values={"email": "old@example.com"},
        new_values={"email": "new@example.com", "password": "hunter2"},
    )
    assert ok is True

    logs = audit.list_audit_logs(db_session, table_name="employees")
    assert len(logs) == 1
    log = logs[0]
    assert log.action == "UPDATE"
    assert log.record_id == "emp-1"
    assert log.old_values == {"email": "old@example.com"}
    assert log.new_values == {"email": "new@example.com", "password": "[REDACTED]"}


def test_record_with_missing_fields_is_skipped(db_session, caplog):
    assert audit.record(None, "CREATE", "loans", "loan-1") is False
    assert audit.record("admin-1", "CREATE", "loans", "") is False

    assert audit.list_audit_logs(db_session) == []
    assert "missing audit fields" in caplog.text


def test_record_swallows_database_errors(monkeypatch, caplog):
    broken = _BrokenSession()
    monkeypatch.setattr(database, "SessionLocal", lambda: broken)

    assert audit.record("admin-1", "CREATE", "loans", "loan-1") is False
    assert broken.rolled_back
    assert broken.closed
    assert "audit write failed" in caplog.text


def test_api_writes_audit_after_commit(client):
    r = client.post(
        "/employees", json={"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"}, headers=ACTOR
    )
    assert r.status_code == 201
    employee = r.json()

    r = client.post("/loans", json={"employee_id": employee["id"]}, headers=ACTOR)
    loan = r.json()
    client.patch(f"/loans/{loan['id']}/close", headers=ACTOR)

    r = client.get(f"/audit-logs?table_name=loans&record_id={loan['id']}")
    assert r.status_code == 200
    actions = sorted(log["action"] for log in r.json())
    assert actions == ["CREATE", "UPDATE"]
    assert {log["user_id"] for log in r.json()} == {"admin-1"}

    r = client.get("/audit-logs?table_name=employees")
    assert r.json()[0]["new_values"]["email"] == "ada@example.com"


def test_audit_failure_does_not_change_response(client, monkeypatch):
    r = client.post("/employees", json={"first_name": "Ada", "last_name": "Lovelace"}, headers=ACTOR)
    employee = r.json()

    monkeypatch.setattr(database, "SessionLocal", lambda: _BrokenSession())
    r = client.post("/loans", json={"employee_id": employee["id"]}, headers=ACTOR)
    assert r.status_code == 201
    monkeypatch.undo()

    loan_id = r.json()["id"]
    assert client.get(f"/loans/{loan_id}").status_code == 200
    assert client.get(f"/audit-logs?record_id={loan_id}").json() == []
