import os
import tempfile

# ---- test DB / upload dir: must be set before the app modules are imported ----
_TMP_DIR = tempfile.mkdtemp(prefix="loan_tracker_")
os.environ["APP_DB_PATH"] = os.path.join(_TMP_DIR, "test_loans.db")
os.environ["APP_UPLOAD_DIR"] = os.path.join(_TMP_DIR, "signatures")
os.environ.pop("APP_DATABASE_URL", None)

import pytest
from fastapi.testclient import TestClient

import db as database


@pytest.fixture(scope="session")
def app_module():
    import main

    return main


@pytest.fixture()
def client(app_module):
    # captured here so tests can monkeypatch database.SessionLocal for audit only
    session_factory = database.SessionLocal

    def _get_db_override():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app_module.app.dependency_overrides[app_module.get_db] = _get_db_override
    with TestClient(app_module.app) as c:
        yield c
    app_module.app.dependency_overrides.clear()


@pytest.fixture()
def db_session(app_module):
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clean_db(app_module, db_session):
    # children first: audit -> lines -> loans -> inventory -> employees
    from sqlalchemy import delete
    from orm import (
        AssetItemORM,
        AssetModelORM,
        AuditLogORM,
        EmployeeORM,
        LoanLineORM,
        LoanORM,
        StockItemORM,
    )

    for model in (AuditLogORM, LoanLineORM, LoanORM, AssetItemORM, StockItemORM, AssetModelORM, EmployeeORM):
        db_session.execute(delete(model))
    db_session.commit()
    yield
