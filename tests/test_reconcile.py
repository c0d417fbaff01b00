import os
import runpy
import subprocess
import sys
from pathlib import Path

from sqlalchemy import update

import crud
import loans
from models import AssetItemIn, AssetModelIn, EmployeeIn, LoanLineIn, StockItemIn
from orm import AssetItemORM, StockItemORM

ROOT = Path(__file__).resolve().parents[1]
SCRIPT = ROOT / "scripts" / "fix_inventory_counters.py"


def _setup(db):
    e = crud.create_employee(db, EmployeeIn(first_name="Alice", last_name="Martin"))
    m = crud.create_asset_model(db, AssetModelIn(type="Cable", brand="Belkin", model_name="HDMI 2m"))
    a = crud.create_asset_item(db, AssetItemIn(asset_model_id=m.id, asset_tag="CAB-001"))
    idle = crud.create_asset_item(db, AssetItemIn(asset_model_id=m.id, asset_tag="CAB-002"))
    s = crud.create_stock_item(db, StockItemIn(asset_model_id=m.id, quantity=20))
    loan = loans.create_loan(db, e.id, "admin-1")
    loans.add_loan_line(db, loan.id, LoanLineIn(asset_item_id=a.id))
    loans.add_loan_line(db, loan.id, LoanLineIn(stock_item_id=s.id, quantity=4))
    return a, idle, s


def _corrupt(db, a, idle, s):
    # what a manual edit in the database could leave behind
    db.execute(update(StockItemORM).where(StockItemORM.id == s.id).values(loaned=11))
    db.execute(update(AssetItemORM).where(AssetItemORM.id == a.id).values(status="EN_STOCK"))
    db.execute(update(AssetItemORM).where(AssetItemORM.id == idle.id).values(status="PRETE"))
    db.commit()


def test_reconcile_on_consistent_data_changes_nothing(db_session):
    _setup(db_session)

    assert loans.reconcile_inventory(db_session) == {"stock_items": [], "asset_items": []}


def test_reconcile_repairs_counters_and_flags(db_session):
    a, idle, s = _setup(db_session)
    _corrupt(db_session, a, idle, s)

    report = loans.reconcile_inventory(db_session)

    assert report["stock_items"] == [{"id": s.id, "loaned_before": 11, "loaned_after": 4}]
    assert sorted(report["asset_items"], key=lambda c: c["id"]) == sorted(
        [
            {"id": a.id, "status_before": "EN_STOCK", "status_after": "PRETE"},
            {"id": idle.id, "status_before": "PRETE", "status_after": "EN_STOCK"},
        ],
        key=lambda c: c["id"],
    )
    assert crud.get_stock_item(db_session, s.id).loaned == 4
    assert crud.get_asset_item(db_session, a.id).status == "PRETE"
    assert crud.get_asset_item(db_session, idle.id).status == "EN_STOCK"


def test_reconcile_ignores_closed_and_deleted_loans(db_session):
    a, idle, s = _setup(db_session)
    e = crud.create_employee(db_session, EmployeeIn(first_name="Bob", last_name="Leroy"))
    done = loans.create_loan(db_session, e.id, "admin-1")
    loans.add_loan_line(db_session, done.id, LoanLineIn(stock_item_id=s.id, quantity=5))
    loans.close_loan(db_session, done.id)
    gone = loans.create_loan(db_session, e.id, "admin-1")
    loans.add_loan_line(db_session, gone.id, LoanLineIn(asset_item_id=idle.id))
    loans.delete_loan(db_session, gone.id, "admin-1")

    assert loans.reconcile_inventory(db_session) == {"stock_items": [], "asset_items": []}
    assert crud.get_stock_item(db_session, s.id).loaned == 4


def test_fix_inventory_counters_script(db_session, monkeypatch):
    a, idle, s = _setup(db_session)
    _corrupt(db_session, a, idle, s)

    monkeypatch.setattr(sys, "argv", [str(SCRIPT), "--dry-run"])
    runpy.run_path(str(SCRIPT), run_name="__main__")
    db_session.expire_all()
    db_session.rollback()
    assert crud.get_stock_item(db_session, s.id).loaned == 11

    monkeypatch.setattr(sys, "argv", [str(SCRIPT)])
    runpy.run_path(str(SCRIPT), run_name="__main__")
    db_session.rollback()
    assert crud.get_stock_item(db_session, s.id).loaned == 4
    assert crud.get_asset_item(db_session, idle.id).status == "EN_STOCK"


def test_use_database_overrides_database_url(monkeypatch):
    monkeypatch.setenv("APP_DATABASE_URL", "postgresql://loans@db.example/loans")
    monkeypatch.setenv("APP_DB_PATH", os.environ["APP_DB_PATH"])
    script = runpy.run_path(str(SCRIPT))

    script["use_database"]("/srv/loans/other.db")

    assert "APP_DATABASE_URL" not in os.environ
    assert os.environ["APP_DB_PATH"] == "/srv/loans/other.db"


def test_fix_inventory_counters_script_db_flag_wins(db_session, tmp_path):
    a, idle, s = _setup(db_session)
    _corrupt(db_session, a, idle, s)

    env = dict(os.environ)
    env["APP_DATABASE_URL"] = f"sqlite:///{(tmp_path / 'elsewhere.db').as_posix()}"
    env["PYTHONPATH"] = str(ROOT)
    result = subprocess.run(
        [sys.executable, str(SCRIPT), "--db", os.environ["APP_DB_PATH"]],
        env=env,
        capture_output=True,
        text=True,
    )

    assert result.returncode == 0, result.stderr
    db_session.rollback()
    assert crud.get_stock_item(db_session, s.id).loaned == 4
