"""
Loan lifecycle: creating loans, attaching and detaching items, signatures,
closing and soft-deleting.

Inventory bookkeeping rules:

- an asset item on a line of an active (OPEN, not deleted) loan is PRETE;
  it goes back to EN_STOCK when the line is removed or the loan is closed
  or deleted.
- StockItem.loaned is the sum of the quantities on active lines; every path
  that creates or ends such a line adjusts it in the same transaction as the
  line write.

All checks run before the first write. Availability is checked twice: once
for the error message, and again by the conditional UPDATE that claims the
item, so two requests racing for the same item cannot both win.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Optional, Union
from uuid import uuid4

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

import signatures
from crud import asset_item_to_schema, employee_to_schema, persist, stock_item_to_schema, utcnow
from errors import NotFoundError, ValidationError
from models import BatchDeleteResult, Loan, LoanLine, LoanLineIn, Message
from orm import AssetItemORM, EmployeeORM, LoanLineORM, LoanORM, StockItemORM

logger = logging.getLogger("app.loans")

BATCH_DELETE_MAX = 100

LoanState = Literal["OPEN", "CLOSED", "DELETED"]
SignatureKind = Literal["pickup", "return"]


def loan_state(loan: LoanORM) -> LoanState:
    # soft delete overrides the OPEN/CLOSED status
    if loan.deleted_at is not None:
        return "DELETED"
    return "CLOSED" if loan.status == "CLOSED" else "OPEN"


@dataclass(frozen=True)
class AssetLine:
    asset_item_id: str


@dataclass(frozen=True)
class StockLine:
    stock_item_id: str
    quantity: int


LineSpec = Union[AssetLine, StockLine]


def parse_line_spec(body: LoanLineIn) -> LineSpec:
    if bool(body.asset_item_id) == bool(body.stock_item_id):
        raise ValidationError("specify exactly one of an asset item or a stock item")
    if body.asset_item_id:
        return AssetLine(asset_item_id=body.asset_item_id)

    quantity = 1 if body.quantity is None else body.quantity
    if quantity < 1:
        raise ValidationError("quantity must be at least 1")
    return StockLine(stock_item_id=body.stock_item_id, quantity=quantity)  # type: ignore[arg-type]


def _line_to_schema(l: LoanLineORM) -> LoanLine:
    return LoanLine(
        id=l.id,
        loan_id=l.loan_id,
        asset_item_id=l.asset_item_id,
        stock_item_id=l.stock_item_id,
        quantity=l.quantity,
        asset_item=asset_item_to_schema(l.asset_item) if l.asset_item else None,
        stock_item=stock_item_to_schema(l.stock_item) if l.stock_item else None,
    )


def _loan_to_schema(l: LoanORM) -> Loan:
    return Loan(
        id=l.id,
        employee_id=l.employee_id,
        created_by_id=l.created_by_id,
        status=l.status,  # type: ignore
        opened_at=l.opened_at,
        closed_at=l.closed_at,
        pickup_signature_url=l.pickup_signature_url,
        pickup_signed_at=l.pickup_signed_at,
        return_signature_url=l.return_signature_url,
        return_signed_at=l.return_signed_at,
        deleted_at=l.deleted_at,
        deleted_by_id=l.deleted_by_id,
        employee=employee_to_schema(l.employee) if l.employee else None,
        lines=[_line_to_schema(x) for x in l.lines],
    )


def _locked(db: Session, model, row_id: str):
    stmt = (
        select(model)
        .where(model.id == row_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


def _lock_loan(db: Session, loan_id: str) -> LoanORM:
    loan = _locked(db, LoanORM, loan_id)
    if not loan:
        raise NotFoundError("loan not found")
    return loan


def _require_open(loan: LoanORM, action: str) -> None:
    state = loan_state(loan)
    if state == "DELETED":
        raise ValidationError(f"cannot {action} a deleted loan")
    if state == "CLOSED":
        raise ValidationError(f"cannot {action} a closed loan")


# ---------- Queries ----------
def get_all_loans(
    db: Session,
    *,
    status: Optional[str] = None,
    employee_id: Optional[str] = None,
) -> list[Loan]:
    stmt = select(LoanORM).where(LoanORM.deleted_at.is_(None))
    if status:
        stmt = stmt.where(LoanORM.status == status)
    if employee_id:
        stmt = stmt.where(LoanORM.employee_id == employee_id)
    stmt = stmt.order_by(LoanORM.opened_at.desc())
    return [_loan_to_schema(l) for l in db.execute(stmt).scalars().all()]


def get_loan(db: Session, loan_id: str) -> Loan:
    loan = db.get(LoanORM, loan_id)
    if not loan or loan.deleted_at is not None:
        raise NotFoundError("loan not found")
    return _loan_to_schema(loan)


# ---------- Create ----------
def create_loan(db: Session, employee_id: str, actor_id: str, *, commit: bool = True) -> Loan:
    if not db.get(EmployeeORM, employee_id):
        raise NotFoundError("employee not found")

    loan = LoanORM(
        id=str(uuid4()),
        employee_id=employee_id,
        created_by_id=actor_id,
        status="OPEN",
        opened_at=utcnow(),
    )
    db.add(loan)
    persist(db, commit=commit)
    if commit:
        db.refresh(loan)
    logger.info("loan_id=%s action=create employee_id=%s actor_id=%s", loan.id, employee_id, actor_id)
    return _loan_to_schema(loan)


# ---------- Lines ----------
def _claim_asset_item(db: Session, spec: AssetLine) -> None:
    item = _locked(db, AssetItemORM, spec.asset_item_id)
    if not item:
        raise NotFoundError("asset item not found")
    if item.status != "EN_STOCK":
        raise ValidationError("asset item is not available")

    result = db.execute(
        update(AssetItemORM)
        .where(AssetItemORM.id == spec.asset_item_id, AssetItemORM.status == "EN_STOCK")
        .values(status="PRETE", updated_at=utcnow())
    )
    if result.rowcount != 1:
        raise ValidationError("asset item is not available")


def _claim_stock(db: Session, spec: StockLine) -> None:
    stock = _locked(db, StockItemORM, spec.stock_item_id)
    if not stock:
        raise NotFoundError("stock item not found")
    available = stock.quantity - stock.loaned
    if spec.quantity > available:
        raise ValidationError(f"insufficient quantity: requested {spec.quantity}, available {available}")

    result = db.execute(
        update(StockItemORM)
        .where(
            StockItemORM.id == spec.stock_item_id,
            StockItemORM.quantity - StockItemORM.loaned >= spec.quantity,
        )
        .values(loaned=StockItemORM.loaned + spec.quantity, updated_at=utcnow())
    )
    if result.rowcount != 1:
        db.refresh(stock)
        available = stock.quantity - stock.loaned
        raise ValidationError(f"insufficient quantity: requested {spec.quantity}, available {available}")


def _release_line(db: Session, line: LoanLineORM) -> None:
    """Give the line's item back to inventory. Lines whose item was deleted are skipped."""
    # applied as UPDATE statements so several lines on the same stock item add up
    now = utcnow()
    if line.asset_item_id:
        db.execute(
            update(AssetItemORM)
            .where(AssetItemORM.id == line.asset_item_id)
            .values(status="EN_STOCK", updated_at=now)
        )
    elif line.stock_item_id:
        loaned = db.execute(
            select(StockItemORM.loaned).where(StockItemORM.id == line.stock_item_id)
        ).scalar_one_or_none()
        if loaned is not None and loaned < line.quantity:
            logger.warning(
                "stock_item_id=%s action=release loaned=%s quantity=%s counter drift, run reconcile_inventory",
                line.stock_item_id,
                loaned,
                line.quantity,
            )
        db.execute(
            update(StockItemORM)
            .where(StockItemORM.id == line.stock_item_id)
            .values(
                loaned=case(
                    (StockItemORM.loaned >= line.quantity, StockItemORM.loaned - line.quantity),
                    else_=0,
                ),
                updated_at=now,
            )
        )


def add_loan_line(db: Session, loan_id: str, body: LoanLineIn, *, commit: bool = True) -> LoanLine:
    loan = _lock_loan(db, loan_id)
    _require_open(loan, "add items to")
    spec = parse_line_spec(body)

    try:
        if isinstance(spec, AssetLine):
            _claim_asset_item(db, spec)
            line = LoanLineORM(id=str(uuid4()), asset_item_id=spec.asset_item_id, quantity=1, created_at=utcnow())
        else:
            _claim_stock(db, spec)
            line = LoanLineORM(
                id=str(uuid4()), stock_item_id=spec.stock_item_id, quantity=spec.quantity, created_at=utcnow()
            )
        loan.lines.append(line)
        persist(db, commit=commit)
    except Exception:
        if commit:
            db.rollback()
        raise

    if commit:
        db.refresh(line)
    logger.info("loan_id=%s action=add_line line_id=%s spec=%s", loan_id, line.id, spec)
    return _line_to_schema(line)


def remove_loan_line(db: Session, loan_id: str, line_id: str, *, commit: bool = True) -> Message:
    loan = _lock_loan(db, loan_id)
    _require_open(loan, "modify")

    line = db.get(LoanLineORM, line_id)
    if not line or line.loan_id != loan_id:
        raise NotFoundError("loan line not found")

    try:
        _release_line(db, line)
        loan.lines.remove(line)
        persist(db, commit=commit)
    except Exception:
        if commit:
            db.rollback()
        raise

    logger.info("loan_id=%s action=remove_line line_id=%s", loan_id, line_id)
    return Message(message="loan line removed")


# ---------- Signatures ----------
def _set_signature(
    db: Session,
    loan_id: str,
    kind: SignatureKind,
    source: "str | signatures.UploadedImage | None",
    *,
    commit: bool,
) -> Loan:
    loan = _lock_loan(db, loan_id)
    if loan_state(loan) == "DELETED":
        raise ValidationError("cannot sign a deleted loan")

    old_url = getattr(loan, f"{kind}_signature_url")
    url = signatures.store_signature(source)
    try:
        setattr(loan, f"{kind}_signature_url", url)
        setattr(loan, f"{kind}_signed_at", utcnow())
        persist(db, commit=commit)
    except Exception:
        if commit:
            db.rollback()
        signatures.remove_signature_file(url)
        raise

    if commit:
        # the previous image is only dropped once the new URL is committed
        if old_url != url:
            signatures.remove_signature_file(old_url)
        db.refresh(loan)
    logger.info("loan_id=%s action=%s_signature url=%s", loan_id, kind, url)
    return _loan_to_schema(loan)


def _clear_signature(db: Session, loan_id: str, kind: SignatureKind, *, commit: bool) -> Loan:
    loan = _lock_loan(db, loan_id)
    if loan_state(loan) == "DELETED":
        raise ValidationError("cannot change the signatures of a deleted loan")

    old_url = getattr(loan, f"{kind}_signature_url")
    setattr(loan, f"{kind}_signature_url", None)
    setattr(loan, f"{kind}_signed_at", None)
    persist(db, commit=commit)
    if commit:
        signatures.remove_signature_file(old_url)
        db.refresh(loan)
    logger.info("loan_id=%s action=clear_%s_signature", loan_id, kind)
    return _loan_to_schema(loan)


def upload_pickup_signature(db: Session, loan_id: str, source, *, commit: bool = True) -> Loan:
    return _set_signature(db, loan_id, "pickup", source, commit=commit)


def upload_return_signature(db: Session, loan_id: str, source, *, commit: bool = True) -> Loan:
    return _set_signature(db, loan_id, "return", source, commit=commit)


def delete_pickup_signature(db: Session, loan_id: str, *, commit: bool = True) -> Loan:
    return _clear_signature(db, loan_id, "pickup", commit=commit)


def delete_return_signature(db: Session, loan_id: str, *, commit: bool = True) -> Loan:
    return _clear_signature(db, loan_id, "return", commit=commit)


# ---------- Close / delete ----------
def close_loan(db: Session, loan_id: str, *, commit: bool = True) -> Loan:
    loan = _lock_loan(db, loan_id)
    state = loan_state(loan)
    if state == "DELETED":
        raise ValidationError("cannot close a deleted loan")
    if state == "CLOSED":
        raise ValidationError("loan is already closed")

    try:
        for line in loan.lines:
            _release_line(db, line)
        loan.status = "CLOSED"
        loan.closed_at = utcnow()
        persist(db, commit=commit)
    except Exception:
        if commit:
            db.rollback()
        raise

    if commit:
        db.refresh(loan)
    logger.info("loan_id=%s action=close lines=%s", loan_id, len(loan.lines))
    return _loan_to_schema(loan)


def _soft_delete(db: Session, loan: LoanORM, actor_id: str) -> None:
    # a CLOSED loan already gave everything back when it was closed
    if loan_state(loan) == "OPEN":
        for line in loan.lines:
            _release_line(db, line)
    loan.deleted_at = utcnow()
    loan.deleted_by_id = actor_id


def delete_loan(db: Session, loan_id: str, actor_id: str, *, commit: bool = True) -> Message:
    loan = _lock_loan(db, loan_id)
    if loan_state(loan) == "DELETED":
        raise ValidationError("loan is already deleted")

    try:
        _soft_delete(db, loan, actor_id)
        persist(db, commit=commit)
    except Exception:
        if commit:
            db.rollback()
        raise

    logger.info("loan_id=%s action=delete actor_id=%s", loan_id, actor_id)
    return Message(message="loan deleted")


def batch_delete_loans(db: Session, loan_ids: list[str], actor_id: str, *, commit: bool = True) -> BatchDeleteResult:
    ids = list(dict.fromkeys(i for i in loan_ids if i))
    if not ids:
        raise ValidationError("at least one loan must be selected")
    if len(ids) > BATCH_DELETE_MAX:
        raise ValidationError(f"cannot delete more than {BATCH_DELETE_MAX} loans at once")

    loans = db.execute(
        select(LoanORM)
        .where(LoanORM.id.in_(ids))
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()
    if not loans:
        raise NotFoundError("no loans found")

    already = [l.id for l in loans if loan_state(l) == "DELETED"]
    if already:
        raise ValidationError(f"loans already deleted: {', '.join(already)}")

    try:
        for loan in loans:
            _soft_delete(db, loan, actor_id)
        persist(db, commit=commit)
    except Exception:
        if commit:
            db.rollback()
        raise

    count = len(loans)
    logger.info("action=batch_delete count=%s actor_id=%s", count, actor_id)
    return BatchDeleteResult(
        message=f"{count} loan(s) deleted",
        deleted_count=count,
        loan_ids=[l.id for l in loans],
    )


# ---------- Consistency repair ----------
def _active_lines():
    return (
        select(LoanLineORM)
        .join(LoanORM, LoanLineORM.loan_id == LoanORM.id)
        .where(LoanORM.status == "OPEN", LoanORM.deleted_at.is_(None))
    )


def reconcile_inventory(db: Session, *, commit: bool = True) -> dict:
    """
    Recompute StockItem.loaned and asset item PRETE flags from the active loan
    lines. Returns what was changed; a consistent database yields empty lists.
    """
    active = _active_lines().subquery()

    totals = {
        row[0]: int(row[1])
        for row in db.execute(
            select(active.c.stock_item_id, func.sum(active.c.quantity))
            .where(active.c.stock_item_id.is_not(None))
            .group_by(active.c.stock_item_id)
        ).all()
    }
    loaned_assets = {
        row[0]
        for row in db.execute(
            select(active.c.asset_item_id).where(active.c.asset_item_id.is_not(None))
        ).all()
    }

    now = utcnow()
    stock_changes: list[dict] = []
    for s in db.execute(select(StockItemORM).with_for_update()).scalars().all():
        actual = totals.get(s.id, 0)
        if s.loaned != actual:
            stock_changes.append({"id": s.id, "loaned_before": s.loaned, "loaned_after": actual})
            s.loaned = actual
            s.updated_at = now

    asset_changes: list[dict] = []
    for a in db.execute(select(AssetItemORM).with_for_update()).scalars().all():
        on_loan = a.id in loaned_assets
        if on_loan and a.status != "PRETE":
            asset_changes.append({"id": a.id, "status_before": a.status, "status_after": "PRETE"})
            a.status = "PRETE"
            a.updated_at = now
        elif not on_loan and a.status == "PRETE":
            asset_changes.append({"id": a.id, "status_before": "PRETE", "status_after": "EN_STOCK"})
            a.status = "EN_STOCK"
            a.updated_at = now

    persist(db, commit=commit)
    logger.info("action=reconcile stock_fixed=%s assets_fixed=%s", len(stock_changes), len(asset_changes))
    return {"stock_items": stock_changes, "asset_items": asset_changes}
