from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from typing import Optional
from uuid import uuid4

from sqlalchemy import select, delete, or_
from sqlalchemy.orm import Session

from errors import ConflictError, NotFoundError, ValidationError
from models import (
    AssetItem,
    AssetItemBulkIn,
    AssetItemIn,
    AssetItemUpdate,
    AssetModel,
    AssetModelIn,
    BulkPreview,
    Employee,
    EmployeeIn,
    StockItem,
    StockItemIn,
    StockItemUpdate,
)
from orm import AssetItemORM, AssetModelORM, EmployeeORM, LoanLineORM, LoanORM, StockItemORM

logger = logging.getLogger("app.inventory")

BULK_MIN = 1
BULK_MAX = 100

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def persist(db: Session, *, commit: bool) -> None:
    if commit:
        db.commit()
    else:
        db.flush()

def employee_to_schema(e: EmployeeORM) -> Employee:
    return Employee(
        id=e.id,
        first_name=e.first_name,
        last_name=e.last_name,
        email=e.email,
        dept=e.dept,
        created_at=e.created_at,
        updated_at=e.updated_at,
    )

def asset_model_to_schema(m: AssetModelORM) -> AssetModel:
    return AssetModel(id=m.id, type=m.type, brand=m.brand, model_name=m.model_name)

def asset_item_to_schema(a: AssetItemORM) -> AssetItem:
    return AssetItem(
        id=a.id,
        asset_model_id=a.asset_model_id,
        asset_tag=a.asset_tag,
        serial=a.serial,
        status=a.status,  # type: ignore
        notes=a.notes,
        asset_model=asset_model_to_schema(a.asset_model) if a.asset_model else None,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )

def stock_item_to_schema(s: StockItemORM) -> StockItem:
    return StockItem(
        id=s.id,
        asset_model_id=s.asset_model_id,
        quantity=s.quantity,
        loaned=s.loaned,
        available=s.quantity - s.loaned,
        notes=s.notes,
        asset_model=asset_model_to_schema(s.asset_model) if s.asset_model else None,
        created_at=s.created_at,
        updated_at=s.updated_at,
    )


# ---------- Employee ----------
def employee_email_exists(db: Session, email: str, exclude_employee_id: Optional[str] = None) -> bool:
    stmt = select(EmployeeORM).where(EmployeeORM.email == email)
    if exclude_employee_id:
        stmt = stmt.where(EmployeeORM.id != exclude_employee_id)
    return db.execute(stmt).first() is not None


def get_employee(db: Session, employee_id: str) -> Optional[Employee]:
    row = db.get(EmployeeORM, employee_id)
    return employee_to_schema(row) if row else None


def list_employees(db: Session, *, q: str | None = None) -> list[Employee]:
    stmt = select(EmployeeORM)
    if q:
        like = f"%{q}%"
        stmt = stmt.where(
            or_(
                EmployeeORM.first_name.ilike(like),
                EmployeeORM.last_name.ilike(like),
                EmployeeORM.email.ilike(like),
            )
        )
    stmt = stmt.order_by(EmployeeORM.last_name.asc(), EmployeeORM.first_name.asc())
    return [employee_to_schema(e) for e in db.execute(stmt).scalars().all()]


def create_employee(db: Session, body: EmployeeIn, *, commit: bool = True) -> Employee:
    email = (body.email or "").strip() or None
    if email and employee_email_exists(db, email):
        raise ConflictError("an employee with this email already exists")

    now = utcnow()
    e = EmployeeORM(
        id=str(uuid4()),
        first_name=body.first_name.strip(),
        last_name=body.last_name.strip(),
        email=email,
        dept=body.dept,
        created_at=now,
        updated_at=now,
    )
    db.add(e)
    persist(db, commit=commit)
    if commit:
        db.refresh(e)
    return employee_to_schema(e)


def import_employees(db: Session, rows: list[dict[str, str]]) -> dict:
    """
    rows: [{"first_name": "...", "last_name": "...", "email": "...", "dept": "..."}]
    Rows whose email is already known are skipped; all inserts share one commit.
    """
    created = 0
    skipped = 0
    errors: list[str] = []
    seen_emails: set[str] = set()

    try:
        for idx, r in enumerate(rows, start=1):
            first_name = (r.get("first_name") or "").strip()
            last_name = (r.get("last_name") or "").strip()
            email = (r.get("email") or "").strip() or None
            dept = (r.get("dept") or "").strip() or None

            if not first_name or not last_name:
                errors.append(f"row {idx}: first_name/last_name is empty")
                continue

            if email and (email in seen_emails or employee_email_exists(db, email)):
                skipped += 1
                continue

            create_employee(
                db,
                EmployeeIn(first_name=first_name, last_name=last_name, email=email, dept=dept),
                commit=False,
            )
            if email:
                seen_emails.add(email)
            created += 1
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("action=import_employees created=%s skipped=%s errors=%s", created, skipped, len(errors))
    return {"created": created, "skipped": skipped, "errors": errors}


def delete_employee(db: Session, employee_id: str, *, commit: bool = True) -> None:
    """
    Hard-deletes an employee together with their closed or soft-deleted loans.
    Refused while the employee still holds an active loan.
    """
    e = db.get(EmployeeORM, employee_id)
    if not e:
        raise NotFoundError("employee not found")

    active = db.execute(
        select(LoanORM.id).where(
            LoanORM.employee_id == employee_id,
            LoanORM.status == "OPEN",
            LoanORM.deleted_at.is_(None),
        )
    ).first()
    if active:
        raise ValidationError("cannot delete an employee with active loans")

    db.delete(e)
    persist(db, commit=commit)
    logger.info("employee_id=%s action=delete", employee_id)


# ---------- Asset models ----------
def get_asset_model(db: Session, asset_model_id: str) -> Optional[AssetModel]:
    row = db.get(AssetModelORM, asset_model_id)
    return asset_model_to_schema(row) if row else None


def list_asset_models(db: Session) -> list[AssetModel]:
    rows = db.execute(
        select(AssetModelORM).order_by(AssetModelORM.brand.asc(), AssetModelORM.model_name.asc())
    ).scalars().all()
    return [asset_model_to_schema(m) for m in rows]


def create_asset_model(db: Session, body: AssetModelIn, *, commit: bool = True) -> AssetModel:
    now = utcnow()
    m = AssetModelORM(
        id=str(uuid4()),
        type=body.type.strip(),
        brand=body.brand.strip(),
        model_name=body.model_name.strip(),
        created_at=now,
        updated_at=now,
    )
    db.add(m)
    persist(db, commit=commit)
    return asset_model_to_schema(m)


# ---------- Asset items ----------
def asset_tag_exists(db: Session, asset_tag: str, exclude_asset_id: Optional[str] = None) -> bool:
    stmt = select(AssetItemORM).where(AssetItemORM.asset_tag == asset_tag)
    if exclude_asset_id:
        stmt = stmt.where(AssetItemORM.id != exclude_asset_id)
    return db.execute(stmt).first() is not None


def serial_exists(db: Session, serial: str, exclude_asset_id: Optional[str] = None) -> bool:
    stmt = select(AssetItemORM).where(AssetItemORM.serial == serial)
    if exclude_asset_id:
        stmt = stmt.where(AssetItemORM.id != exclude_asset_id)
    return db.execute(stmt).first() is not None


def _check_unique_identifiers(
    db: Session, asset_tag: str | None, serial: str | None, exclude_asset_id: Optional[str] = None
) -> None:
    if asset_tag and asset_tag_exists(db, asset_tag, exclude_asset_id):
        raise ConflictError(f"asset tag already in use: {asset_tag}")
    if serial and serial_exists(db, serial, exclude_asset_id):
        raise ConflictError(f"serial number already in use: {serial}")


def asset_item_on_active_loan(db: Session, asset_item_id: str) -> bool:
    stmt = (
        select(LoanLineORM.id)
        .join(LoanORM, LoanLineORM.loan_id == LoanORM.id)
        .where(
            LoanLineORM.asset_item_id == asset_item_id,
            LoanORM.status == "OPEN",
            LoanORM.deleted_at.is_(None),
        )
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def get_asset_item(db: Session, asset_item_id: str) -> Optional[AssetItem]:
    row = db.get(AssetItemORM, asset_item_id)
    return asset_item_to_schema(row) if row else None


def list_asset_items(
    db: Session,
    *,
    status: str | None = None,
    asset_model_id: str | None = None,
    q: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[AssetItem]:
    stmt = select(AssetItemORM)
    if status:
        stmt = stmt.where(AssetItemORM.status == status)
    if asset_model_id:
        stmt = stmt.where(AssetItemORM.asset_model_id == asset_model_id)
    if q:
        like = f"%{q}%"
        stmt = stmt.where(or_(AssetItemORM.asset_tag.ilike(like), AssetItemORM.serial.ilike(like)))

    stmt = stmt.order_by(AssetItemORM.created_at.desc()).limit(limit).offset(offset)
    return [asset_item_to_schema(a) for a in db.execute(stmt).scalars().all()]


def create_asset_item(db: Session, body: AssetItemIn, *, commit: bool = True) -> AssetItem:
    if not db.get(AssetModelORM, body.asset_model_id):
        raise NotFoundError("asset model not found")
    if body.status == "PRETE":
        raise ValidationError("an asset item can only become loaned through a loan")

    asset_tag = (body.asset_tag or "").strip() or None
    serial = (body.serial or "").strip() or None
    _check_unique_identifiers(db, asset_tag, serial)

    now = utcnow()
    a = AssetItemORM(
        id=str(uuid4()),
        asset_model_id=body.asset_model_id,
        asset_tag=asset_tag,
        serial=serial,
        status=body.status,
        notes=body.notes,
        created_at=now,
        updated_at=now,
    )
    db.add(a)
    persist(db, commit=commit)
    if commit:
        db.refresh(a)
    return asset_item_to_schema(a)


def update_asset_item(db: Session, asset_item_id: str, body: AssetItemUpdate, *, commit: bool = True) -> AssetItem:
    a = db.get(AssetItemORM, asset_item_id)
    if not a:
        raise NotFoundError("asset item not found")

    data = body.model_dump(exclude_unset=True)
    if data.get("asset_model_id") and not db.get(AssetModelORM, data["asset_model_id"]):
        raise NotFoundError("asset model not found")

    for key in ("asset_tag", "serial"):
        if key in data:
            data[key] = (data[key] or "").strip() or None
    _check_unique_identifiers(db, data.get("asset_tag"), data.get("serial"), exclude_asset_id=asset_item_id)

    for k, v in data.items():
        setattr(a, k, v)
    a.updated_at = utcnow()

    persist(db, commit=commit)
    if commit:
        db.refresh(a)
    return asset_item_to_schema(a)


def update_asset_item_status(db: Session, asset_item_id: str, status: str, *, commit: bool = True) -> AssetItem:
    a = db.get(AssetItemORM, asset_item_id)
    if not a:
        raise NotFoundError("asset item not found")

    # PRETE is owned by the loan lifecycle in both directions
    if status == "PRETE" and a.status != "PRETE":
        raise ValidationError("an asset item can only become loaned through a loan")
    if a.status == "PRETE" and status != "PRETE" and asset_item_on_active_loan(db, asset_item_id):
        raise ValidationError("asset item is on an active loan; return it through the loan")

    a.status = status
    a.updated_at = utcnow()
    persist(db, commit=commit)
    if commit:
        db.refresh(a)
    return asset_item_to_schema(a)


def delete_asset_item(db: Session, asset_item_id: str, *, commit: bool = True) -> bool:
    result = db.execute(delete(AssetItemORM).where(AssetItemORM.id == asset_item_id))
    persist(db, commit=commit)
    return result.rowcount > 0


def format_asset_tag(prefix: str, number: int, padding: int) -> str:
    return f"{prefix}{number:0{padding}d}"


def next_asset_tag_number(db: Session, prefix: str) -> int:
    rows = db.execute(
        select(AssetItemORM.asset_tag).where(AssetItemORM.asset_tag.like(f"{prefix}%"))
    ).all()

    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    max_number = 0
    for row in rows:
        m = pattern.match(row[0] or "")
        if m and int(m.group(1)) > max_number:
            max_number = int(m.group(1))
    return max_number + 1


def _validate_bulk_quantity(quantity: int) -> None:
    if quantity < BULK_MIN or quantity > BULK_MAX:
        raise ValidationError(f"quantity must be between {BULK_MIN} and {BULK_MAX}")


def preview_bulk_creation(
    db: Session,
    *,
    tag_prefix: str,
    quantity: int,
    start_number: int | None = None,
    padding: int = 3,
) -> BulkPreview:
    _validate_bulk_quantity(quantity)
    prefix = tag_prefix.strip()
    start = start_number if start_number is not None else next_asset_tag_number(db, prefix)
    tags = [format_asset_tag(prefix, n, padding) for n in range(start, start + quantity)]

    existing = db.execute(
        select(AssetItemORM.asset_tag).where(AssetItemORM.asset_tag.in_(tags))
    ).all()
    taken = {r[0] for r in existing}
    return BulkPreview(tags=tags, start_number=start, conflicts=[t for t in tags if t in taken])


def create_asset_items_bulk(db: Session, body: AssetItemBulkIn, *, commit: bool = True) -> list[AssetItem]:
    _validate_bulk_quantity(body.quantity)
    if not db.get(AssetModelORM, body.asset_model_id):
        raise NotFoundError("asset model not found")
    if body.status == "PRETE":
        raise ValidationError("an asset item can only become loaned through a loan")

    preview = preview_bulk_creation(
        db,
        tag_prefix=body.tag_prefix,
        quantity=body.quantity,
        start_number=body.start_number,
        padding=body.padding,
    )
    if preview.conflicts:
        raise ConflictError(f"asset tags already in use: {', '.join(preview.conflicts)}")

    now = utcnow()
    items = [
        AssetItemORM(
            id=str(uuid4()),
            asset_model_id=body.asset_model_id,
            asset_tag=tag,
            status=body.status,
            notes=body.notes,
            created_at=now,
            updated_at=now,
        )
        for tag in preview.tags
    ]
    try:
        db.add_all(items)
        persist(db, commit=commit)
    except Exception:
        db.rollback()
        raise

    logger.info("action=bulk_create count=%s first_tag=%s", len(items), preview.tags[0])
    return [asset_item_to_schema(a) for a in items]


# ---------- Stock items ----------
def get_stock_item(db: Session, stock_item_id: str) -> Optional[StockItem]:
    row = db.get(StockItemORM, stock_item_id)
    return stock_item_to_schema(row) if row else None


def list_stock_items(db: Session, *, asset_model_id: str | None = None) -> list[StockItem]:
    stmt = select(StockItemORM)
    if asset_model_id:
        stmt = stmt.where(StockItemORM.asset_model_id == asset_model_id)
    stmt = stmt.order_by(StockItemORM.created_at.desc())
    return [stock_item_to_schema(s) for s in db.execute(stmt).scalars().all()]


def create_stock_item(db: Session, body: StockItemIn, *, commit: bool = True) -> StockItem:
    if not db.get(AssetModelORM, body.asset_model_id):
        raise NotFoundError("asset model not found")

    now = utcnow()
    s = StockItemORM(
        id=str(uuid4()),
        asset_model_id=body.asset_model_id,
        quantity=body.quantity,
        loaned=0,
        notes=body.notes,
        created_at=now,
        updated_at=now,
    )
    db.add(s)
    persist(db, commit=commit)
    if commit:
        db.refresh(s)
    return stock_item_to_schema(s)


def _locked_stock_item(db: Session, stock_item_id: str) -> StockItemORM:
    s = db.execute(
        select(StockItemORM).where(StockItemORM.id == stock_item_id).with_for_update()
    ).scalar_one_or_none()
    if not s:
        raise NotFoundError("stock item not found")
    return s


def _check_stock_quantity(s: StockItemORM, new_quantity: int) -> None:
    if new_quantity < 0:
        raise ValidationError("quantity cannot be negative")
    if new_quantity < s.loaned:
        raise ValidationError(
            f"quantity cannot be lower than the loaned count: requested {new_quantity}, loaned {s.loaned}"
        )


def update_stock_item(db: Session, stock_item_id: str, body: StockItemUpdate, *, commit: bool = True) -> StockItem:
    s = _locked_stock_item(db, stock_item_id)

    data = body.model_dump(exclude_unset=True)
    if data.get("quantity") is not None:
        _check_stock_quantity(s, data["quantity"])
        s.quantity = data["quantity"]
    if "notes" in data:
        s.notes = data["notes"]
    s.updated_at = utcnow()

    persist(db, commit=commit)
    if commit:
        db.refresh(s)
    return stock_item_to_schema(s)


def adjust_stock_quantity(db: Session, stock_item_id: str, adjustment: int, *, commit: bool = True) -> StockItem:
    s = _locked_stock_item(db, stock_item_id)
    _check_stock_quantity(s, s.quantity + adjustment)

    s.quantity = s.quantity + adjustment
    s.updated_at = utcnow()
    persist(db, commit=commit)
    if commit:
        db.refresh(s)
    logger.info("stock_item_id=%s action=adjust adjustment=%s quantity=%s", stock_item_id, adjustment, s.quantity)
    return stock_item_to_schema(s)


def delete_stock_item(db: Session, stock_item_id: str, *, commit: bool = True) -> bool:
    result = db.execute(delete(StockItemORM).where(StockItemORM.id == stock_item_id))
    persist(db, commit=commit)
    return result.rowcount > 0
