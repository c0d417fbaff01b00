from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

import audit
import crud
from csv_utils import csv_bytes_to_rows
from dependencies import get_actor_id, get_db
from filter_helpers import blank_to_none, normalize_asset_status, normalize_limit, normalize_offset
from models import (
    AssetItem,
    AssetItemBulkIn,
    AssetItemIn,
    AssetItemStatusIn,
    AssetItemUpdate,
    AssetModel,
    AssetModelIn,
    AuditLog,
    BulkPreview,
    Employee,
    EmployeeIn,
    StockAdjustIn,
    StockItem,
    StockItemIn,
    StockItemUpdate,
)

router = APIRouter()


# ---------- Employees ----------
@router.get("/employees", response_model=list[Employee])
def list_employees_api(q: Optional[str] = None, db: Session = Depends(get_db)):
    return crud.list_employees(db, q=blank_to_none(q))


@router.post("/employees", response_model=Employee, status_code=201)
def create_employee_api(
    body: EmployeeIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    employee = crud.create_employee(db, body)
    background_tasks.add_task(audit.record, actor_id, "CREATE", "employees", employee.id, new_values=employee)
    return employee


@router.post("/employees/import")
async def import_employees_api(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    data = await file.read()
    rows, err = csv_bytes_to_rows(data)
    if err:
        raise HTTPException(status_code=400, detail=err)
    return crud.import_employees(db, rows)


@router.get("/employees/{employee_id}", response_model=Employee)
def get_employee_api(employee_id: str, db: Session = Depends(get_db)):
    employee = crud.get_employee(db, employee_id)
    if not employee:
        raise HTTPException(status_code=404, detail="employee not found")
    return employee


@router.delete("/employees/{employee_id}", status_code=204)
def delete_employee_api(
    employee_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    crud.delete_employee(db, employee_id)
    background_tasks.add_task(audit.record, actor_id, "DELETE", "employees", employee_id)
    return None


# ---------- Asset models ----------
@router.get("/asset-models", response_model=list[AssetModel])
def list_asset_models_api(db: Session = Depends(get_db)):
    return crud.list_asset_models(db)


@router.post("/asset-models", response_model=AssetModel, status_code=201)
def create_asset_model_api(body: AssetModelIn, db: Session = Depends(get_db)):
    return crud.create_asset_model(db, body)


@router.get("/asset-models/{asset_model_id}", response_model=AssetModel)
def get_asset_model_api(asset_model_id: str, db: Session = Depends(get_db)):
    model = crud.get_asset_model(db, asset_model_id)
    if not model:
        raise HTTPException(status_code=404, detail="asset model not found")
    return model


# ---------- Asset items ----------
@router.get("/asset-items", response_model=list[AssetItem])
def list_asset_items_api(
    status: Optional[str] = None,
    asset_model_id: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    return crud.list_asset_items(
        db,
        status=normalize_asset_status(status),
        asset_model_id=blank_to_none(asset_model_id),
        q=blank_to_none(q),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )


@router.post("/asset-items", response_model=AssetItem, status_code=201)
def create_asset_item_api(
    body: AssetItemIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    item = crud.create_asset_item(db, body)
    background_tasks.add_task(
        audit.record, actor_id, "CREATE", "asset_items", item.id, new_values=item.model_dump(exclude={"asset_model"})
    )
    return item


@router.get("/asset-items/bulk/preview", response_model=BulkPreview)
def preview_bulk_creation_api(
    tag_prefix: str,
    quantity: int,
    start_number: Optional[int] = None,
    padding: int = 3,
    db: Session = Depends(get_db),
):
    return crud.preview_bulk_creation(
        db, tag_prefix=tag_prefix, quantity=quantity, start_number=start_number, padding=padding
    )


@router.post("/asset-items/bulk", response_model=list[AssetItem], status_code=201)
def create_asset_items_bulk_api(
    body: AssetItemBulkIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    items = crud.create_asset_items_bulk(db, body)
    for item in items:
        background_tasks.add_task(
            audit.record, actor_id, "CREATE", "asset_items", item.id, new_values={"asset_tag": item.asset_tag}
        )
    return items


@router.get("/asset-items/{asset_item_id}", response_model=AssetItem)
def get_asset_item_api(asset_item_id: str, db: Session = Depends(get_db)):
    item = crud.get_asset_item(db, asset_item_id)
    if not item:
        raise HTTPException(status_code=404, detail="asset item not found")
    return item


@router.patch("/asset-items/{asset_item_id}", response_model=AssetItem)
def update_asset_item_api(asset_item_id: str, body: AssetItemUpdate, db: Session = Depends(get_db)):
    return crud.update_asset_item(db, asset_item_id, body)


@router.patch("/asset-items/{asset_item_id}/status", response_model=AssetItem)
def update_asset_item_status_api(
    asset_item_id: str,
    body: AssetItemStatusIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    item = crud.update_asset_item_status(db, asset_item_id, body.status)
    background_tasks.add_task(
        audit.record, actor_id, "UPDATE", "asset_items", asset_item_id, new_values={"status": item.status}
    )
    return item


@router.delete("/asset-items/{asset_item_id}", status_code=204)
def delete_asset_item_api(asset_item_id: str, db: Session = Depends(get_db)):
    ok = crud.delete_asset_item(db, asset_item_id)
    if not ok:
        raise HTTPException(status_code=404, detail="asset item not found")
    return None


# ---------- Stock items ----------
@router.get("/stock-items", response_model=list[StockItem])
def list_stock_items_api(asset_model_id: Optional[str] = None, db: Session = Depends(get_db)):
    return crud.list_stock_items(db, asset_model_id=blank_to_none(asset_model_id))


@router.post("/stock-items", response_model=StockItem, status_code=201)
def create_stock_item_api(body: StockItemIn, db: Session = Depends(get_db)):
    return crud.create_stock_item(db, body)


@router.get("/stock-items/{stock_item_id}", response_model=StockItem)
def get_stock_item_api(stock_item_id: str, db: Session = Depends(get_db)):
    item = crud.get_stock_item(db, stock_item_id)
    if not item:
        raise HTTPException(status_code=404, detail="stock item not found")
    return item


@router.patch("/stock-items/{stock_item_id}", response_model=StockItem)
def update_stock_item_api(stock_item_id: str, body: StockItemUpdate, db: Session = Depends(get_db)):
    return crud.update_stock_item(db, stock_item_id, body)


@router.post("/stock-items/{stock_item_id}/adjust", response_model=StockItem)
def adjust_stock_quantity_api(
    stock_item_id: str,
    body: StockAdjustIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    item = crud.adjust_stock_quantity(db, stock_item_id, body.adjustment)
    background_tasks.add_task(
        audit.record, actor_id, "UPDATE", "stock_items", stock_item_id,
        new_values={"quantity": item.quantity, "adjustment": body.adjustment},
    )
    return item


@router.delete("/stock-items/{stock_item_id}", status_code=204)
def delete_stock_item_api(stock_item_id: str, db: Session = Depends(get_db)):
    ok = crud.delete_stock_item(db, stock_item_id)
    if not ok:
        raise HTTPException(status_code=404, detail="stock item not found")
    return None


# ---------- Audit ----------
@router.get("/audit-logs", response_model=list[AuditLog])
def list_audit_logs_api(
    table_name: Optional[str] = None,
    record_id: Optional[str] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    return audit.list_audit_logs(
        db,
        table_name=blank_to_none(table_name),
        record_id=blank_to_none(record_id),
        limit=normalize_limit(limit),
    )
