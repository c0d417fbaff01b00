from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime

AssetStatus = Literal["EN_STOCK", "PRETE", "HS", "REPARATION"]
LoanStatus = Literal["OPEN", "CLOSED"]

# ---------- Employee ----------
class EmployeeIn(BaseModel):
    first_name: str
    last_name: str
    email: Optional[str] = None
    dept: Optional[str] = None

class Employee(EmployeeIn):
    id: str
    created_at: datetime
    updated_at: datetime

# ---------- Asset models / items ----------
class AssetModelIn(BaseModel):
    type: str
    brand: str
    model_name: str

class AssetModel(AssetModelIn):
    id: str

class AssetItemIn(BaseModel):
    asset_model_id: str
    asset_tag: Optional[str] = None
    serial: Optional[str] = None
    status: AssetStatus = "EN_STOCK"
    notes: Optional[str] = None

class AssetItemUpdate(BaseModel):
    asset_model_id: Optional[str] = None
    asset_tag: Optional[str] = None
    serial: Optional[str] = None
    notes: Optional[str] = None

class AssetItemStatusIn(BaseModel):
    status: AssetStatus

class AssetItem(BaseModel):
    id: str
    asset_model_id: str
    asset_tag: Optional[str] = None
    serial: Optional[str] = None
    status: AssetStatus
    notes: Optional[str] = None
    asset_model: Optional[AssetModel] = None
    created_at: datetime
    updated_at: datetime

class AssetItemBulkIn(BaseModel):
    asset_model_id: str
    tag_prefix: str
    quantity: int
    start_number: Optional[int] = None
    padding: int = Field(3, ge=1, le=10)
    status: AssetStatus = "EN_STOCK"
    notes: Optional[str] = None

class BulkPreview(BaseModel):
    tags: list[str]
    start_number: int
    conflicts: list[str]

# ---------- Stock ----------
class StockItemIn(BaseModel):
    asset_model_id: str
    quantity: int = Field(0, ge=0)
    notes: Optional[str] = None

class StockItemUpdate(BaseModel):
    quantity: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None

class StockAdjustIn(BaseModel):
    adjustment: int

class StockItem(BaseModel):
    id: str
    asset_model_id: str
    quantity: int
    loaned: int
    available: int
    notes: Optional[str] = None
    asset_model: Optional[AssetModel] = None
    created_at: datetime
    updated_at: datetime

# ---------- Loan ----------
class LoanIn(BaseModel):
    employee_id: str

class LoanLineIn(BaseModel):
    asset_item_id: Optional[str] = None
    stock_item_id: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=1)

class LoanLine(BaseModel):
    id: str
    loan_id: str
    asset_item_id: Optional[str] = None
    stock_item_id: Optional[str] = None
    quantity: int
    asset_item: Optional[AssetItem] = None
    stock_item: Optional[StockItem] = None

class Loan(BaseModel):
    id: str
    employee_id: str
    created_by_id: str
    status: LoanStatus
    opened_at: datetime
    closed_at: Optional[datetime] = None
    pickup_signature_url: Optional[str] = None
    pickup_signed_at: Optional[datetime] = None
    return_signature_url: Optional[str] = None
    return_signed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    deleted_by_id: Optional[str] = None
    employee: Optional[Employee] = None
    lines: list[LoanLine] = []

class SignatureIn(BaseModel):
    signature: Optional[str] = None

class BatchDeleteIn(BaseModel):
    loan_ids: list[str]

class Message(BaseModel):
    message: str

class BatchDeleteResult(Message):
    deleted_count: int
    loan_ids: list[str] = []

# ---------- Audit ----------
class AuditLog(BaseModel):
    id: str
    user_id: str
    action: str
    table_name: str
    record_id: str
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    created_at: datetime
