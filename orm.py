from datetime import datetime
from sqlalchemy import String, DateTime, Text, ForeignKey, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db import Base

class EmployeeORM(Base):
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True, unique=True, index=True)
    dept: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    loans: Mapped[list["LoanORM"]] = relationship(
        back_populates="employee",
        cascade="all, delete-orphan",
    )


class AssetModelORM(Base):
    __tablename__ = "asset_models"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    brand: Mapped[str] = mapped_column(String, nullable=False)
    model_name: Mapped[str] = mapped_column(String, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class AssetItemORM(Base):
    __tablename__ = "asset_items"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    asset_model_id: Mapped[str] = mapped_column(
        String, ForeignKey("asset_models.id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_tag: Mapped[str | None] = mapped_column(String, nullable=True, unique=True, index=True)
    serial: Mapped[str | None] = mapped_column(String, nullable=True, unique=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="EN_STOCK", index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    asset_model: Mapped[AssetModelORM] = relationship()


class StockItemORM(Base):
    __tablename__ = "stock_items"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    asset_model_id: Mapped[str] = mapped_column(
        String, ForeignKey("asset_models.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    loaned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    asset_model: Mapped[AssetModelORM] = relationship()


class LoanORM(Base):
    __tablename__ = "loans"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    employee_id: Mapped[str] = mapped_column(
        String, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_by_id: Mapped[str] = mapped_column(String, nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, default="OPEN", index=True)
    opened_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    pickup_signature_url: Mapped[str | None] = mapped_column(String, nullable=True)
    pickup_signed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    return_signature_url: Mapped[str | None] = mapped_column(String, nullable=True)
    return_signed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    deleted_by_id: Mapped[str | None] = mapped_column(String, nullable=True)

    employee: Mapped[EmployeeORM] = relationship(back_populates="loans")
    lines: Mapped[list["LoanLineORM"]] = relationship(
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="LoanLineORM.created_at",
    )


class LoanLineORM(Base):
    __tablename__ = "loan_lines"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    loan_id: Mapped[str] = mapped_column(
        String, ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # exactly one of these is set when the line is created; SET NULL if the item goes away
    asset_item_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("asset_items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    stock_item_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("stock_items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    loan: Mapped[LoanORM] = relationship(back_populates="lines")
    asset_item: Mapped[AssetItemORM | None] = relationship()
    stock_item: Mapped[StockItemORM | None] = relationship()


class AuditLogORM(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String, nullable=False)
    table_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    record_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
