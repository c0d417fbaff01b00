"""
Audit trail of data modifications.

`record` is meant to run after the request's own transaction has committed
(routers schedule it as a background task). It uses its own session and never
raises: a failed audit write is logged and the operation it describes stands.
"""
from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import uuid4

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import db as database
from crud import utcnow
from models import AuditLog
from orm import AuditLogORM

logger = logging.getLogger("app.audit")

SENSITIVE_FIELDS = {"password", "password_hash", "token", "refresh_token", "access_token", "secret"}


def sanitize(values: Any) -> Optional[dict]:
    if values is None:
        return None
    data = jsonable_encoder(values)
    if not isinstance(data, dict):
        return {"value": data}
    return {k: ("[REDACTED]" if k in SENSITIVE_FIELDS else v) for k, v in data.items()}


def record(
    user_id: str | None,
    action: str,
    table_name: str,
    record_id: str | None,
    *,
    old_values: Any = None,
    new_values: Any = None,
) -> bool:
    if not user_id or not action or not table_name or not record_id:
        logger.error(
            "missing audit fields user_id=%s action=%s table=%s record_id=%s",
            user_id, action, table_name, record_id,
        )
        return False

    session = database.SessionLocal()
    try:
        session.add(
            AuditLogORM(
                id=str(uuid4()),
                user_id=user_id,
                action=action.upper(),
                table_name=table_name,
                record_id=record_id,
                old_values=sanitize(old_values),
                new_values=sanitize(new_values),
                created_at=utcnow(),
            )
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("audit write failed action=%s table=%s record_id=%s", action, table_name, record_id)
        return False
    finally:
        session.close()

    logger.debug("action=%s table=%s record_id=%s user_id=%s", action, table_name, record_id, user_id)
    return True


def _audit_to_schema(a: AuditLogORM) -> AuditLog:
    return AuditLog(
        id=a.id,
        user_id=a.user_id,
        action=a.action,
        table_name=a.table_name,
        record_id=a.record_id,
        old_values=a.old_values,
        new_values=a.new_values,
        created_at=a.created_at,
    )


def list_audit_logs(
    db: Session,
    *,
    table_name: str | None = None,
    record_id: str | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    stmt = select(AuditLogORM)
    if table_name:
        stmt = stmt.where(AuditLogORM.table_name == table_name)
    if record_id:
        stmt = stmt.where(AuditLogORM.record_id == record_id)
    stmt = stmt.order_by(AuditLogORM.created_at.desc()).limit(limit)
    return [_audit_to_schema(a) for a in db.execute(stmt).scalars().all()]
