from collections.abc import Generator
from typing import Optional

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

import db as database


def get_db() -> Generator[Session, None, None]:
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(x_actor_id: Optional[str] = Header(None)) -> str:
    # identity comes from the auth layer in front of this service
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise HTTPException(status_code=401, detail="X-Actor-Id header is required")
    return actor_id
