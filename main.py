from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

import logging
import os
import time

from db import Base, engine
from dependencies import get_db
from errors import DomainError
from routers import ALL_ROUTERS
import orm  # noqa: F401  (registers tables on Base.metadata)
import signatures

app = FastAPI(title="Equipment Loan Tracker API")

Base.metadata.create_all(bind=engine)

# -----------------------
# Logging
# -----------------------
logging.basicConfig(
    level=os.getenv("APP_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("app")

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    elapsed_ms = int((time.time() - start) * 1000)
    logger.info(
        "method=%s path=%s status=%s elapsed_ms=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    logger.warning(
        "method=%s path=%s error=%s detail=%s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

for router in ALL_ROUTERS:
    app.include_router(router)

app.mount(
    signatures.URL_PREFIX,
    StaticFiles(directory=str(signatures.upload_dir()), check_dir=False),
    name="signatures",
)

@app.get("/")
def root():
    return {"message": "Equipment Loan Tracker API", "docs": "/docs"}

__all__ = ["app", "get_db"]
