from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import ValidationError as SchemaError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile as FormFile

import audit
import loans
import signatures
from csv_utils import rows_to_csv_response
from dependencies import get_actor_id, get_db
from filter_helpers import blank_to_none, normalize_loan_status
from models import BatchDeleteIn, BatchDeleteResult, Loan, LoanIn, LoanLine, LoanLineIn, Message, SignatureIn

router = APIRouter()
EXPORT_FILENAME = "loans_export.csv"


async def signature_source(request: Request):
    """
    Either a multipart file / form field named `signature`, or a JSON body
    {"signature": "data:image/png;base64,..."}.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data") or content_type.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        value = form.get("signature")
        if isinstance(value, FormFile):
            return await signatures.read_upload(value)
        return value
    if "json" in content_type:
        try:
            return SignatureIn.model_validate(await request.json()).signature
        except (ValueError, SchemaError) as exc:
            raise HTTPException(status_code=422, detail="invalid signature payload") from exc
    return None


@router.get("/loans", response_model=list[Loan])
def list_loans_api(
    status: Optional[str] = None,
    employee_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return loans.get_all_loans(
        db,
        status=normalize_loan_status(status),
        employee_id=blank_to_none(employee_id),
    )


@router.get("/loans/export")
def export_loans_api(
    status: Optional[str] = None,
    employee_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    rows = loans.get_all_loans(
        db,
        status=normalize_loan_status(status),
        employee_id=blank_to_none(employee_id),
    )
    return rows_to_csv_response(rows, filename=EXPORT_FILENAME)


@router.post("/loans/batch-delete", response_model=BatchDeleteResult)
def batch_delete_loans_api(
    body: BatchDeleteIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    result = loans.batch_delete_loans(db, body.loan_ids, actor_id)
    for loan_id in result.loan_ids:
        background_tasks.add_task(
            audit.record, actor_id, "DELETE", "loans", loan_id, new_values={"deleted_by_id": actor_id}
        )
    return result


@router.get("/loans/{loan_id}", response_model=Loan)
def get_loan_api(loan_id: str, db: Session = Depends(get_db)):
    return loans.get_loan(db, loan_id)


@router.post("/loans", response_model=Loan, status_code=201)
def create_loan_api(
    body: LoanIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    loan = loans.create_loan(db, body.employee_id, actor_id)
    background_tasks.add_task(
        audit.record, actor_id, "CREATE", "loans", loan.id, new_values=loan.model_dump(exclude={"lines", "employee"})
    )
    return loan


@router.post("/loans/{loan_id}/lines", response_model=LoanLine, status_code=201)
def add_loan_line_api(
    loan_id: str,
    body: LoanLineIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    line = loans.add_loan_line(db, loan_id, body)
    background_tasks.add_task(
        audit.record, actor_id, "CREATE", "loan_lines", line.id,
        new_values=line.model_dump(exclude={"asset_item", "stock_item"}),
    )
    return line


@router.delete("/loans/{loan_id}/lines/{line_id}", response_model=Message)
def remove_loan_line_api(
    loan_id: str,
    line_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    result = loans.remove_loan_line(db, loan_id, line_id)
    background_tasks.add_task(
        audit.record, actor_id, "DELETE", "loan_lines", line_id, old_values={"loan_id": loan_id}
    )
    return result


@router.post("/loans/{loan_id}/pickup-signature", response_model=Loan)
def upload_pickup_signature_api(
    loan_id: str,
    background_tasks: BackgroundTasks,
    source=Depends(signature_source),
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    loan = loans.upload_pickup_signature(db, loan_id, source)
    background_tasks.add_task(
        audit.record, actor_id, "UPDATE", "loans", loan_id,
        new_values={"pickup_signature_url": loan.pickup_signature_url},
    )
    return loan


@router.post("/loans/{loan_id}/return-signature", response_model=Loan)
def upload_return_signature_api(
    loan_id: str,
    background_tasks: BackgroundTasks,
    source=Depends(signature_source),
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    loan = loans.upload_return_signature(db, loan_id, source)
    background_tasks.add_task(
        audit.record, actor_id, "UPDATE", "loans", loan_id,
        new_values={"return_signature_url": loan.return_signature_url},
    )
    return loan


@router.delete("/loans/{loan_id}/pickup-signature", response_model=Loan)
def delete_pickup_signature_api(
    loan_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    loan = loans.delete_pickup_signature(db, loan_id)
    background_tasks.add_task(
        audit.record, actor_id, "UPDATE", "loans", loan_id, new_values={"pickup_signature_url": None}
    )
    return loan


@router.delete("/loans/{loan_id}/return-signature", response_model=Loan)
def delete_return_signature_api(
    loan_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    loan = loans.delete_return_signature(db, loan_id)
    background_tasks.add_task(
        audit.record, actor_id, "UPDATE", "loans", loan_id, new_values={"return_signature_url": None}
    )
    return loan


@router.patch("/loans/{loan_id}/close", response_model=Loan)
def close_loan_api(
    loan_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    loan = loans.close_loan(db, loan_id)
    background_tasks.add_task(
        audit.record, actor_id, "UPDATE", "loans", loan_id,
        old_values={"status": "OPEN"}, new_values={"status": loan.status, "closed_at": loan.closed_at},
    )
    return loan


@router.delete("/loans/{loan_id}", response_model=Message)
def delete_loan_api(
    loan_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
):
    result = loans.delete_loan(db, loan_id, actor_id)
    background_tasks.add_task(
        audit.record, actor_id, "DELETE", "loans", loan_id, new_values={"deleted_by_id": actor_id}
    )
    return result
