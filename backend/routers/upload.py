"""Statement upload wizard endpoints (mounted under /ops)."""
import logging
import os
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from errors import (
    ExtractionFailed, InputValidationError, LedgerError, LLMError, MalformedModelOutput, UploadStateError,
)
from models import User
from routers.auth import get_current_user_dep
from schemas import ConfirmBankRequest, ConfirmUploadRequest, SkipTransactionsRequest
from services import ingestion
from services.transaction_store import get_categories

logger = logging.getLogger("Ledger.Upload")

router = APIRouter()


def _error(exc: Exception) -> JSONResponse:
    """Map a core exception to the {"error": ...} body used by the wizard UI."""
    if isinstance(exc, (InputValidationError, UploadStateError)):
        return JSONResponse(status_code=400, content={"error": str(exc)})
    if isinstance(exc, MalformedModelOutput):
        return JSONResponse(
            status_code=500,
            content={"error": "Could not read transactions from the model response, please retry"},
        )
    if isinstance(exc, LLMError) and exc.retryable:
        return JSONResponse(status_code=504, content={"error": str(exc), "retryable": True})
    if isinstance(exc, FileNotFoundError):
        return JSONResponse(status_code=500, content={"error": "Uploaded file could not be found"})
    return JSONResponse(status_code=500, content={"error": str(exc)})


@router.get("/upload")
def upload_status(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    """Current wizard step (1 when no import is in progress)."""
    session = ingestion.load_upload_session(db, current_user.id)
    return {
        "currentStep": ingestion.current_step(session),
        "fileName": session.file_name if session else None,
        "bankDetection": session.detection.model_dump() if session and session.detection else None,
    }


@router.post("/upload")
async def upload_statement(
    pdf: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    """Accept a PDF statement, extract its text and detect the bank."""
    content = await pdf.read()
    try:
        ingestion.validate_upload(pdf.content_type, len(content))
    except InputValidationError as e:
        return _error(e)

    safe_filename = f"{uuid.uuid4()}.pdf"
    file_path = os.path.join(settings.UPLOAD_DIR, safe_filename)
    with open(file_path, "wb") as f:
        f.write(content)

    try:
        session = await run_in_threadpool(ingestion.start_upload, file_path, pdf.filename or safe_filename)
    except (ExtractionFailed, FileNotFoundError) as e:
        logger.error(f"Upload error for {pdf.filename}: {e}")
        ingestion.remove_statement_file(file_path)
        return _error(e)

    ingestion.save_upload_session(db, current_user.id, session)
    return {
        "success": True,
        "step": int(session.step),
        "bankDetection": session.detection.model_dump() if session.detection else {"bank": None, "confidence": 0},
    }


@router.post("/upload/confirm-bank")
def confirm_bank(
    body: ConfirmBankRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    session = ingestion.load_upload_session(db, current_user.id)
    try:
        session = ingestion.confirm_bank(session, body.selected_bank, body.selected_country)
    except LedgerError as e:
        return _error(e)
    ingestion.save_upload_session(db, current_user.id, session)
    return {"success": True, "step": int(session.step)}


@router.post("/upload/extract-transactions")
def extract_transactions(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    """Run LLM extraction + categorisation; the session survives failures."""
    session = ingestion.load_upload_session(db, current_user.id)
    try:
        session = ingestion.extract_statement_transactions(session, get_categories(db))
    except LedgerError as e:
        logger.error(f"Extraction error: {e}")
        return _error(e)
    ingestion.save_upload_session(db, current_user.id, session)
    transactions = [t.model_dump(mode="json") for t in session.transactions]
    return {
        "success": True,
        "step": int(session.step),
        "transactions": transactions,
        "count": len(transactions),
    }


@router.post("/upload/skip-transactions")
def skip_transactions(
    body: SkipTransactionsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    session = ingestion.load_upload_session(db, current_user.id)
    try:
        session = ingestion.skip_transactions(session, body.skipped_ids)
    except LedgerError as e:
        return _error(e)
    ingestion.save_upload_session(db, current_user.id, session)
    return {"success": True, "step": int(session.step)}


@router.get("/upload/review")
def category_review(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    session = ingestion.load_upload_session(db, current_user.id)
    try:
        return ingestion.review_payload(session, get_categories(db))
    except LedgerError as e:
        return _error(e)


@router.post("/upload/confirm")
def confirm_upload(
    body: Optional[ConfirmUploadRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    """Persist the import and clear the wizard."""
    session = ingestion.load_upload_session(db, current_user.id)
    try:
        result = ingestion.confirm_upload(db, current_user.id, session, body.categorized_transactions if body else None)
    except LedgerError as e:
        logger.error(f"Confirmation error: {e}")
        return _error(e)

    ingestion.clear_upload_session(db, current_user.id)
    return {
        "success": True,
        "transactionsImported": result.inserted_count,
        "skippedDuplicates": result.skipped_count,
        "failed": result.failed_count,
        "outcomes": [
            {"index": o.index, "status": o.status.value, "transactionId": o.transaction_id, "reason": o.reason}
            for o in result.outcomes
        ],
        "redirect": f"/dashboard?imported={result.inserted_count}",
    }


@router.delete("/upload")
def abandon_upload(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    ingestion.clear_upload_session(db, current_user.id)
    return {"success": True, "step": 1}
