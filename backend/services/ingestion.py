"""
Statement import wizard.

The in-progress import is an ``UploadSession`` value object. Each wizard
transition takes the current session (or None) and returns a new session,
raising ``UploadStateError`` / ``InputValidationError`` without touching the
input when a precondition fails. Loading and saving the session is the
router's job (one stored session per user; a new upload replaces it).

Steps:
  1  no import in progress
  2  PDF text extracted, bank detection shown for confirmation
  3  transactions extracted and categorised
  4  skip list recorded, category review
  5  import confirmed (session cleared)
"""
import enum
import logging
import os
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from database import DEFAULT_COUNTRIES
from errors import InputValidationError, PersistenceError, UploadStateError
from models import TransactionCategory, UploadSessionRecord
from schemas import BankDetection, TransactionCandidate
from services.bank_detector import detect_bank
from services.category_assigner import assign_categories
from services.pdf_processor import extract_text
from services.statement_extractor import extract_transactions_from_text
from services.transaction_store import (
    ImportResult, insert_transactions, record_upload, resolve_bank_account,
)

logger = logging.getLogger("Ledger.Ingestion")

PDF_CONTENT_TYPE = "application/pdf"
SUPPORTED_COUNTRIES = [code for code, _, _ in DEFAULT_COUNTRIES]


class WizardStep(enum.IntEnum):
    UPLOAD = 1
    CONFIRM_BANK = 2
    PREVIEW = 3
    CATEGORY_REVIEW = 4
    COMPLETE = 5


class UploadSession(BaseModel):
    file_name: str
    file_path: Optional[str] = None
    statement_text: str = ""
    detection: Optional[BankDetection] = None
    # Confirmed by the user; never defaulted from detection
    bank: Optional[str] = None
    country: Optional[str] = None
    account_type: Optional[str] = None
    transactions: Optional[list[TransactionCandidate]] = None
    skipped_indices: list[int] = []
    step: int = WizardStep.CONFIRM_BANK


# ─── Session store ────────────────────────────────────────────────────────────

def load_upload_session(db: Session, user_id: str) -> Optional[UploadSession]:
    record = db.query(UploadSessionRecord).filter(UploadSessionRecord.user_id == user_id).first()
    if not record:
        return None
    return UploadSession.model_validate(record.state)


def remove_statement_file(file_path: Optional[str]) -> None:
    if file_path and os.path.exists(file_path):
        os.remove(file_path)
        logger.info(f"  🗑️  Removed statement file {os.path.basename(file_path)}")


def save_upload_session(db: Session, user_id: str, session: UploadSession) -> None:
    state = session.model_dump(mode="json")
    record = db.query(UploadSessionRecord).filter(UploadSessionRecord.user_id == user_id).first()
    if record:
        previous_path = (record.state or {}).get("file_path")
        record.state = state
    else:
        previous_path = None
        db.add(UploadSessionRecord(user_id=user_id, state=state))
    db.commit()
    # A new upload replaces the previous one
    if previous_path != session.file_path:
        remove_statement_file(previous_path)


def clear_upload_session(db: Session, user_id: str) -> None:
    record = db.query(UploadSessionRecord).filter(UploadSessionRecord.user_id == user_id).first()
    if not record:
        return
    file_path = (record.state or {}).get("file_path")
    db.delete(record)
    db.commit()
    remove_statement_file(file_path)


def current_step(session: Optional[UploadSession]) -> int:
    return int(session.step) if session else int(WizardStep.UPLOAD)


# ─── Transitions ──────────────────────────────────────────────────────────────

def _require_session(session: Optional[UploadSession]) -> UploadSession:
    if session is None:
        raise UploadStateError("No upload in progress")
    return session


def _require_transactions(session: Optional[UploadSession]) -> UploadSession:
    session = _require_session(session)
    if session.transactions is None:
        raise UploadStateError("Transactions have not been extracted yet")
    return session


def validate_upload(content_type: Optional[str], size: int) -> None:
    if content_type != PDF_CONTENT_TYPE:
        raise InputValidationError("Only PDF files are allowed")
    if size == 0:
        raise InputValidationError("No file uploaded")
    if size > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
        raise InputValidationError(f"File size exceeds {settings.MAX_UPLOAD_SIZE_MB}MB limit")


def start_upload(file_path: str, file_name: str) -> UploadSession:
    """Step 1 → 2: extract the PDF text and run bank detection."""
    statement_text = extract_text(file_path)
    detection = detect_bank(statement_text)
    logger.info(
        f"📥 Upload {file_name}: {len(statement_text)} chars, "
        f"bank={detection.bank if detection else 'unknown'}"
    )
    return UploadSession(
        file_name=file_name,
        file_path=file_path,
        statement_text=statement_text,
        detection=detection,
        step=WizardStep.CONFIRM_BANK,
    )


def confirm_bank(session: Optional[UploadSession], bank: Optional[str], country: Optional[str]) -> UploadSession:
    """Step 2 → 3: record the institution and country chosen by the user."""
    session = _require_session(session)
    bank = (bank or "").strip()
    country = (country or "").strip().upper()
    if not bank:
        raise InputValidationError("Bank is required")
    if country not in SUPPORTED_COUNTRIES:
        raise InputValidationError(
            f"Country must be one of: {', '.join(SUPPORTED_COUNTRIES)}"
        )
    return session.model_copy(update={"bank": bank, "country": country, "step": WizardStep.PREVIEW})


def extract_statement_transactions(session: Optional[UploadSession], categories: list) -> UploadSession:
    """Run LLM extraction then categorisation; may be re-run.

    Extraction errors propagate and the caller keeps the previous session.
    Categorisation failures degrade to uncategorised transactions.
    """
    session = _require_session(session)
    extracted = extract_transactions_from_text(session.statement_text)
    categorised = assign_categories(extracted.transactions, categories)
    return session.model_copy(update={
        "transactions": categorised,
        "account_type": extracted.account_type,
        "skipped_indices": [],
        "step": WizardStep.PREVIEW,
    })


def skip_transactions(session: Optional[UploadSession], indices: list[int]) -> UploadSession:
    """Step 3 → 4: remember which extracted rows must not be imported."""
    session = _require_session(session)
    count = len(session.transactions or [])
    invalid = [i for i in indices if not 0 <= i < count]
    if invalid:
        raise InputValidationError(f"Invalid transaction indices: {invalid}")
    return session.model_copy(update={
        "skipped_indices": sorted(set(indices)),
        "step": int(WizardStep.CATEGORY_REVIEW),
    })


def review_payload(session: Optional[UploadSession], categories: list) -> dict:
    """Step 4 view: candidates with their categories, for user override."""
    session = _require_transactions(session)
    return {
        "step": int(WizardStep.CATEGORY_REVIEW),
        "bank": session.bank,
        "country": session.country,
        "skipped": session.skipped_indices,
        "transactions": [t.model_dump(mode="json") for t in session.transactions],
        "categories": [{"id": c.id, "name": c.name} for c in categories],
    }


def apply_category_overrides(
    db: Session,
    transactions: list[TransactionCandidate],
    overrides: list,
) -> list[TransactionCandidate]:
    """Replace categories from the review form (aligned by index).

    An override entry of None keeps the assigned category; an entry with
    ``category_id`` None clears it.
    """
    if not overrides:
        return list(transactions)
    requested = {o.category_id for o in overrides if o is not None and o.category_id is not None}
    if requested:
        found = {
            row.id for row in
            db.query(TransactionCategory.id).filter(TransactionCategory.id.in_(requested)).all()
        }
        unknown = sorted(requested - found)
        if unknown:
            raise InputValidationError(f"Unknown category ids: {unknown}")

    result = []
    for index, txn in enumerate(transactions):
        override = overrides[index] if index < len(overrides) else None
        if override is not None:
            txn = txn.model_copy(update={"category_id": override.category_id})
        result.append(txn)
    return result


def confirm_upload(
    db: Session,
    user_id: str,
    session: Optional[UploadSession],
    overrides: Optional[list] = None,
) -> ImportResult:
    """Step 4 → 5: persist the import in one database transaction.

    Resolves (or creates) the bank account, inserts the non-skipped,
    non-duplicate transactions and records the upload audit row. A database
    failure rolls everything back and raises PersistenceError; clearing the
    session is left to the caller so a failed import can be retried.
    """
    session = _require_transactions(session)
    if not session.bank or not session.country:
        raise UploadStateError("Bank and country must be confirmed before importing")

    transactions = apply_category_overrides(db, session.transactions, overrides or [])
    skipped = set(session.skipped_indices)
    kept_indices = [i for i in range(len(transactions)) if i not in skipped]
    to_import = [transactions[i] for i in kept_indices]

    try:
        account = resolve_bank_account(db, user_id, session.bank, session.country, session.account_type)
        result = insert_transactions(db, user_id, account, to_import)
        for outcome in result.outcomes:
            outcome.index = kept_indices[outcome.index]
        record_upload(
            db, user_id, account,
            file_name=session.file_name,
            bank_detected=session.detection.bank if session.detection else session.bank,
            result=result,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Import of {session.file_name} rolled back: {e}")
        raise PersistenceError("Failed to save transactions, nothing was imported") from e

    logger.info(
        f"✅ Imported {result.inserted_count} transaction(s) from {session.file_name} "
        f"into account {account.id} ({len(skipped)} skipped by user)"
    )
    return result