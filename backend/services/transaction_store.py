"""Deduplicating persistence for imported statement transactions.

Rows are checked one at a time against existing transactions for the same
account on (transaction_date, amount) plus a match on EITHER description or
merchant. Matching either text field is enough.

Nothing here commits; the caller owns the transaction boundary.
"""
import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from errors import InputValidationError
from models import (
    AccountType, BankAccount, Country, PdfUpload, Transaction, TransactionCategory,
)
from schemas import TransactionCandidate

logger = logging.getLogger("Ledger.Transactions")

CENT = Decimal("0.01")


class ImportStatus(str, enum.Enum):
    INSERTED = "inserted"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    FAILED = "failed"


@dataclass
class ImportOutcome:
    index: int
    status: ImportStatus
    transaction_id: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class ImportResult:
    outcomes: list = field(default_factory=list)
    inserted: list = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted)

    @property
    def skipped_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == ImportStatus.SKIPPED_DUPLICATE)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == ImportStatus.FAILED)


def quantize_amount(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def get_categories(db: Session) -> list:
    return db.query(TransactionCategory).order_by(TransactionCategory.name.asc()).all()


def get_country(db: Session, code: str) -> Optional[Country]:
    return db.query(Country).filter(Country.code == code).first()


def resolve_bank_account(
    db: Session,
    user_id: str,
    bank_name: str,
    country_code: str,
    account_type: Optional[str] = None,
) -> BankAccount:
    """Find the user's account for (bank, country) or create one whose
    currency follows the country."""
    country = get_country(db, country_code)
    if not country:
        raise InputValidationError(f"Country not supported: {country_code}")

    account = (
        db.query(BankAccount)
        .filter(
            BankAccount.user_id == user_id,
            func.lower(BankAccount.bank_name) == bank_name.strip().lower(),
            BankAccount.country_id == country.id,
        )
        .first()
    )
    if account:
        return account

    valid_types = {t.value for t in AccountType}
    account = BankAccount(
        user_id=user_id,
        country_id=country.id,
        bank_name=bank_name.strip(),
        account_type=account_type if account_type in valid_types else AccountType.CHECKING.value,
        currency=country.currency_code,
        confirmed=True,
    )
    db.add(account)
    db.flush()
    logger.info(f"  🏦 Created bank account {account.bank_name} ({country.code}, {account.currency})")
    return account


def find_duplicate(db: Session, bank_account_id: int, candidate: TransactionCandidate) -> Optional[Transaction]:
    return (
        db.query(Transaction)
        .filter(
            Transaction.bank_account_id == bank_account_id,
            Transaction.transaction_date == candidate.date,
            Transaction.amount == quantize_amount(candidate.amount),
            or_(
                func.coalesce(Transaction.description, "") == (candidate.description or ""),
                func.coalesce(Transaction.merchant, "") == (candidate.merchant or ""),
            ),
        )
        .first()
    )


def _failure_reason(candidate: TransactionCandidate) -> Optional[str]:
    if candidate.date is None:
        return "missing or invalid date"
    if candidate.amount is None:
        return "missing or invalid amount"
    if candidate.transaction_type not in ("debit", "credit"):
        return "missing transaction type"
    return None


def insert_transactions(
    db: Session,
    user_id: str,
    bank_account: BankAccount,
    candidates: list[TransactionCandidate],
) -> ImportResult:
    """Insert candidates not already present on ``bank_account``.

    Every candidate gets an outcome: inserted, skipped_duplicate, or failed
    with a reason. Each insert is flushed so later candidates in the same
    batch are checked against it.
    """
    result = ImportResult()
    for index, candidate in enumerate(candidates):
        reason = _failure_reason(candidate)
        if reason:
            logger.warning(f"  ⚠️  Transaction #{index} not imported: {reason}")
            result.outcomes.append(ImportOutcome(index, ImportStatus.FAILED, reason=reason))
            continue

        existing = find_duplicate(db, bank_account.id, candidate)
        if existing:
            result.outcomes.append(
                ImportOutcome(index, ImportStatus.SKIPPED_DUPLICATE, transaction_id=existing.id)
            )
            continue

        txn = Transaction(
            user_id=user_id,
            bank_account_id=bank_account.id,
            transaction_date=candidate.date,
            amount=quantize_amount(candidate.amount),
            currency=bank_account.currency,
            description=candidate.description,
            merchant=candidate.merchant,
            transaction_type=candidate.transaction_type,
            category_id=candidate.category_id,
        )
        db.add(txn)
        db.flush()
        result.inserted.append(txn)
        result.outcomes.append(ImportOutcome(index, ImportStatus.INSERTED, transaction_id=txn.id))

    logger.info(
        f"  💾 Inserted {result.inserted_count} new transactions, "
        f"skipped {result.skipped_count} duplicates, {result.failed_count} failed"
    )
    return result


def record_upload(
    db: Session,
    user_id: str,
    bank_account: BankAccount,
    file_name: Optional[str],
    bank_detected: Optional[str],
    result: ImportResult,
) -> PdfUpload:
    upload = PdfUpload(
        user_id=user_id,
        bank_account_id=bank_account.id,
        file_name=file_name,
        bank_detected=bank_detected,
        transaction_count=result.inserted_count,
        skipped_duplicates=result.skipped_count,
        failed_count=result.failed_count,
    )
    db.add(upload)
    db.flush()
    return upload
