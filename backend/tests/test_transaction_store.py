"""Tests for bank account resolution and deduplicating inserts."""

from datetime import date
from decimal import Decimal

import pytest

from errors import InputValidationError
from models import BankAccount, Transaction
from schemas import TransactionCandidate
from services.transaction_store import (
    ImportStatus, find_duplicate, insert_transactions, resolve_bank_account,
)


def _candidate(day=1, amount="-42.10", merchant="Tesco", description="TESCO STORES 2231", txn_type="debit"):
    return TransactionCandidate(
        date=date(2024, 3, day) if day else None,
        amount=Decimal(amount) if amount is not None else None,
        merchant=merchant,
        description=description,
        transaction_type=txn_type,
    )


@pytest.fixture
def account(db, user):
    account = resolve_bank_account(db, user.id, "HSBC", "UK")
    db.commit()
    return account


class TestResolveBankAccount:
    def test_creates_account_with_country_currency(self, db, user):
        account = resolve_bank_account(db, user.id, "ICICI", "IN", "savings")
        assert account.id is not None
        assert account.currency == "INR"
        assert account.account_type == "savings"
        assert account.confirmed

    def test_reuses_existing_account_case_insensitively(self, db, user, account):
        again = resolve_bank_account(db, user.id, "hsbc", "UK")
        assert again.id == account.id
        assert db.query(BankAccount).count() == 1

    def test_same_bank_other_country_is_separate(self, db, user, account):
        india = resolve_bank_account(db, user.id, "HSBC", "IN")
        assert india.id != account.id
        assert india.currency == "INR"

    def test_unknown_account_type_defaults_to_checking(self, db, user):
        assert resolve_bank_account(db, user.id, "Revolut", "UK", "crypto").account_type == "checking"

    def test_unsupported_country(self, db, user):
        with pytest.raises(InputValidationError):
            resolve_bank_account(db, user.id, "BNP", "FR")


class TestInsertTransactions:
    def test_inserts_new_rows(self, db, user, account):
        result = insert_transactions(db, user.id, account, [_candidate(1), _candidate(2, "2500", "Acme", "SALARY", "credit")])
        db.commit()
        assert result.inserted_count == 2
        assert [o.status for o in result.outcomes] == [ImportStatus.INSERTED, ImportStatus.INSERTED]
        stored = db.query(Transaction).order_by(Transaction.id).all()
        assert stored[0].currency == "GBP"
        assert float(stored[0].amount) == -42.10

    def test_reimport_is_idempotent(self, db, user, account):
        batch = [_candidate(1), _candidate(5, "-10.99", "Netflix", "NETFLIX.COM")]
        insert_transactions(db, user.id, account, batch)
        db.commit()

        result = insert_transactions(db, user.id, account, batch)
        db.commit()
        assert result.inserted_count == 0
        assert result.skipped_count == 2
        assert db.query(Transaction).count() == 2

    def test_reimport_without_merchant_or_description(self, db, user, account):
        bare = _candidate(1, "-5.00", merchant=None, description=None)
        insert_transactions(db, user.id, account, [bare])
        db.commit()

        result = insert_transactions(db, user.id, account, [bare])
        db.commit()
        assert result.outcomes[0].status == ImportStatus.SKIPPED_DUPLICATE
        assert db.query(Transaction).count() == 1

    def test_empty_and_missing_text_are_equivalent(self, db, user, account):
        insert_transactions(db, user.id, account, [_candidate(1, "-5.00", merchant=None, description=None)])
        db.commit()
        blank = _candidate(1, "-5.00", merchant="", description="")
        assert find_duplicate(db, account.id, blank) is not None

    def test_duplicate_within_same_batch(self, db, user, account):
        result = insert_transactions(db, user.id, account, [_candidate(1), _candidate(1)])
        assert result.inserted_count == 1
        assert result.outcomes[1].status == ImportStatus.SKIPPED_DUPLICATE
        assert result.outcomes[1].transaction_id == result.outcomes[0].transaction_id

    def test_merchant_match_alone_is_duplicate(self, db, user, account):
        insert_transactions(db, user.id, account, [_candidate(1)])
        reworded = _candidate(1, description="Card payment TESCO")
        assert find_duplicate(db, account.id, reworded) is not None

    def test_different_amount_is_not_duplicate(self, db, user, account):
        insert_transactions(db, user.id, account, [_candidate(1)])
        assert find_duplicate(db, account.id, _candidate(1, amount="-42.11")) is None

    def test_other_account_is_not_duplicate(self, db, user, account):
        insert_transactions(db, user.id, account, [_candidate(1)])
        other = resolve_bank_account(db, user.id, "Revolut", "UK")
        result = insert_transactions(db, user.id, other, [_candidate(1)])
        assert result.inserted_count == 1

    def test_rows_missing_fields_fail_individually(self, db, user, account):
        result = insert_transactions(
            db, user.id, account,
            [_candidate(day=None), _candidate(2, amount=None), _candidate(3)],
        )
        assert [o.status for o in result.outcomes] == [
            ImportStatus.FAILED, ImportStatus.FAILED, ImportStatus.INSERTED,
        ]
        assert result.failed_count == 2
        assert "date" in result.outcomes[0].reason
        assert "amount" in result.outcomes[1].reason
