"""Tests for the statement import wizard transitions."""

import os

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import HSBC_UK_STATEMENT
from errors import (
    ExtractionFailed, InputValidationError, MalformedModelOutput, PersistenceError, UploadStateError,
)
from models import BankAccount, PdfUpload, Transaction
from schemas import CategoryOverride
from services import ingestion
from services.ingestion import UploadSession, WizardStep
from services.transaction_store import ImportStatus, get_categories


@pytest.fixture
def started(monkeypatch, tmp_path):
    pdf_path = tmp_path / "statement.pdf"
    pdf_path.write_bytes(b"%PDF-1.4 statement bytes")
    monkeypatch.setattr("services.ingestion.extract_text", lambda path: HSBC_UK_STATEMENT)
    return ingestion.start_upload(str(pdf_path), "march.pdf")


@pytest.fixture
def extracted(db, started, llm_replies):
    session = ingestion.confirm_bank(started, "HSBC", "UK")
    return ingestion.extract_statement_transactions(session, get_categories(db))


class TestValidateUpload:
    def test_accepts_pdf(self):
        ingestion.validate_upload("application/pdf", 1024)

    def test_rejects_other_types(self):
        with pytest.raises(InputValidationError, match="Only PDF"):
            ingestion.validate_upload("image/png", 1024)

    def test_rejects_oversized(self):
        with pytest.raises(InputValidationError, match="5MB"):
            ingestion.validate_upload("application/pdf", 5 * 1024 * 1024 + 1)


class TestStartUpload:
    def test_detects_bank_without_confirming_it(self, started):
        assert started.step == WizardStep.CONFIRM_BANK
        assert started.detection.bank == "HSBC"
        assert started.detection.country == "UK"
        assert started.bank is None
        assert started.country is None

    def test_unknown_bank_still_advances(self, monkeypatch):
        monkeypatch.setattr("services.ingestion.extract_text", lambda path: "Some Credit Union statement")
        session = ingestion.start_upload("/tmp/x.pdf", "x.pdf")
        assert session.detection is None
        assert session.step == WizardStep.CONFIRM_BANK

    def test_extraction_failure_propagates(self, monkeypatch):
        def fail(path):
            raise ExtractionFailed("The PDF is password protected")

        monkeypatch.setattr("services.ingestion.extract_text", fail)
        with pytest.raises(ExtractionFailed):
            ingestion.start_upload("/tmp/x.pdf", "x.pdf")


class TestConfirmBank:
    def test_records_choice(self, started):
        session = ingestion.confirm_bank(started, " Revolut ", "uk")
        assert (session.bank, session.country) == ("Revolut", "UK")
        assert session.step == WizardStep.PREVIEW
        # value object: the input is untouched
        assert started.bank is None

    def test_country_is_required(self, started):
        with pytest.raises(InputValidationError):
            ingestion.confirm_bank(started, "HSBC", None)

    def test_unsupported_country(self, started):
        with pytest.raises(InputValidationError):
            ingestion.confirm_bank(started, "HSBC", "FR")

    def test_bank_is_required(self, started):
        with pytest.raises(InputValidationError):
            ingestion.confirm_bank(started, "", "UK")

    def test_requires_session(self):
        with pytest.raises(UploadStateError):
            ingestion.confirm_bank(None, "HSBC", "UK")


class TestExtraction:
    def test_extracts_and_categorises(self, db, extracted):
        ids = {c.name: c.id for c in get_categories(db)}
        assert len(extracted.transactions) == 3
        assert [t.category_id for t in extracted.transactions] == [ids["Groceries"], ids["Salary"], None]
        assert extracted.account_type == "checking"

    def test_malformed_output_keeps_previous_session(self, db, started, llm_replies):
        session = ingestion.confirm_bank(started, "HSBC", "UK")
        llm_replies["extraction"] = "no json here"
        with pytest.raises(MalformedModelOutput):
            ingestion.extract_statement_transactions(session, get_categories(db))
        assert session.transactions is None


class TestSkipTransactions:
    def test_records_skip_list(self, extracted):
        session = ingestion.skip_transactions(extracted, [2, 0, 2])
        assert session.skipped_indices == [0, 2]
        assert session.step == WizardStep.CATEGORY_REVIEW

    def test_out_of_range_index(self, extracted):
        with pytest.raises(InputValidationError):
            ingestion.skip_transactions(extracted, [3])


class TestConfirmUpload:
    def test_imports_everything(self, db, user, extracted):
        result = ingestion.confirm_upload(db, user.id, extracted)
        assert result.inserted_count == 3
        assert db.query(Transaction).count() == 3
        assert db.query(Transaction).filter(Transaction.category_id.is_(None)).count() == 1
        upload = db.query(PdfUpload).one()
        assert upload.transaction_count == 3
        assert upload.bank_detected == "HSBC"
        account = db.query(BankAccount).one()
        assert account.currency == "GBP"

    def test_skipped_rows_are_not_imported(self, db, user, extracted):
        session = ingestion.skip_transactions(extracted, [1])
        result = ingestion.confirm_upload(db, user.id, session)
        assert result.inserted_count == 2
        assert [o.index for o in result.outcomes] == [0, 2]
        merchants = {t.merchant for t in db.query(Transaction).all()}
        assert merchants == {"Tesco", "Netflix"}

    def test_second_import_skips_duplicates(self, db, user, extracted):
        ingestion.confirm_upload(db, user.id, extracted)
        result = ingestion.confirm_upload(db, user.id, extracted)
        assert result.inserted_count == 0
        assert result.skipped_count == 3
        assert all(o.status == ImportStatus.SKIPPED_DUPLICATE for o in result.outcomes)
        assert db.query(Transaction).count() == 3

    def test_category_overrides(self, db, user, extracted):
        ids = {c.name: c.id for c in get_categories(db)}
        overrides = [None, CategoryOverride(category_id=None), CategoryOverride(category_id=ids["Subscriptions"])]
        ingestion.confirm_upload(db, user.id, extracted, overrides)
        by_merchant = {t.merchant: t.category_id for t in db.query(Transaction).all()}
        assert by_merchant == {"Tesco": ids["Groceries"], "Acme Ltd": None, "Netflix": ids["Subscriptions"]}

    def test_unknown_category_override(self, db, user, extracted):
        with pytest.raises(InputValidationError):
            ingestion.confirm_upload(db, user.id, extracted, [CategoryOverride(category_id=9999)])
        assert db.query(Transaction).count() == 0

    def test_requires_extracted_transactions(self, db, user, started):
        session = ingestion.confirm_bank(started, "HSBC", "UK")
        with pytest.raises(UploadStateError):
            ingestion.confirm_upload(db, user.id, session)

    def test_requires_confirmed_country(self, db, user):
        session = UploadSession(file_name="x.pdf", bank="HSBC", transactions=[])
        with pytest.raises(UploadStateError):
            ingestion.confirm_upload(db, user.id, session)

    def test_database_failure_rolls_back(self, db, user, extracted, monkeypatch):
        def broken_record_upload(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr("services.ingestion.record_upload", broken_record_upload)
        with pytest.raises(PersistenceError):
            ingestion.confirm_upload(db, user.id, extracted)
        assert db.query(Transaction).count() == 0
        assert db.query(BankAccount).count() == 0


class TestSessionStore:
    def test_round_trip(self, db, user, extracted):
        ingestion.save_upload_session(db, user.id, extracted)
        loaded = ingestion.load_upload_session(db, user.id)
        assert (loaded.bank, loaded.country) == ("HSBC", "UK")
        assert [t.merchant for t in loaded.transactions] == ["Tesco", "Acme Ltd", "Netflix"]
        assert [t.date for t in loaded.transactions] == [t.date for t in extracted.transactions]
        assert ingestion.current_step(loaded) == WizardStep.PREVIEW

    def test_new_upload_replaces_previous(self, db, user, started, extracted):
        ingestion.save_upload_session(db, user.id, extracted)
        ingestion.save_upload_session(db, user.id, started)
        assert ingestion.load_upload_session(db, user.id).transactions is None

    def test_clear(self, db, user, started):
        ingestion.save_upload_session(db, user.id, started)
        ingestion.clear_upload_session(db, user.id)
        assert ingestion.load_upload_session(db, user.id) is None
        assert ingestion.current_step(None) == WizardStep.UPLOAD

    def test_clear_removes_statement_file(self, db, user, started):
        ingestion.save_upload_session(db, user.id, started)
        ingestion.clear_upload_session(db, user.id)
        assert not os.path.exists(started.file_path)

    def test_new_upload_removes_previous_file(self, db, user, started, tmp_path):
        ingestion.save_upload_session(db, user.id, started)
        replacement = tmp_path / "replacement.pdf"
        replacement.write_bytes(b"%PDF-1.4 second statement")
        ingestion.save_upload_session(db, user.id, started.model_copy(update={"file_path": str(replacement)}))
        assert not os.path.exists(started.file_path)
        assert replacement.exists()

    def test_advancing_the_wizard_keeps_the_file(self, db, user, started, extracted):
        ingestion.save_upload_session(db, user.id, started)
        ingestion.save_upload_session(db, user.id, extracted)
        assert os.path.exists(extracted.file_path)

    def test_confirm_then_clear_removes_file(self, db, user, extracted):
        ingestion.save_upload_session(db, user.id, extracted)
        ingestion.confirm_upload(db, user.id, extracted)
        ingestion.clear_upload_session(db, user.id)
        assert not os.path.exists(extracted.file_path)
        assert db.query(Transaction).count() == 3

    def test_missing_file_is_ignored(self, db, user, started):
        ingestion.save_upload_session(db, user.id, started)
        os.remove(started.file_path)
        ingestion.clear_upload_session(db, user.id)
        assert ingestion.load_upload_session(db, user.id) is None
