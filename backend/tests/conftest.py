"""
Shared pytest fixtures for the ledger backend tests.

Provides an in-memory database with reference data, a test user, an API
client with database/auth overrides, and helpers for statement PDFs and
scripted model replies.
"""

import os
import sys
import tempfile
from pathlib import Path

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="ledger-uploads-")
os.environ["OPENROUTER_API_KEY"] = "test-key"
os.environ["OPENROUTER_MODEL"] = ""

sys.path.insert(0, str(Path(__file__).parent.parent))

import fitz  # PyMuPDF
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from database import Base, get_db, seed_reference_data
from models import User, generate_uuid
from routers.auth import get_current_user_dep, hash_password


HSBC_UK_STATEMENT = """HSBC UK Bank plc
Statement of account, London branch
Account: Current Account   Currency: GBP
01 Mar 2024  TESCO STORES 2231         42.10 DR
03 Mar 2024  ACME LTD SALARY         2500.00 CR
05 Mar 2024  NETFLIX.COM               10.99 DR
"""

SAMPLE_EXTRACTION = """```json
{
  "transactions": [
    {"date": "2024-03-01", "amount": -42.10, "merchant": "Tesco", "description": "TESCO STORES 2231", "transaction_type": "debit"},
    {"date": "2024-03-03", "amount": 2500.00, "merchant": "Acme Ltd", "description": "ACME LTD SALARY", "transaction_type": "credit"},
    {"date": "2024-03-05", "amount": 10.99, "merchant": "Netflix", "description": "NETFLIX.COM", "transaction_type": "debit"}
  ],
  "bank_detected": "HSBC",
  "account_type": "checking",
  "confidence": 0.92
}
```"""

SAMPLE_CATEGORIES = '{"Tesco": "Groceries", "Acme Ltd": "Salary", "Netflix": "Streaming Services"}'


@pytest.fixture
def engine():
    """Fresh in-memory database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Session with countries and system categories seeded."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    seed_reference_data(session)
    yield session
    session.close()


def make_user(db, email="test@example.com", name="Test User"):
    user = User(id=generate_uuid(), name=name, email=email, password_hash=hash_password("password123"))
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def other_user(db):
    return make_user(db, email="other@example.com", name="Other User")


@pytest.fixture
def api(db):
    """API client using the test database; authentication is real."""
    from main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client(api, user):
    """API client already authenticated as ``user``."""
    from main import app

    app.dependency_overrides[get_current_user_dep] = lambda: user
    return api


@pytest.fixture
def llm_replies(monkeypatch):
    """Route single-turn model calls to canned replies.

    Extraction prompts get ``replies["extraction"]``, category prompts get
    ``replies["categories"]``; a value that is an exception is raised.
    """
    replies = {"extraction": SAMPLE_EXTRACTION, "categories": SAMPLE_CATEGORIES}
    calls = []

    def fake_chat_completion(messages, model=None, temperature=0.2, max_tokens=4096):
        prompt = messages[-1]["content"]
        key = "categories" if "categorising" in prompt else "extraction"
        calls.append(key)
        reply = replies[key]
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr("services.statement_extractor.chat_completion", fake_chat_completion)
    monkeypatch.setattr("services.category_assigner.chat_completion", fake_chat_completion)
    replies["calls"] = calls
    return replies


def write_pdf(path, lines, **save_options):
    """Write a one-page PDF containing ``lines`` of text."""
    doc = fitz.open()
    page = doc.new_page()
    y = 72
    for line in lines:
        page.insert_text((72, y), line, fontsize=10)
        y += 14
    doc.save(str(path), **save_options)
    doc.close()
    return str(path)
