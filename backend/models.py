import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Integer, Text, Date, DateTime, ForeignKey,
    JSON, Boolean, Numeric,
)
from sqlalchemy.orm import relationship
from database import Base
import enum


# ─── Enums ────────────────────────────────────────────────────────────────────

class TransactionType(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class AccountType(str, enum.Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    INVESTMENT = "investment"


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class UploadStatus(str, enum.Enum):
    PROCESSED = "processed"


# ─── Helper ───────────────────────────────────────────────────────────────────

def generate_uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


# ─── Models ───────────────────────────────────────────────────────────────────

class User(Base):
    """Application user."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    bank_accounts = relationship("BankAccount", back_populates="owner", cascade="all, delete-orphan")
    conversations = relationship("AiConversation", back_populates="owner", cascade="all, delete-orphan")


class Country(Base):
    __tablename__ = "countries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String, nullable=False, unique=True)  # UK, IN
    name = Column(String, nullable=False)
    currency_code = Column(String, nullable=False)  # GBP, INR


class BankAccount(Base):
    """A linked bank account; one per (user, bank, country) for imports."""
    __tablename__ = "bank_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    country_id = Column(Integer, ForeignKey("countries.id"), nullable=False)
    bank_name = Column(String, nullable=False)
    account_name = Column(String)
    account_type = Column(String, default=AccountType.CHECKING.value)
    account_number_masked = Column(String)
    currency = Column(String, nullable=False)
    confirmed = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="bank_accounts")
    country = relationship("Country")
    transactions = relationship("Transaction", back_populates="bank_account")


class TransactionCategory(Base):
    __tablename__ = "transaction_categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)  # looked up case-insensitively
    description = Column(Text)
    system_defined = Column(Boolean, default=False)


class Transaction(Base):
    """A durable ledger row. (bank_account_id, transaction_date, amount,
    description|merchant) is the dedup key for statement imports."""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    bank_account_id = Column(Integer, ForeignKey("bank_accounts.id"), nullable=False, index=True)
    transaction_date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)  # negative = outflow
    currency = Column(String, nullable=False)
    description = Column(Text)
    merchant = Column(String)
    transaction_type = Column(String, nullable=False)  # debit / credit
    category_id = Column(Integer, ForeignKey("transaction_categories.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    bank_account = relationship("BankAccount", back_populates="transactions")
    category = relationship("TransactionCategory")


class PdfUpload(Base):
    """Audit row written when a statement import is confirmed."""
    __tablename__ = "pdf_uploads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    bank_account_id = Column(Integer, ForeignKey("bank_accounts.id"), nullable=False)
    file_name = Column(String)
    bank_detected = Column(String)
    transaction_count = Column(Integer, default=0)
    skipped_duplicates = Column(Integer, default=0)
    failed_count = Column(Integer, default=0)
    upload_status = Column(String, default=UploadStatus.PROCESSED.value)
    created_at = Column(DateTime, default=utcnow)


class UploadSessionRecord(Base):
    """Server-side store for the in-progress import wizard (one per user)."""
    __tablename__ = "upload_sessions"

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    state = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class AiConversation(Base):
    __tablename__ = "ai_conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String)
    page_route = Column(String)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, index=True)

    owner = relationship("User", back_populates="conversations")
    messages = relationship(
        "AiMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="AiMessage.id",
    )


class AiMessage(Base):
    __tablename__ = "ai_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("ai_conversations.id"), nullable=False, index=True)
    role = Column(String, nullable=False)  # user / assistant / tool
    content = Column(Text, nullable=False, default="")
    tool_name = Column(String)
    tool_call_id = Column(String)
    # tool result for role=tool; {"tool_calls": [...]} for assistant tool requests
    tool_payload = Column(JSON)
    created_at = Column(DateTime, default=utcnow)

    conversation = relationship("AiConversation", back_populates="messages")


class GlobalSetting(Base):
    __tablename__ = "global_settings"

    key = Column(String, primary_key=True)
    value = Column(Text)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
