from pydantic import BaseModel, Field, field_serializer
from typing import Optional
import datetime as dt
from decimal import Decimal


# ─── Statement Ingestion Schemas ──────────────────────────────────────────────

class BankDetection(BaseModel):
    bank: str
    country: str
    confidence: float


class TransactionCandidate(BaseModel):
    """A transaction parsed from statement text, not yet persisted.
    Debits carry a negative amount, credits a positive one."""
    date: Optional[dt.date] = None
    amount: Optional[Decimal] = None
    merchant: Optional[str] = None
    description: Optional[str] = None
    transaction_type: Optional[str] = None
    category_id: Optional[int] = None

    @field_serializer("amount")
    def _amount_as_number(self, amount: Optional[Decimal]):
        return float(amount) if amount is not None else None


class ExtractionResult(BaseModel):
    transactions: list[TransactionCandidate] = []
    bank_detected: Optional[str] = None
    account_type: Optional[str] = None
    confidence: Optional[float] = None


class ConfirmBankRequest(BaseModel):
    selected_bank: Optional[str] = Field(None, alias="selectedBank")
    selected_country: Optional[str] = Field(None, alias="selectedCountry")

    class Config:
        populate_by_name = True


class SkipTransactionsRequest(BaseModel):
    skipped_ids: list[int] = Field(default_factory=list, alias="skippedIds")

    class Config:
        populate_by_name = True


class CategoryOverride(BaseModel):
    category_id: Optional[int] = None


class ConfirmUploadRequest(BaseModel):
    categorized_transactions: list[Optional[CategoryOverride]] = Field(
        default_factory=list, alias="categorizedTransactions"
    )

    class Config:
        populate_by_name = True


# ─── Assistant Schemas ────────────────────────────────────────────────────────

class PageContext(BaseModel):
    route: str = ""
    country: str = ""
    summary: dict = {}


class ChatRequest(BaseModel):
    message: Optional[str] = None
    conversation_id: Optional[int] = Field(None, alias="conversationId")
    page_context: Optional[PageContext] = Field(None, alias="pageContext")

    class Config:
        populate_by_name = True


class ConversationResponse(BaseModel):
    id: int
    title: Optional[str] = None
    page_route: Optional[str] = None
    created_at: dt.datetime
    updated_at: dt.datetime

    class Config:
        from_attributes = True


class RenameConversationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class MessageResponse(BaseModel):
    id: int
    role: str
    content: str
    tool_name: Optional[str] = None
    tool_payload: Optional[dict] = None
    created_at: dt.datetime

    class Config:
        from_attributes = True


class ModelSettingRequest(BaseModel):
    model: str = Field(..., min_length=1, max_length=200)
