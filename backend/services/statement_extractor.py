"""
Statement extraction client. Turns raw statement text into transaction
candidates with one single-turn LLM call.

Model output is treated as an untrusted protocol: code fences are stripped,
the payload must parse as the expected JSON object, and anything else is a
MalformedModelOutput (never an empty list, which would be indistinguishable
from a statement with no transactions).
"""
import json
import logging
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from pydantic import ValidationError

from errors import MalformedModelOutput
from models import TransactionType
from schemas import ExtractionResult, TransactionCandidate
from services.llm_client import chat_completion

logger = logging.getLogger("Ledger.Extraction")

TRANSACTION_EXTRACTION_PROMPT = """You are a bank statement parser. Extract all transactions from the following bank statement text and return as JSON.

Return ONLY valid JSON (no markdown, no code fences, no extra text) in this format:
{
  "transactions": [
    {
      "date": "YYYY-MM-DD",
      "amount": number (positive for credit, negative for debit),
      "merchant": "merchant name",
      "description": "transaction description",
      "transaction_type": "debit" or "credit"
    }
  ],
  "bank_detected": "bank name",
  "account_type": "checking/savings/investment",
  "confidence": 0.0 to 1.0
}

Bank Statement:
"""

_FENCE_OPEN = re.compile(r"^```(?:json|JSON)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?\s*```\s*$")


def strip_code_fences(content: str) -> str:
    """Remove a leading ```json / ``` marker and a trailing ``` marker."""
    cleaned = (content or "").strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def parse_llm_json(content: str) -> Union[dict, list]:
    """Parse model output as JSON after fence stripping.

    Raises MalformedModelOutput carrying the raw content on failure.
    """
    cleaned = strip_code_fences(content)
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, TypeError) as e:
        logger.error(f"LLM returned invalid JSON ({e}); content: {(content or '')[:300]!r}")
        raise MalformedModelOutput(f"Model output was not valid JSON: {e}", raw=content or "") from e


def _to_decimal(value) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace(",", "").replace("£", "").replace("₹", "").strip()
        if not value:
            return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    # NaN and Infinity are treated as missing
    return amount if amount.is_finite() else None


def _to_date(value) -> Optional[date]:
    # Unparseable dates are kept as None; persistence reports those rows as failed
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        logger.warning(f"Ignoring unparseable transaction date {value!r}")
        return None


def normalize_transaction(raw: dict) -> dict:
    """Make sign and transaction_type agree: debit is an outflow (negative),
    credit an inflow (positive). A missing type is inferred from the sign."""
    txn = dict(raw)
    amount = _to_decimal(txn.get("amount"))
    txn_type = (txn.get("transaction_type") or "").strip().lower()

    if txn_type not in (TransactionType.DEBIT.value, TransactionType.CREDIT.value):
        txn_type = None
        if amount is not None:
            txn_type = TransactionType.DEBIT.value if amount < 0 else TransactionType.CREDIT.value

    if amount is not None and txn_type == TransactionType.DEBIT.value:
        amount = -abs(amount)
    elif amount is not None and txn_type == TransactionType.CREDIT.value:
        amount = abs(amount)

    txn["amount"] = amount
    txn["transaction_type"] = txn_type
    txn["category_id"] = None
    for field in ("merchant", "description"):
        value = txn.get(field)
        txn[field] = str(value).strip() if value not in (None, "") else None
    txn["date"] = _to_date(txn.get("date"))
    return txn


def build_extraction_result(payload: Union[dict, list], raw: str) -> ExtractionResult:
    if isinstance(payload, list):
        # Some models return the bare transaction array
        payload = {"transactions": payload}
    if not isinstance(payload, dict) or not isinstance(payload.get("transactions", []), list):
        raise MalformedModelOutput("Model output did not contain a transactions list", raw=raw)

    try:
        transactions = [
            TransactionCandidate.model_validate(normalize_transaction(t))
            for t in payload.get("transactions") or []
            if isinstance(t, dict)
        ]
        confidence = payload.get("confidence")
        return ExtractionResult(
            transactions=transactions,
            bank_detected=payload.get("bank_detected"),
            account_type=payload.get("account_type"),
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
        )
    except ValidationError as e:
        logger.error(f"LLM transactions failed validation: {e}; content: {raw[:300]!r}")
        raise MalformedModelOutput(f"Model output had invalid transaction fields: {e}", raw=raw) from e


def extract_transactions_from_text(statement_text: str) -> ExtractionResult:
    """Call the model once and parse its transaction list.

    Errors (ConfigurationError, LLMError, MalformedModelOutput) propagate;
    no retry happens here.
    """
    content = chat_completion(
        messages=[{"role": "user", "content": TRANSACTION_EXTRACTION_PROMPT + statement_text}],
        temperature=0.3,
        max_tokens=8000,
    )
    logger.info(f"  🤖 LLM response (cleaned): {strip_code_fences(content)[:200]!r}")
    result = build_extraction_result(parse_llm_json(content), content)
    logger.info(f"  ✅ Extracted {len(result.transactions)} transaction(s)")
    return result
