"""Assign categories to extracted transactions with a single batched LLM call.

Any failure leaves every transaction uncategorised; the import goes on.
"""
import json
import logging
from typing import Optional

from schemas import TransactionCandidate
from services.llm_client import chat_completion
from services.statement_extractor import parse_llm_json

logger = logging.getLogger("Ledger.Categories")

CATEGORY_PROMPT = """You are categorising personal bank transactions.
Allowed categories (use these names exactly, nothing else):
{categories}

Transactions:
{transactions}

Return ONLY a JSON object (no markdown) mapping each merchant to one allowed category name, e.g.
{{"Tesco": "Groceries", "Uber": "Transport"}}
Use null when no category fits.
"""


def _merchant_key(txn: TransactionCandidate) -> str:
    return (txn.merchant or txn.description or "").strip()


def resolve_category_id(name, categories_by_name: dict) -> Optional[int]:
    """Case-insensitive exact match; unknown or invented names give None."""
    if not isinstance(name, str):
        return None
    return categories_by_name.get(name.strip().lower())


def _uncategorised(transactions: list[TransactionCandidate]) -> list[TransactionCandidate]:
    return [t.model_copy(update={"category_id": None}) for t in transactions]


def assign_categories(transactions: list[TransactionCandidate], categories: list) -> list[TransactionCandidate]:
    """Return copies of ``transactions`` annotated with a category id or None.

    ``categories`` is the known vocabulary: objects with ``id`` and ``name``.
    The output has exactly one entry per input, in input order.
    """
    if not transactions:
        return []
    categories_by_name = {c.name.strip().lower(): c.id for c in categories}
    if not categories_by_name:
        return _uncategorised(transactions)

    lines = [
        json.dumps({
            "merchant": _merchant_key(t),
            "description": t.description,
            "amount": float(t.amount) if t.amount is not None else None,
            "type": t.transaction_type,
        })
        for t in transactions
    ]
    prompt = CATEGORY_PROMPT.format(
        categories="\n".join(f"- {c.name}" for c in categories),
        transactions="\n".join(lines),
    )

    try:
        content = chat_completion(
            messages=[{"role": "user", "content": prompt}],
            temperature=0.0,
            max_tokens=2000,
        )
        mapping = parse_llm_json(content)
        if not isinstance(mapping, dict):
            raise ValueError(f"expected a JSON object, got {type(mapping).__name__}")
    except Exception as e:
        logger.warning(f"Category assignment failed, continuing uncategorised: {e}")
        return _uncategorised(transactions)

    lowered = {str(k).strip().lower(): v for k, v in mapping.items()}
    result = []
    for txn in transactions:
        key = _merchant_key(txn)
        name = mapping.get(key, lowered.get(key.lower()))
        result.append(txn.model_copy(update={"category_id": resolve_category_id(name, categories_by_name)}))

    matched = sum(1 for t in result if t.category_id is not None)
    logger.info(f"  🏷️  Categorised {matched}/{len(result)} transaction(s)")
    return result
