"""Read-only financial query tools exposed to the assistant.

Every handler receives the authenticated user id from the orchestrator and
re-sanitises its arguments; model output is not trusted to honour the
declared schema.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from errors import UnknownToolError
from models import BankAccount, Country, Transaction, TransactionCategory, TransactionType

logger = logging.getLogger("Ledger.Tools")

COUNTRY_CODES = ["UK", "IN"]


class ToolName(str, enum.Enum):
    SPEND_SUMMARY = "get_spend_summary"
    INCOME_SUMMARY = "get_income_summary"
    RECENT_TRANSACTIONS = "get_recent_transactions"
    CATEGORY_BREAKDOWN = "get_category_breakdown"
    ACCOUNTS = "get_accounts"


@dataclass(frozen=True)
class Tool:
    name: ToolName
    description: str
    parameters: dict
    handler: Callable[[Session, str, dict], dict]

    def definition(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


# ─── Sanitisers ───────────────────────────────────────────────────────────────

def sanitize_country(country_code) -> str:
    return "IN" if country_code == "IN" else "UK"


def clamp_int(value, minimum: int, maximum: int, default: int) -> int:
    try:
        number = int(value)
    except OverflowError:
        number = maximum if value > 0 else minimum
    except (TypeError, ValueError):
        number = default
    return min(max(number, minimum), maximum)


def parse_iso_date(value) -> Optional[date]:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def _country_scoped(query, user_id: str, country_code: str):
    return (
        query.join(BankAccount, Transaction.bank_account_id == BankAccount.id)
        .join(Country, BankAccount.country_id == Country.id)
        .filter(Transaction.user_id == user_id, Country.code == country_code)
    )


def _money(value) -> float:
    return float(value or 0)


# ─── Handlers ─────────────────────────────────────────────────────────────────

def _total_by_type(db: Session, user_id: str, args: dict, txn_type: TransactionType) -> dict:
    country_code = sanitize_country(args.get("countryCode"))
    days = clamp_int(args.get("days"), 7, 90, 30)
    since = date.today() - timedelta(days=days)
    query = db.query(func.coalesce(func.sum(func.abs(Transaction.amount)), 0))
    total = (
        _country_scoped(query, user_id, country_code)
        .filter(Transaction.transaction_type == txn_type.value, Transaction.transaction_date >= since)
        .scalar()
    )
    return {"countryCode": country_code, "days": days, "total": round(_money(total), 2)}


def get_spend_summary(db: Session, user_id: str, args: dict) -> dict:
    return _total_by_type(db, user_id, args, TransactionType.DEBIT)


def get_income_summary(db: Session, user_id: str, args: dict) -> dict:
    return _total_by_type(db, user_id, args, TransactionType.CREDIT)


def get_recent_transactions(db: Session, user_id: str, args: dict) -> dict:
    country_code = sanitize_country(args.get("countryCode"))
    limit = clamp_int(args.get("limit"), 1, 25, 10)
    query = db.query(
        Transaction.id,
        Transaction.transaction_date,
        Transaction.amount,
        Transaction.merchant,
        Transaction.description,
        TransactionCategory.name.label("category"),
        BankAccount.bank_name,
        Transaction.transaction_type,
    ).outerjoin(TransactionCategory, Transaction.category_id == TransactionCategory.id)
    rows = (
        _country_scoped(query, user_id, country_code)
        .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .limit(limit)
        .all()
    )
    transactions = [
        {
            "id": row.id,
            "transaction_date": row.transaction_date.isoformat(),
            "amount": _money(row.amount),
            "merchant": row.merchant,
            "description": row.description,
            "category": row.category,
            "bank_name": row.bank_name,
            "transaction_type": row.transaction_type,
        }
        for row in rows
    ]
    return {"countryCode": country_code, "limit": limit, "transactions": transactions}


def get_category_breakdown(db: Session, user_id: str, args: dict) -> dict:
    country_code = sanitize_country(args.get("countryCode"))
    from_date = parse_iso_date(args.get("fromDate"))
    to_date = parse_iso_date(args.get("toDate"))
    spend = func.coalesce(
        func.sum(case(
            (Transaction.transaction_type == TransactionType.DEBIT.value, func.abs(Transaction.amount)),
            else_=0,
        )),
        0,
    )
    query = db.query(TransactionCategory.name.label("category"), spend.label("spend")).select_from(
        Transaction
    ).outerjoin(TransactionCategory, Transaction.category_id == TransactionCategory.id)
    query = _country_scoped(query, user_id, country_code)
    if from_date:
        query = query.filter(Transaction.transaction_date >= from_date)
    if to_date:
        query = query.filter(Transaction.transaction_date <= to_date)
    rows = query.group_by(TransactionCategory.name).order_by(spend.desc()).all()
    return {
        "countryCode": country_code,
        "fromDate": from_date.isoformat() if from_date else None,
        "toDate": to_date.isoformat() if to_date else None,
        "categories": [
            {"category": row.category or "Uncategorised", "spend": round(_money(row.spend), 2)}
            for row in rows
        ],
    }


def get_accounts(db: Session, user_id: str, args: dict) -> dict:
    country_code = sanitize_country(args.get("countryCode"))
    accounts = (
        db.query(BankAccount)
        .join(Country, BankAccount.country_id == Country.id)
        .filter(BankAccount.user_id == user_id, Country.code == country_code)
        .order_by(BankAccount.created_at.desc())
        .all()
    )
    return {
        "countryCode": country_code,
        "accounts": [
            {
                "id": a.id,
                "account_name": a.account_name,
                "bank_name": a.bank_name,
                "account_type": a.account_type,
                "currency": a.currency,
                "confirmed": bool(a.confirmed),
                "is_active": bool(a.is_active),
            }
            for a in accounts
        ],
    }


# ─── Registry ─────────────────────────────────────────────────────────────────

def _country_param() -> dict:
    return {"type": "string", "enum": COUNTRY_CODES}


def _days_param() -> dict:
    return {"type": "integer", "minimum": 7, "maximum": 90, "default": 30}


def _schema(properties: dict) -> dict:
    return {
        "type": "object",
        "properties": properties,
        "required": ["countryCode"],
        "additionalProperties": False,
    }


TOOLS = {
    ToolName.SPEND_SUMMARY: Tool(
        ToolName.SPEND_SUMMARY,
        "Return total debit spend for the last N days for the given country code (UK or IN).",
        _schema({"countryCode": _country_param(), "days": _days_param()}),
        get_spend_summary,
    ),
    ToolName.INCOME_SUMMARY: Tool(
        ToolName.INCOME_SUMMARY,
        "Return total credit income for the last N days for the given country code (UK or IN).",
        _schema({"countryCode": _country_param(), "days": _days_param()}),
        get_income_summary,
    ),
    ToolName.RECENT_TRANSACTIONS: Tool(
        ToolName.RECENT_TRANSACTIONS,
        "Fetch the most recent transactions for a country code.",
        _schema({
            "countryCode": _country_param(),
            "limit": {"type": "integer", "minimum": 1, "maximum": 25, "default": 10},
        }),
        get_recent_transactions,
    ),
    ToolName.CATEGORY_BREAKDOWN: Tool(
        ToolName.CATEGORY_BREAKDOWN,
        "Return spend by category for a country within a date range.",
        _schema({
            "countryCode": _country_param(),
            "fromDate": {"type": "string", "description": "YYYY-MM-DD"},
            "toDate": {"type": "string", "description": "YYYY-MM-DD"},
        }),
        get_category_breakdown,
    ),
    ToolName.ACCOUNTS: Tool(
        ToolName.ACCOUNTS,
        "List bank accounts for the user filtered by country code.",
        _schema({"countryCode": _country_param()}),
        get_accounts,
    ),
}

def check_registry(tools: dict) -> None:
    """Raise RuntimeError when a ToolName has no registered Tool."""
    missing = set(ToolName) - set(tools)
    if missing:
        raise RuntimeError(f"Tools without a handler: {sorted(t.value for t in missing)}")


check_registry(TOOLS)

TOOL_DEFINITIONS = [tool.definition() for tool in TOOLS.values()]


def run_tool(db: Session, name: str, args: dict, user_id: str) -> dict:
    """Dispatch a model tool call. Unknown names raise UnknownToolError."""
    try:
        tool_name = ToolName(name)
    except ValueError:
        raise UnknownToolError(name)
    if not isinstance(args, dict):
        args = {}
    logger.info(f"  🔧 Running tool {tool_name.value} with {args}")
    return TOOLS[tool_name].handler(db, user_id, args)
