"""Resolve which model id the LLM client should use.

Precedence: OPENROUTER_MODEL env override, then the persisted
``openrouter_model`` global setting, then the hardcoded fallback.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from models import GlobalSetting

logger = logging.getLogger("Ledger.ModelConfig")

SETTING_KEY = "openrouter_model"


def get_setting(db: Session, key: str) -> Optional[str]:
    row = db.query(GlobalSetting).filter(GlobalSetting.key == key).first()
    return row.value if row and row.value else None


def set_setting(db: Session, key: str, value: str) -> str:
    row = db.query(GlobalSetting).filter(GlobalSetting.key == key).first()
    if row:
        row.value = value
    else:
        db.add(GlobalSetting(key=key, value=value))
    db.commit()
    return value


def get_model(db: Optional[Session] = None) -> str:
    if settings.OPENROUTER_MODEL:
        return settings.OPENROUTER_MODEL

    from database import SessionLocal

    own_session = db is None
    session = SessionLocal() if own_session else db
    try:
        return get_setting(session, SETTING_KEY) or settings.LLM_FALLBACK_MODEL
    except SQLAlchemyError as e:
        logger.warning(f"Model setting unavailable, using fallback: {e}")
        return settings.LLM_FALLBACK_MODEL
    finally:
        if own_session:
            session.close()


def set_model(db: Session, model_id: str) -> str:
    return set_setting(db, SETTING_KEY, model_id.strip())
