"""Assistant endpoints (mounted under /api/ai)."""
import logging
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from database import get_db
from errors import InputValidationError, LLMError, NotFoundError
from models import User
from routers.auth import get_current_user_dep
from schemas import (
    ChatRequest, ConversationResponse, MessageResponse, ModelSettingRequest, PageContext,
    RenameConversationRequest,
)
from services import conversation_store
from services.chat_orchestrator import handle_chat
from services.model_config import get_model, set_model

logger = logging.getLogger("Ledger.AI")

router = APIRouter()

CONVERSATION_LIST_LIMIT = 50


def _fail(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


@router.post("/chat")
def chat(
    body: ChatRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    context = body.page_context or PageContext()
    if not context.route and request.headers.get("referer"):
        context = context.model_copy(update={"route": urlparse(request.headers["referer"]).path or "/"})

    try:
        result = handle_chat(
            db,
            current_user.id,
            body.message,
            page_context=context,
            conversation_id=body.conversation_id,
        )
    except (InputValidationError, NotFoundError) as e:
        return _fail(400, str(e))
    except LLMError as e:
        logger.error(f"AI chat model error: {e}")
        return _fail(504 if e.retryable else 500, str(e))
    except Exception as e:
        logger.exception(f"AI chat error: {e}")
        return _fail(500, "Unable to answer right now")

    return {"ok": True, "conversationId": result.conversation_id, "message": result.message}


@router.get("/conversations")
def list_conversations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    conversations = conversation_store.list_conversations(db, current_user.id, CONVERSATION_LIST_LIMIT)
    return {
        "ok": True,
        "conversations": [ConversationResponse.model_validate(c).model_dump(mode="json") for c in conversations],
    }


@router.get("/conversations/{conversation_id}/messages")
def conversation_messages(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    conversation = conversation_store.get_conversation(db, current_user.id, conversation_id)
    if not conversation:
        return _fail(404, "Conversation not found")
    messages = conversation_store.get_messages(db, conversation.id)
    return {
        "ok": True,
        "conversation": ConversationResponse.model_validate(conversation).model_dump(mode="json"),
        "messages": [MessageResponse.model_validate(m).model_dump(mode="json") for m in messages],
    }


@router.patch("/conversations/{conversation_id}")
def rename_conversation(
    conversation_id: int,
    body: RenameConversationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    conversation = conversation_store.rename_conversation(db, current_user.id, conversation_id, body.title)
    if not conversation:
        return _fail(404, "Conversation not found")
    return {"ok": True, "conversation": ConversationResponse.model_validate(conversation).model_dump(mode="json")}


@router.get("/model")
def read_model(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    return {"ok": True, "model": get_model(db)}


@router.put("/model")
def update_model(
    body: ModelSettingRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dep),
):
    model = set_model(db, body.model)
    logger.info(f"Assistant model set to {model} by {current_user.email}")
    return {"ok": True, "model": get_model(db)}
