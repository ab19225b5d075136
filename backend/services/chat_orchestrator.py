"""
Assistant chat loop.

One call to ``handle_chat`` is one exchange: validate the message, resolve
or create the conversation, replay recent history, then ask the model with
the tool registry attached. Tool calls are executed for the authenticated
user and fed back for at most ``AI_MAX_TOOL_ROUNDS`` model round-trips; if
the model is still calling tools after the last round its latest content
(possibly empty) becomes the answer.
"""
import json
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from config import settings
from errors import InputValidationError, NotFoundError
from models import MessageRole
from schemas import PageContext
from services import conversation_store
from services.llm_client import chat_completion_message
from services.model_config import get_model
from services.tools import TOOL_DEFINITIONS, run_tool

logger = logging.getLogger("Ledger.Chat")

TOOL_CALL_PLACEHOLDER = "[tool calls issued]"

SYSTEM_RULES = [
    "You are the household personal-finance copilot.",
    "Rules: do not fabricate balances; always ask clarifying questions if data is missing; "
    "keep responses concise and actionable.",
    "Use tools whenever the user requests specific numbers, balances, categories, or transaction details.",
    "Never execute raw SQL; only call provided tools. All data is scoped to the authenticated user.",
    "Mark any inferred estimates clearly; prefer sourced numbers.",
]


@dataclass
class ChatResult:
    conversation_id: int
    message: str


def build_system_prompt(page_context: Optional[PageContext] = None) -> str:
    page_context = page_context or PageContext()
    context_lines = []
    if page_context.route:
        context_lines.append(f"Current route: {page_context.route}")
    if page_context.country:
        context_lines.append(f"Active country: {page_context.country}")
    if page_context.summary:
        context_lines.append("Visible metrics:")
        for key, value in page_context.summary.items():
            context_lines.append(f"- {key}: {value}")

    context = (
        "Page context:\n" + "\n".join(context_lines)
        if context_lines else "Page context: none provided."
    )
    return "\n".join(SYSTEM_RULES + [context])


def validate_message(message) -> str:
    if not isinstance(message, str) or not message.strip():
        raise InputValidationError("Message is required")
    if len(message) > settings.AI_MAX_INPUT_CHARS:
        raise InputValidationError(f"Message too long (max {settings.AI_MAX_INPUT_CHARS} chars)")
    return message.strip()


def to_model_messages(history: list) -> list[dict]:
    """Convert stored messages to chat-completion format.

    Tool results are only replayed after the assistant message that requested
    them, and assistant tool requests keep only calls whose results exist, so
    a truncated window or an aborted turn never yields an invalid sequence.
    """
    answered = {m.tool_call_id for m in history if m.role == MessageRole.TOOL.value and m.tool_call_id}
    requested = set()
    messages = []
    for msg in history:
        if msg.role == MessageRole.TOOL.value:
            if msg.tool_call_id not in requested:
                continue
            messages.append({
                "role": "tool",
                "name": msg.tool_name,
                "tool_call_id": msg.tool_call_id,
                "content": msg.content,
            })
        elif msg.role == MessageRole.ASSISTANT.value:
            calls = (msg.tool_payload or {}).get("tool_calls") or []
            calls = [c for c in calls if c.get("id") in answered]
            if calls:
                requested.update(c["id"] for c in calls)
                messages.append({"role": "assistant", "content": msg.content, "tool_calls": calls})
            else:
                messages.append({"role": "assistant", "content": msg.content})
        else:
            messages.append({"role": msg.role, "content": msg.content})
    return messages


def safe_parse_args(arguments) -> dict:
    """Malformed tool arguments become an empty argument object."""
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Ignoring malformed tool arguments: {str(arguments)[:200]!r}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _ensure_conversation(db: Session, user_id: str, conversation_id: Optional[int], page_route: str, first_message: str):
    if conversation_id is not None:
        conversation = conversation_store.get_conversation(db, user_id, conversation_id)
        if not conversation:
            raise NotFoundError("Conversation not found")
        return conversation
    title = first_message[: settings.AI_TITLE_MAX_CHARS] or "New Conversation"
    return conversation_store.create_conversation(db, user_id, title, page_route)


def handle_chat(
    db: Session,
    user_id: str,
    message,
    page_context: Optional[PageContext] = None,
    conversation_id: Optional[int] = None,
) -> ChatResult:
    text = validate_message(message)
    page_context = page_context or PageContext()

    conversation = _ensure_conversation(db, user_id, conversation_id, page_context.route, text)

    # History must not include the new user message
    history = conversation_store.get_recent_messages(db, conversation.id, settings.AI_MAX_HISTORY_MESSAGES)
    conversation_store.add_message(db, conversation.id, MessageRole.USER.value, text)

    working_messages = [
        {"role": "system", "content": build_system_prompt(page_context)},
        *to_model_messages(history),
        {"role": "user", "content": text},
    ]

    final_content = None
    last_content = None
    for round_number in range(1, settings.AI_MAX_TOOL_ROUNDS + 1):
        reply = chat_completion_message(working_messages, tools=TOOL_DEFINITIONS, model=get_model(db))
        tool_calls = reply.get("tool_calls") or []
        last_content = reply.get("content")

        if not tool_calls:
            final_content = last_content
            break

        logger.info(f"  🔁 Round {round_number}: model requested {len(tool_calls)} tool call(s)")
        conversation_store.add_message(
            db, conversation.id, MessageRole.ASSISTANT.value,
            last_content or TOOL_CALL_PLACEHOLDER,
            tool_payload={"tool_calls": tool_calls},
        )
        working_messages.append({"role": "assistant", "content": last_content, "tool_calls": tool_calls})

        for call in tool_calls:
            function = call.get("function") or {}
            name = function.get("name")
            args = safe_parse_args(function.get("arguments"))
            result = run_tool(db, name, args, user_id)
            payload = json.dumps(result)
            conversation_store.add_message(
                db, conversation.id, MessageRole.TOOL.value, payload,
                tool_name=name, tool_payload=result, tool_call_id=call.get("id"),
            )
            working_messages.append({
                "role": "tool",
                "name": name,
                "tool_call_id": call.get("id"),
                "content": payload,
            })
    else:
        logger.warning(
            f"Conversation {conversation.id}: tool round limit ({settings.AI_MAX_TOOL_ROUNDS}) reached, "
            "returning last model content"
        )
        final_content = last_content

    final_content = final_content or ""
    conversation_store.add_message(db, conversation.id, MessageRole.ASSISTANT.value, final_content)
    conversation_store.touch_conversation(db, conversation)

    return ChatResult(conversation_id=conversation.id, message=final_content)
