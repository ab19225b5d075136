"""LLM client wrapper for the OpenRouter (OpenAI-compatible) API."""
import logging
from typing import Optional

import openai
from openai import OpenAI

from config import settings
from errors import ConfigurationError, LLMRequestError, LLMTimeoutError
from services.model_config import get_model

logger = logging.getLogger("Ledger.LLM")

_client = None
_client_key = None


def get_client() -> OpenAI:
    """Get or create the OpenAI client singleton.

    Raises ConfigurationError before touching the network when no API key
    is configured. SDK retries are disabled.
    """
    global _client, _client_key
    if not settings.OPENROUTER_API_KEY:
        raise ConfigurationError("OPENROUTER_API_KEY is not set")
    if _client is None or _client_key != settings.OPENROUTER_API_KEY:
        _client = OpenAI(
            api_key=settings.OPENROUTER_API_KEY,
            base_url=settings.OPENROUTER_BASE_URL,
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_retries=0,
        )
        _client_key = settings.OPENROUTER_API_KEY
        logger.info("OpenRouter client initialized (base_url=%s)", settings.OPENROUTER_BASE_URL)
    return _client


def _create(**kwargs):
    client = get_client()
    try:
        response = client.chat.completions.create(**kwargs)
    except openai.APITimeoutError as e:
        logger.error("LLM request timed out after %ss", settings.LLM_TIMEOUT_SECONDS)
        raise LLMTimeoutError("The language model did not respond in time, please retry") from e
    except openai.OpenAIError as e:
        logger.error(f"LLM request failed: {e}")
        raise LLMRequestError(f"Language model request failed: {e}") from e

    if not response.choices or response.choices[0].message is None:
        raise LLMRequestError("No message returned from the language model")
    return response.choices[0].message


def chat_completion(
    messages: list[dict],
    model: Optional[str] = None,
    temperature: float = 0.2,
    max_tokens: int = 4096,
) -> str:
    """Send a chat completion request and return the response text."""
    get_client()
    message = _create(
        model=model or get_model(),
        messages=messages,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    return (message.content or "").strip()


def chat_completion_message(
    messages: list[dict],
    tools: Optional[list[dict]] = None,
    model: Optional[str] = None,
    temperature: float = 0.2,
) -> dict:
    """Send a tool-enabled chat completion and return the assistant message.

    Returns {"content": str | None, "tool_calls": [{"id", "type",
    "function": {"name", "arguments"}}]}.
    """
    get_client()
    kwargs = {
        "model": model or get_model(),
        "messages": messages,
        "temperature": temperature,
    }
    if tools:
        kwargs["tools"] = tools
        kwargs["tool_choice"] = "auto"

    message = _create(**kwargs)
    tool_calls = []
    for call in message.tool_calls or []:
        tool_calls.append({
            "id": call.id,
            "type": "function",
            "function": {
                "name": call.function.name,
                "arguments": call.function.arguments,
            },
        })
    return {"content": message.content, "tool_calls": tool_calls}
