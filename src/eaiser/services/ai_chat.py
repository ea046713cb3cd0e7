"""Chat-completion client that answers prompts with note contents as context."""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from eaiser.exceptions import (
    EmptyResponseError,
    MalformedResponseError,
    MissingCredentialError,
    OperationTimeoutError,
    RemoteAPIError,
)
from eaiser.services.config_store import ConfigStore
from eaiser.storage.note_repository import CONTENT_SEPARATOR

logger = logging.getLogger(__name__)

DEFAULT_CHAT_TIMEOUT = 60.0
MAX_TOKENS = 2000
TEMPERATURE = 0.7

SYSTEM_PREAMBLE = (
    "You are a helpful assistant for a personal knowledge base of code "
    "snippets, markdown notes and shell scripts. Answer clearly and concisely."
)
CONTEXT_INTRO = "The user has attached the following notes as context:"
CONTEXT_OUTRO = "Answer the user's question using the context above."


def build_system_prompt(context_texts: Sequence[str]) -> str:
    """Preamble, plus the joined context passages when there are any."""
    if not context_texts:
        return SYSTEM_PREAMBLE
    return (
        f"{SYSTEM_PREAMBLE}\n\n{CONTEXT_INTRO}\n\n"
        f"{CONTENT_SEPARATOR.join(context_texts)}\n\n{CONTEXT_OUTRO}"
    )


def build_request_body(model: str, prompt: str, context_texts: Sequence[str]) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": build_system_prompt(context_texts)},
            {"role": "user", "content": prompt},
        ],
        "max_tokens": MAX_TOKENS,
        "temperature": TEMPERATURE,
    }


def parse_chat_response(body: str, status_code: Optional[int] = None) -> str:
    """Extract the reply text from an OpenAI-compatible response body.

    Raises:
        MalformedResponseError: If the body is not JSON or not an object.
        RemoteAPIError: If the body carries ``error.message`` or the status
            is not 2xx.
        EmptyResponseError: If ``choices`` is empty.
    """
    try:
        data = json.loads(body)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(
            f"Failed to parse AI response: {e}", status_code=status_code
        ) from e
    if not isinstance(data, dict):
        raise MalformedResponseError(
            "AI response is not a JSON object", status_code=status_code
        )

    error = data.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise RemoteAPIError(f"AI API error: {message}", status_code=status_code)
    if status_code is not None and not 200 <= status_code < 300:
        raise RemoteAPIError(
            f"AI API returned HTTP {status_code}", status_code=status_code
        )

    choices = data.get("choices") or []
    if not choices:
        raise EmptyResponseError()
    try:
        content = choices[0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise MalformedResponseError(
            f"AI response has no message content: {e}", status_code=status_code
        ) from e
    if not isinstance(content, str):
        raise MalformedResponseError(
            "AI message content is not text", status_code=status_code
        )
    return content


class AIChatClient:
    """Synchronous, single-shot chat completion. No retries, no streaming."""

    def __init__(
        self,
        config_store: ConfigStore,
        timeout: float = DEFAULT_CHAT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.config_store = config_store
        self.timeout = timeout
        self.http = session or requests

    def chat(self, prompt: str, context_texts: Optional[List[str]] = None) -> str:
        """Send prompt plus context passages and return the reply text.

        Raises:
            MissingCredentialError: If no API key is configured; raised before
                any network traffic.
            OperationTimeoutError: If the request exceeds the timeout.
            RemoteAPIError: For transport failures and API-reported errors.
            MalformedResponseError: If the reply cannot be parsed.
            EmptyResponseError: If the reply has no choices.
        """
        settings = self.config_store.get()
        if not settings.api_key.strip():
            raise MissingCredentialError()

        context_texts = list(context_texts or [])
        payload = build_request_body(settings.model, prompt, context_texts)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {settings.api_key}",
        }
        logger.info(
            f"Chat request to {settings.api_url} (model={settings.model}, "
            f"contexts={len(context_texts)}, prompt_chars={len(prompt)})"
        )

        try:
            response = self.http.post(
                settings.api_url, json=payload, headers=headers, timeout=self.timeout
            )
        except requests.Timeout as e:
            raise OperationTimeoutError(
                f"AI request timed out after {self.timeout:g} seconds",
                timeout=self.timeout,
            ) from e
        except requests.RequestException as e:
            raise RemoteAPIError(f"AI request failed: {e}") from e

        reply = parse_chat_response(response.text, status_code=response.status_code)
        logger.info(f"Chat reply received ({len(reply)} chars)")
        return reply
