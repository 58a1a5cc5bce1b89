"""LiteLLM client wrapper with API key validation and error mapping.

All completion calls (PDF extraction, streamed chat answers) route through
this module. Transient failures are surfaced, not retried: ``num_retries``
defaults to 0 so error timing stays observable to callers.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator

import litellm

from woodpecker.errors import ServiceErrorCategory, TransientServiceError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider, "OPENAI_API_KEY")

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def to_service_error(exc: Exception) -> TransientServiceError:
    """Map a LiteLLM / transport exception to a categorised TransientServiceError."""
    if isinstance(exc, TransientServiceError):
        return exc
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return TransientServiceError.from_status(status, str(exc))
    if isinstance(exc, (litellm.exceptions.APIConnectionError, litellm.exceptions.Timeout)):
        return TransientServiceError(str(exc), category=ServiceErrorCategory.NETWORK)
    return TransientServiceError(str(exc), category=ServiceErrorCategory.SERVICE)


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int | None = None,
    temperature: float = 0.0,
    num_retries: int = 0,
) -> str:
    """Call litellm.completion() and return the content string.

    Args:
        model: LiteLLM model string (provider/model format).
        messages: OpenAI-style message list (content may be multimodal parts).
        max_tokens: Maximum output tokens (provider default when None).
        temperature: Sampling temperature (0 = deterministic).
        num_retries: Retries on transient errors (0 = surface immediately).

    Raises:
        TransientServiceError: On any API failure.
    """
    kwargs: dict = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "num_retries": num_retries,
    }
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    try:
        response = litellm.completion(**kwargs)
    except Exception as exc:
        raise to_service_error(exc) from exc
    return response.choices[0].message.content or ""


def stream_complete(
    model: str,
    messages: list[dict],
    temperature: float = 0.3,
) -> Iterator[str]:
    """Yield incremental content deltas from a streamed completion.

    The request is issued eagerly so that a refused request (429, 402, ...)
    raises here rather than on first iteration.

    Raises:
        TransientServiceError: If the request is refused or the stream breaks.
    """
    try:
        response = litellm.completion(
            model=model,
            messages=messages,
            temperature=temperature,
            stream=True,
            num_retries=0,
        )
    except Exception as exc:
        raise to_service_error(exc) from exc
    return _iter_deltas(response)


def _iter_deltas(response) -> Iterator[str]:
    try:
        for part in response:
            if not part.choices:
                continue
            delta = part.choices[0].delta
            content = getattr(delta, "content", None)
            if content:
                yield content
    except Exception as exc:
        raise to_service_error(exc) from exc
