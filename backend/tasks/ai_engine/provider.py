# tasks/ai_engine/provider.py
"""
Generative Model Provider
=========================

Thin adapter over the OpenAI Chat Completions API.

The engine treats the model as an opaque collaborator: it sends a system
prompt plus messages and gets text back, which may or may not parse as the
JSON it asked for. This module only owns the transport concerns:

1. Deferred initialization: a missing API key never crashes construction.
2. Error mapping: every OpenAI failure becomes a ``ProviderError`` carrying
   a machine-readable ``error_code``.
3. No retries: the client is built with ``max_retries=0``; callers degrade
   to documented fallbacks instead.

Error Codes:
------------
- PROVIDER_NOT_CONFIGURED, AUTH_ERROR, RATE_LIMIT, TIMEOUT,
  CONNECTION_ERROR, BAD_REQUEST, API_ERROR_<status>, EMPTY_RESPONSE
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from django.conf import settings
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    OpenAI,
    RateLimitError,
)

from .config import PROVIDER_OPENAI, estimate_cost
from .exceptions import ProviderNotConfiguredError, ProviderUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class ChatResponse:
    content: str
    input_tokens: int
    output_tokens: int
    model: str
    provider: str


class OpenAIChatProvider:
    """
    Chat provider backed by the OpenAI Python client.

    Attributes:
        api_key (str | None): Resolved API key.
        client (OpenAI | None): Client instance, or None when unconfigured.
        is_configured (bool): Whether ``chat`` can reach the API.
        configuration_error (str | None): Why the provider is unconfigured.

    Example:
        >>> provider = OpenAIChatProvider()
        >>> if provider.is_configured:
        ...     reply = provider.chat([{"role": "user", "content": "hi"}], "Be brief.")
    """

    name: str = PROVIDER_OPENAI

    DEFAULT_TIMEOUT: float = 30.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[Any] = None,
    ) -> None:
        """
        Never raises. ``client`` lets tests inject a stand-in for the
        OpenAI client; otherwise one is built from settings.
        """
        self.timeout: float = timeout or getattr(settings, "AI_REQUEST_TIMEOUT", None) or self.DEFAULT_TIMEOUT
        self._base_url: Optional[str] = base_url or getattr(settings, "OPENAI_BASE_URL", None)

        self.api_key: Optional[str] = None
        self.client: Optional[Any] = None
        self.is_configured: bool = False
        self.configuration_error: Optional[str] = None

        if client is not None:
            self.client = client
            self.is_configured = True
            return

        self._configure(api_key)

    def _configure(self, api_key: Optional[str] = None) -> None:
        resolved_key = api_key or getattr(settings, "OPENAI_API_KEY", None) or ""
        if not resolved_key:
            self.configuration_error = (
                "OPENAI_API_KEY is not configured. "
                "Set the OPENAI_API_KEY environment variable or Django setting."
            )
            logger.warning(f"OpenAIChatProvider: {self.configuration_error}")
            return

        try:
            self.api_key = resolved_key
            self.client = OpenAI(
                api_key=self.api_key,
                base_url=self._base_url,
                timeout=self.timeout,
                max_retries=0,
            )
            self.is_configured = True
            self.configuration_error = None
            logger.info("OpenAIChatProvider initialized successfully")
        except Exception as e:
            self.configuration_error = f"Failed to initialize OpenAI client: {str(e)}"
            logger.error(f"OpenAIChatProvider: {self.configuration_error}")
            self.client = None
            self.is_configured = False

    def chat(
        self,
        messages: List[Dict[str, str]],
        system_prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        user_id: Optional[Any] = None,
        json_mode: bool = False,
    ) -> ChatResponse:
        """
        Send one chat completion request.

        Raises:
            ProviderNotConfiguredError: No usable client.
            ProviderUnavailableError: The API call failed or returned nothing.
        """
        if not self.is_configured or self.client is None:
            raise ProviderNotConfiguredError(self.configuration_error or "Provider not available")

        payload: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
        payload.extend(m for m in messages if m.get("role") != "system")

        request: Dict[str, Any] = {
            "model": model,
            "messages": payload,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}
        if user_id is not None:
            request["user"] = str(user_id)

        try:
            response = self.client.chat.completions.create(**request)

        except AuthenticationError as e:
            logger.error(f"OpenAI authentication failed: {e}")
            raise ProviderUnavailableError(
                "Invalid API key or authentication failed", error_code="AUTH_ERROR"
            ) from e

        except RateLimitError as e:
            logger.warning(f"OpenAI rate limit exceeded: {e}")
            raise ProviderUnavailableError(
                "API rate limit exceeded, please retry later", error_code="RATE_LIMIT"
            ) from e

        except APITimeoutError as e:
            logger.warning(f"OpenAI API timeout: {e}")
            raise ProviderUnavailableError("API request timed out", error_code="TIMEOUT") from e

        except APIConnectionError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise ProviderUnavailableError(
                "Could not connect to OpenAI API", error_code="CONNECTION_ERROR"
            ) from e

        except BadRequestError as e:
            logger.error(f"OpenAI bad request: {e}")
            raise ProviderUnavailableError(
                "Invalid request to OpenAI API", error_code="BAD_REQUEST"
            ) from e

        except APIStatusError as e:
            logger.error(f"OpenAI API status error: {e.status_code} - {e}")
            raise ProviderUnavailableError(
                f"OpenAI API error (status {e.status_code})",
                error_code=f"API_ERROR_{e.status_code}",
            ) from e

        if not response.choices:
            raise ProviderUnavailableError("Empty response from AI", error_code="EMPTY_RESPONSE")

        content: str = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        input_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
        output_tokens = int(getattr(usage, "completion_tokens", 0) or 0)

        logger.debug(f"OpenAIChatProvider: Raw response: {content[:200]}...")

        return ChatResponse(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            # Requested alias, not the dated snapshot name, so pricing lookups match.
            model=model,
            provider=self.name,
        )

    def estimate_cost(self, input_tokens: int, output_tokens: int, model: str) -> float:
        return estimate_cost(input_tokens, output_tokens, model)

    def health_check(self) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "is_configured": self.is_configured,
            "timeout": self.timeout,
            "configuration_error": self.configuration_error,
        }


_default_provider: Optional[OpenAIChatProvider] = None


def get_default_provider() -> OpenAIChatProvider:
    """Process-wide provider, built on first use."""
    global _default_provider
    if _default_provider is None:
        _default_provider = OpenAIChatProvider()
    return _default_provider
