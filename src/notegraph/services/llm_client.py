"""LLM classifier collaborator.

Talks to either the Google Generative Language REST API or an
Ollama-compatible local server over httpx. The engine only relies on two
calls, ``is_available()`` and ``generate_text()``, described by the
``TextGenerator`` protocol; anything with those two methods can stand in
for the real client.

This module also owns the category prompt and the strict parser for the
JSON the prompt asks for.
"""
import json
import logging
import threading
from typing import Any, Dict, Iterable, Optional, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError as PydanticValidationError

from notegraph.config import LlmConfig, LlmProvider
from notegraph.exceptions import ConfigurationError, ErrorCode, LlmError
from notegraph.models.schema import CategorySuggestions

logger = logging.getLogger(__name__)

# Timeout for the availability check of a local server
_AVAILABILITY_TIMEOUT = 5.0

_SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

CATEGORY_PROMPT_TEMPLATE = """You are an expert at categorizing content. Please analyze this text and:
1. Identify 1-3 hierarchical categories for it (general → specific)
2. Consider existing categories in our system: [{existing}]
3. Return your response as a JSON object with this format:
{{
  "categories": [
    {{"name": "Category name", "level": 0}},
    {{"name": "More specific category", "level": 1}},
    {{"name": "Most specific category", "level": 2}}
  ]
}}

Text to categorize:
{text}

Only respond with the JSON."""


@runtime_checkable
class TextGenerator(Protocol):
    """Contract for the LLM classifier collaborator."""

    def is_available(self) -> bool:
        """Whether a backend is configured and reachable."""
        ...

    def generate_text(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Return the completion for ``prompt``.

        Raises:
            LlmError: If no usable text could be produced.
        """
        ...


class LlmClient:
    """HTTP client for the configured LLM provider.

    The active configuration is an immutable ``LlmConfig``; ``update_config``
    builds a new one and swaps it under a lock, so a request always sees
    one consistent configuration.
    """

    def __init__(
        self,
        llm_config: Optional[LlmConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            llm_config: Provider settings. Defaults to values from the environment.
            transport: Optional httpx transport, used by tests to mock the backend.
        """
        self._config = llm_config or LlmConfig()
        self._lock = threading.Lock()
        self._http = httpx.Client(transport=transport)

    @property
    def config(self) -> LlmConfig:
        with self._lock:
            return self._config

    def get_config(self) -> Dict[str, Any]:
        """Return the active settings with the API key masked."""
        data = self.config.model_dump(mode="json")
        if data.get("gemini_api_key"):
            data["gemini_api_key"] = "[CONFIGURED]"
        return data

    def update_config(self, **changes: Any) -> LlmConfig:
        """Validate ``changes`` on top of the active settings and swap them in.

        Raises:
            ConfigurationError: If the merged settings do not validate.
        """
        with self._lock:
            merged = {**self._config.model_dump(), **changes}
            try:
                new_config = LlmConfig(**merged)
            except PydanticValidationError as e:
                first = e.errors()[0]
                loc = first.get("loc") or ("",)
                raise ConfigurationError(
                    f"Invalid LLM configuration: {first.get('msg')}",
                    config_key=str(loc[0]),
                ) from e
            self._config = new_config
        logger.info("LLM configuration updated (provider=%s)", new_config.provider.value)
        return new_config

    def is_available(self) -> bool:
        cfg = self.config
        if cfg.provider == LlmProvider.NONE:
            return False
        if cfg.provider == LlmProvider.GEMINI:
            return bool(cfg.gemini_api_key)
        try:
            response = self._http.get(
                f"{cfg.local_llm_url}/api/tags",
                timeout=min(cfg.timeout, _AVAILABILITY_TIMEOUT),
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Local LLM at %s unreachable: %s", cfg.local_llm_url, e)
            return False
        return response.is_success

    def generate_text(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        cfg = self.config
        temperature = cfg.temperature if temperature is None else temperature
        max_tokens = cfg.max_output_tokens if max_tokens is None else max_tokens

        if cfg.provider == LlmProvider.GEMINI:
            return self._generate_gemini(cfg, prompt, temperature, max_tokens)
        if cfg.provider == LlmProvider.LOCAL:
            return self._generate_local(cfg, prompt, temperature, max_tokens)
        raise LlmError(
            "No LLM provider configured",
            provider=cfg.provider.value,
            code=ErrorCode.LLM_UNAVAILABLE,
        )

    def _post(self, cfg: LlmConfig, url: str, payload: Dict[str, Any], **kwargs) -> Any:
        try:
            response = self._http.post(url, json=payload, timeout=cfg.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise LlmError(
                f"LLM request failed with status {e.response.status_code}",
                provider=cfg.provider.value,
                original_error=e,
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise LlmError(
                "LLM request failed",
                provider=cfg.provider.value,
                code=ErrorCode.LLM_UNAVAILABLE,
                original_error=e,
            ) from e
        except json.JSONDecodeError as e:
            raise LlmError(
                "LLM response is not JSON",
                provider=cfg.provider.value,
                code=ErrorCode.LLM_MALFORMED_RESPONSE,
                original_error=e,
            ) from e

    def _generate_gemini(
        self, cfg: LlmConfig, prompt: str, temperature: float, max_tokens: int
    ) -> str:
        if not cfg.gemini_api_key:
            raise LlmError(
                "Gemini API key is not configured",
                provider=cfg.provider.value,
                code=ErrorCode.LLM_UNAVAILABLE,
            )
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
                "topP": cfg.top_p,
                "topK": cfg.top_k,
            },
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
                for category in _SAFETY_CATEGORIES
            ],
        }
        data = self._post(
            cfg,
            f"{cfg.gemini_base_url}/models/{cfg.gemini_model}:generateContent",
            payload,
            headers={"x-goog-api-key": cfg.gemini_api_key},
        )
        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise LlmError(
                "Gemini response has no candidate text",
                provider=cfg.provider.value,
                code=ErrorCode.LLM_MALFORMED_RESPONSE,
                original_error=e,
            ) from e
        return text

    def _generate_local(
        self, cfg: LlmConfig, prompt: str, temperature: float, max_tokens: int
    ) -> str:
        payload = {
            "model": cfg.local_llm_model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        data = self._post(cfg, f"{cfg.local_llm_url}/api/generate", payload)
        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise LlmError(
                "Local LLM response has no 'response' text",
                provider=cfg.provider.value,
                code=ErrorCode.LLM_MALFORMED_RESPONSE,
            )
        return text

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "LlmClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class NullLlmClient:
    """Classifier used when no LLM is wanted; never available."""

    def is_available(self) -> bool:
        return False

    def generate_text(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        raise LlmError("No LLM provider configured", code=ErrorCode.LLM_UNAVAILABLE)


def build_category_prompt(text: str, existing_names: Iterable[str]) -> str:
    """Render the categorization prompt for ``text``."""
    return CATEGORY_PROMPT_TEMPLATE.format(
        existing=", ".join(existing_names), text=text
    )


def parse_category_suggestions(response_text: str) -> CategorySuggestions:
    """Parse and validate the classifier's JSON answer.

    The span from the first ``{`` to the last ``}`` is decoded, so prose or
    code fences around the object are tolerated.

    Raises:
        LlmError: If no object is found or it does not have the expected shape.
    """
    start = response_text.find("{")
    end = response_text.rfind("}")
    if start == -1 or end < start:
        raise LlmError(
            "LLM response contains no JSON object",
            code=ErrorCode.LLM_MALFORMED_RESPONSE,
        )
    try:
        return CategorySuggestions.model_validate_json(response_text[start:end + 1])
    except PydanticValidationError as e:
        raise LlmError(
            "LLM response does not match the category schema",
            code=ErrorCode.LLM_MALFORMED_RESPONSE,
            original_error=e,
        ) from e


def request_category_suggestions(
    llm: TextGenerator,
    text: str,
    existing_names: Iterable[str],
    temperature: float = 0.5,
    max_tokens: int = 300,
) -> Optional[CategorySuggestions]:
    """Ask the classifier for categories, returning None on any failure.

    Any failure of the classifier, including an unavailable backend or a
    malformed answer, is logged at warning level and never raised.
    """
    try:
        if not llm.is_available():
            return None
        response_text = llm.generate_text(
            build_category_prompt(text, existing_names),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return parse_category_suggestions(response_text)
    except LlmError as e:
        logger.warning("Category suggestion failed: %s", e)
        return None
    except Exception as e:
        # Third-party generators may raise anything
        logger.warning(
            "Category suggestion failed with unexpected %s: %s", type(e).__name__, e
        )
        return None
