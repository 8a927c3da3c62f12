"""Model-chain client for generative AI calls.

Each call walks an ordered list of models. A model that rejects an optional
generation parameter is retried once without it; a model that is rejected as
invalid hands over to the next model; any other failure aborts the chain.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

logger = logging.getLogger(__name__)


class AIErrorKind(str, Enum):
    UNSUPPORTED_PARAMETER = "unsupported_parameter"
    RATE_LIMITED = "rate_limited"
    INVALID_MODEL = "invalid_model"
    OTHER = "other"


class AIClientError(Exception):
    """A classified failure from one model call."""

    def __init__(self, kind: AIErrorKind, model: str, message: str):
        self.kind = kind
        self.model = model
        self.message = message
        super().__init__(f"[{kind.value}] {model}: {message}")


class ModelChainExhaustedError(AIClientError):
    """Every model in the chain was rejected."""

    def __init__(self, models_tried: list[str], last_error: AIClientError | None):
        self.models_tried = models_tried
        self.last_error = last_error
        chain = " -> ".join(models_tried) or "none"
        last = last_error.message if last_error else "no models configured"
        kind = last_error.kind if last_error else AIErrorKind.INVALID_MODEL
        model = models_tried[-1] if models_tried else ""
        super().__init__(kind, model, f"All models failed ({chain}). Last error: {last}")


@dataclass
class GenerationOptions:
    temperature: float = 0.1
    max_output_tokens: int = 8192
    thinking_budget: int | None = 0      # Optional; dropped on retry
    json_output: bool = True             # Optional; dropped on retry


@dataclass
class AIResult:
    text: str
    model: str
    models_tried: list[str]
    latency_ms: int


class ModelBackend(Protocol):
    """One provider call. Raises AIClientError on failure."""

    def generate(
        self,
        model: str,
        prompt: str,
        options: GenerationOptions,
        include_optional: bool,
    ) -> str:
        ...


# =============================================================================
# GEMINI BACKEND
# =============================================================================

_UNSUPPORTED_RE = re.compile(
    r"thinking|not supported|unsupported|unknown name|invalid json payload",
    re.IGNORECASE,
)
_MODEL_RE = re.compile(r"model", re.IGNORECASE)


def classify_api_error(code: int | None, message: str) -> AIErrorKind:
    """Map a provider status code and message onto an AIErrorKind."""
    message = message or ""
    if code == 400 and _UNSUPPORTED_RE.search(message):
        return AIErrorKind.UNSUPPORTED_PARAMETER
    if code == 404 or (code == 400 and _MODEL_RE.search(message)):
        return AIErrorKind.INVALID_MODEL
    if code == 429:
        return AIErrorKind.RATE_LIMITED
    return AIErrorKind.OTHER


@dataclass
class GeminiBackend:
    """ModelBackend backed by ``google.genai.Client``."""

    api_key: str
    client: genai.Client | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        self.client = genai.Client(api_key=self.api_key)

    def generate(
        self,
        model: str,
        prompt: str,
        options: GenerationOptions,
        include_optional: bool,
    ) -> str:
        config_kwargs: dict = {
            "temperature": options.temperature,
            "max_output_tokens": options.max_output_tokens,
        }
        if include_optional:
            if options.thinking_budget is not None:
                config_kwargs["thinking_config"] = types.ThinkingConfig(
                    thinking_budget=options.thinking_budget,
                )
            if options.json_output:
                config_kwargs["response_mime_type"] = "application/json"

        try:
            response = self.client.models.generate_content(
                model=model,
                contents=prompt,
                config=types.GenerateContentConfig(**config_kwargs),
            )
        except genai_errors.APIError as e:
            message = e.message or str(e)
            raise AIClientError(classify_api_error(e.code, message), model, message) from e

        text = response.text
        if not text:
            raise AIClientError(AIErrorKind.OTHER, model, "Empty response from model")
        return text


# =============================================================================
# MODEL CHAIN
# =============================================================================

@dataclass
class AIClient:
    backend: ModelBackend
    models: list[str]
    default_options: GenerationOptions = field(default_factory=GenerationOptions)

    def run(self, prompt: str, options: GenerationOptions | None = None) -> AIResult:
        """Run ``prompt`` through the model chain.

        Raises:
            ModelChainExhaustedError: every model was rejected
            AIClientError: a non-recoverable failure aborted the chain
        """
        options = options or self.default_options
        started = time.monotonic()
        tried: list[str] = []
        last_error: AIClientError | None = None

        for model in self.models:
            tried.append(model)
            try:
                text = self._run_model(model, prompt, options)
            except AIClientError as e:
                last_error = e
                if e.kind in (AIErrorKind.INVALID_MODEL, AIErrorKind.UNSUPPORTED_PARAMETER):
                    logger.warning(f"Model {model} rejected ({e.kind.value}): {e.message}")
                    continue
                logger.error(f"Model {model} failed, aborting chain: {e}")
                raise

            latency_ms = int((time.monotonic() - started) * 1000)
            if len(tried) > 1:
                logger.info(f"Model {model} used after trying {' -> '.join(tried)}")
            else:
                logger.debug(f"Model {model} answered in {latency_ms}ms")
            return AIResult(text=text, model=model, models_tried=tried, latency_ms=latency_ms)

        raise ModelChainExhaustedError(tried, last_error)

    def _run_model(self, model: str, prompt: str, options: GenerationOptions) -> str:
        try:
            return self.backend.generate(model, prompt, options, include_optional=True)
        except AIClientError as e:
            if e.kind != AIErrorKind.UNSUPPORTED_PARAMETER:
                raise
            logger.info(f"Model {model} rejected an optional parameter - retrying without it")
        return self.backend.generate(model, prompt, options, include_optional=False)


def build_ai_client(
    api_key: str,
    models: list[str],
    options: GenerationOptions | None = None,
) -> AIClient | None:
    """AIClient for Gemini, or None when no API key is configured."""
    if not api_key:
        logger.warning("No AI API key configured - AI features will use fallbacks")
        return None
    return AIClient(
        backend=GeminiBackend(api_key=api_key),
        models=models,
        default_options=options or GenerationOptions(),
    )
