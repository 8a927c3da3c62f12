"""Test the model-chain client."""

from unittest.mock import MagicMock, patch

import pytest

from cohort_digest.config import Settings
from cohort_digest.services.ai_client import (
    AIClientError,
    AIErrorKind,
    GeminiBackend,
    GenerationOptions,
    ModelChainExhaustedError,
    classify_api_error,
)


def _error(kind: AIErrorKind, model: str = "model-a", message: str = "boom") -> AIClientError:
    return AIClientError(kind, model, message)


def test_first_model_success(make_ai_client):
    client, backend = make_ai_client(["{}"])
    result = client.run("prompt")
    assert result.text == "{}"
    assert result.model == "model-a"
    assert result.models_tried == ["model-a"]
    assert backend.calls == [("model-a", True)]


def test_unsupported_parameter_retries_same_model_without_options(make_ai_client):
    client, backend = make_ai_client([_error(AIErrorKind.UNSUPPORTED_PARAMETER), "ok"])
    result = client.run("prompt")
    assert result.model == "model-a"
    assert backend.calls == [("model-a", True), ("model-a", False)]


def test_invalid_model_advances_chain(make_ai_client):
    client, backend = make_ai_client([_error(AIErrorKind.INVALID_MODEL), "ok"])
    result = client.run("prompt")
    assert result.model == "model-b"
    assert result.models_tried == ["model-a", "model-b"]
    assert backend.calls == [("model-a", True), ("model-b", True)]


def test_repeated_unsupported_parameter_advances_chain(make_ai_client):
    client, backend = make_ai_client([
        _error(AIErrorKind.UNSUPPORTED_PARAMETER),
        _error(AIErrorKind.UNSUPPORTED_PARAMETER),
        "ok",
    ])
    assert client.run("prompt").model == "model-b"
    assert backend.calls == [("model-a", True), ("model-a", False), ("model-b", True)]


@pytest.mark.parametrize("kind", [AIErrorKind.OTHER, AIErrorKind.RATE_LIMITED])
def test_other_errors_abort_chain(make_ai_client, kind):
    client, backend = make_ai_client([_error(kind), "never used"])
    with pytest.raises(AIClientError) as excinfo:
        client.run("prompt")
    assert excinfo.value.kind == kind
    assert not isinstance(excinfo.value, ModelChainExhaustedError)
    assert backend.calls == [("model-a", True)]


def test_exhausted_chain_names_every_model(make_ai_client):
    client, _ = make_ai_client([
        _error(AIErrorKind.INVALID_MODEL, "model-a"),
        _error(AIErrorKind.INVALID_MODEL, "model-b", "model not found"),
    ])
    with pytest.raises(ModelChainExhaustedError) as excinfo:
        client.run("prompt")
    assert excinfo.value.models_tried == ["model-a", "model-b"]
    assert excinfo.value.message == "All models failed (model-a -> model-b). Last error: model not found"


@pytest.mark.parametrize(
    ("code", "message", "expected"),
    [
        (400, "Thinking is not supported for this model.", AIErrorKind.UNSUPPORTED_PARAMETER),
        (400, 'Invalid JSON payload received. Unknown name "thinking_config"', AIErrorKind.UNSUPPORTED_PARAMETER),
        (404, "models/foo is not found", AIErrorKind.INVALID_MODEL),
        (400, "Invalid model name", AIErrorKind.INVALID_MODEL),
        (429, "Resource exhausted", AIErrorKind.RATE_LIMITED),
        (500, "Internal error", AIErrorKind.OTHER),
        (400, "Request contains an invalid argument.", AIErrorKind.OTHER),
    ],
)
def test_classify_api_error(code, message, expected):
    assert classify_api_error(code, message) == expected


def test_gemini_backend_omits_optional_parameters_on_retry():
    with patch("cohort_digest.services.ai_client.genai.Client") as client_cls:
        models = client_cls.return_value.models
        models.generate_content.return_value = MagicMock(text="{}")
        backend = GeminiBackend(api_key="test-key")

        options = GenerationOptions(temperature=0.2, max_output_tokens=100, thinking_budget=0)
        assert backend.generate("gemini-test", "prompt", options, include_optional=True) == "{}"
        full_config = models.generate_content.call_args.kwargs["config"]
        assert full_config.thinking_config is not None
        assert full_config.response_mime_type == "application/json"

        backend.generate("gemini-test", "prompt", options, include_optional=False)
        bare_config = models.generate_content.call_args.kwargs["config"]
        assert bare_config.thinking_config is None
        assert bare_config.response_mime_type is None
        assert bare_config.temperature == 0.2


def test_settings_model_chain_dedupes():
    app_settings = Settings(
        _env_file=None,
        ai_model="gemini-2.5-flash",
        ai_model_fallbacks="gemini-2.0-flash; gemini-2.5-flash, ,gemini-2.5-flash-lite",
    )
    assert app_settings.model_chain() == ["gemini-2.5-flash", "gemini-2.0-flash", "gemini-2.5-flash-lite"]
