"""Tests for the LiteLLM client wrappers and model adapters."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import litellm
import numpy as np
import pytest

from llm_archive.errors import ConfigurationError, ExternalServiceError, ValidationError
from llm_archive.rag.llm_client import (
    LiteLLMEmbedder,
    LiteLLMLanguageModel,
    acomplete,
    complete,
    embed,
    embed_batch,
    join_prompt,
    provider_of,
    validate_api_key,
)


def _completion(content):
    response = MagicMock()
    response.choices[0].message.content = content
    return response


def _embedding_response(dimensions=3):
    def _respond(model, input, num_retries):
        response = MagicMock()
        response.data = [{"embedding": [float(len(text))] * dimensions} for text in input]
        return response

    return _respond


# ------------------------------------------------------------------
# validate_api_key
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        validate_api_key("openai/gpt-4o")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    validate_api_key("gemini/gemini-2.0-flash")


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/llama3")


def test_validate_api_key_unprefixed_model_is_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        validate_api_key("gpt-4o")


def test_validate_api_key_unknown_provider_env_name(monkeypatch):
    monkeypatch.delenv("ACME_API_KEY", raising=False)
    with pytest.raises(ConfigurationError, match="ACME_API_KEY"):
        validate_api_key("acme/model-1")


def test_provider_of():
    assert provider_of("Anthropic/claude-3-5-sonnet") == "anthropic"
    assert provider_of("gpt-4o") == "openai"


# ------------------------------------------------------------------
# complete() / acomplete()
# ------------------------------------------------------------------


def test_complete_returns_content():
    with patch("llm_archive.rag.llm_client.litellm.completion", return_value=_completion("Hello")):
        assert complete("openai/gpt-4o", [{"role": "user", "content": "Hi"}]) == "Hello"


def test_complete_returns_empty_string_on_none_content():
    with patch("llm_archive.rag.llm_client.litellm.completion", return_value=_completion(None)):
        assert complete("openai/gpt-4o", [{"role": "user", "content": "Hi"}]) == ""


def test_complete_passes_params_to_litellm():
    with patch(
        "llm_archive.rag.llm_client.litellm.completion", return_value=_completion("ok")
    ) as mock_c:
        complete(
            "openai/gpt-4o-mini",
            [{"role": "user", "content": "test"}],
            max_tokens=512,
            temperature=0.5,
            num_retries=2,
        )

    call_kwargs = mock_c.call_args.kwargs
    assert call_kwargs["model"] == "openai/gpt-4o-mini"
    assert call_kwargs["max_tokens"] == 512
    assert call_kwargs["temperature"] == 0.5
    assert call_kwargs["num_retries"] == 2


@pytest.mark.asyncio
async def test_acomplete_returns_content():
    with patch(
        "llm_archive.rag.llm_client.litellm.acompletion",
        new_callable=AsyncMock,
        return_value=_completion("async hello"),
    ):
        assert await acomplete("openai/gpt-4o", [{"role": "user", "content": "Hi"}]) == "async hello"


# ------------------------------------------------------------------
# embed() / embed_batch()
# ------------------------------------------------------------------


def test_embed_passes_text_as_list():
    response = MagicMock()
    response.data = [{"embedding": [0.1, 0.2, 0.3]}]

    with patch("llm_archive.rag.llm_client.litellm.embedding", return_value=response) as mock_e:
        result = embed("openai/text-embedding-3-small", "test text")

    assert result == [0.1, 0.2, 0.3]
    assert mock_e.call_args.kwargs["input"] == ["test text"]


def test_embed_batch_empty_skips_call():
    with patch("llm_archive.rag.llm_client.litellm.embedding") as mock_e:
        assert embed_batch("openai/text-embedding-3-small", []) == []
    mock_e.assert_not_called()


# ------------------------------------------------------------------
# LanguageModel adapter
# ------------------------------------------------------------------


def test_join_prompt():
    assert join_prompt("Do this.", "CONTEXT") == "Do this.\n\nCONTEXT"
    assert join_prompt("Do this.", None) == "Do this."


def test_language_model_sends_prompt_and_context():
    llm = LiteLLMLanguageModel("openai/gpt-4o", temperature=0.2, max_tokens=300)
    with patch(
        "llm_archive.rag.llm_client.litellm.completion", return_value=_completion("[]")
    ) as mock_c:
        assert llm.generate("Extract.", "the context") == "[]"

    kwargs = mock_c.call_args.kwargs
    assert kwargs["messages"] == [{"role": "user", "content": "Extract.\n\nthe context"}]
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 300


def test_language_model_temperature_override():
    llm = LiteLLMLanguageModel("openai/gpt-4o", temperature=0.2)
    with patch(
        "llm_archive.rag.llm_client.litellm.completion", return_value=_completion("x")
    ) as mock_c:
        llm.generate("p", temperature=0.9)
    assert mock_c.call_args.kwargs["temperature"] == 0.9


@pytest.mark.asyncio
async def test_language_model_agenerate_uses_acompletion():
    llm = LiteLLMLanguageModel("openai/gpt-4o")
    with patch(
        "llm_archive.rag.llm_client.litellm.acompletion",
        new_callable=AsyncMock,
        return_value=_completion("prose"),
    ) as mock_c:
        assert await llm.agenerate("Explain.", "ctx") == "prose"
    mock_c.assert_awaited_once()


# ------------------------------------------------------------------
# Embedder adapter
# ------------------------------------------------------------------


def test_embedder_batches_and_preserves_order():
    embedder = LiteLLMEmbedder("openai/e", dimensions=3, batch_size=2, rate_limit_delay=0.5)
    texts = ["a", "bb", "ccc", "dddd", "eeeee"]
    with patch(
        "llm_archive.rag.llm_client.litellm.embedding", side_effect=_embedding_response()
    ) as mock_e, patch("llm_archive.rag.llm_client.time.sleep") as mock_sleep:
        vectors = embedder.embed_batch(texts)

    assert mock_e.call_count == 3
    assert [call.kwargs["input"] for call in mock_e.call_args_list] == [
        ["a", "bb"], ["ccc", "dddd"], ["eeeee"],
    ]
    assert [v[0] for v in vectors] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert all(v.dtype == np.float32 for v in vectors)
    # delay only between sub-batches
    assert mock_sleep.call_count == 2
    mock_sleep.assert_called_with(0.5)


def test_embedder_dimension_mismatch_raises():
    embedder = LiteLLMEmbedder("openai/e", dimensions=4)
    with patch(
        "llm_archive.rag.llm_client.litellm.embedding", side_effect=_embedding_response(3)
    ):
        with pytest.raises(ValidationError, match="expected 4"):
            embedder.embed("hello")


def test_embedder_count_mismatch_raises():
    response = MagicMock()
    response.data = [{"embedding": [0.0, 0.0, 0.0]}]
    embedder = LiteLLMEmbedder("openai/e", dimensions=3)
    with patch("llm_archive.rag.llm_client.litellm.embedding", return_value=response):
        with pytest.raises(ExternalServiceError):
            embedder.embed_batch(["a", "b"])


@pytest.mark.asyncio
async def test_embedder_async_batch():
    response = MagicMock()
    response.data = [{"embedding": [1.0, 0.0, 0.0]}, {"embedding": [0.0, 1.0, 0.0]}]
    embedder = LiteLLMEmbedder("openai/e", dimensions=3)
    with patch(
        "llm_archive.rag.llm_client.litellm.aembedding",
        new_callable=AsyncMock,
        return_value=response,
    ):
        vectors = await embedder.aembed_batch(["a", "b"])
    assert [v.tolist() for v in vectors] == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]


def test_embedder_rejects_invalid_settings():
    with pytest.raises(ValidationError):
        LiteLLMEmbedder("openai/e", dimensions=0)
    with pytest.raises(ValidationError):
        LiteLLMEmbedder("openai/e", batch_size=0)


# ------------------------------------------------------------------
# Provider error mapping
# ------------------------------------------------------------------


def _provider_error(cls):
    return cls(message="provider said no", llm_provider="openai", model="gpt-4o")


@pytest.mark.parametrize(
    "provider_exc, expected",
    [
        (litellm.exceptions.RateLimitError, ExternalServiceError),
        (litellm.exceptions.Timeout, ExternalServiceError),
        (litellm.exceptions.ServiceUnavailableError, ExternalServiceError),
        (litellm.exceptions.AuthenticationError, ConfigurationError),
        (litellm.exceptions.BadRequestError, ValidationError),
    ],
)
def test_generate_maps_provider_errors(provider_exc, expected):
    llm = LiteLLMLanguageModel("openai/gpt-4o")
    with patch(
        "llm_archive.rag.llm_client.litellm.completion", side_effect=_provider_error(provider_exc)
    ):
        with pytest.raises(expected, match="provider said no") as info:
            llm.generate("p")
    assert isinstance(info.value.__cause__, provider_exc)


@pytest.mark.asyncio
async def test_agenerate_rate_limit_is_external_service_error():
    llm = LiteLLMLanguageModel("openai/gpt-4o")
    with patch(
        "llm_archive.rag.llm_client.litellm.acompletion",
        new_callable=AsyncMock,
        side_effect=_provider_error(litellm.exceptions.RateLimitError),
    ):
        with pytest.raises(ExternalServiceError):
            await llm.agenerate("p")


def test_embedder_rate_limit_is_external_service_error():
    embedder = LiteLLMEmbedder("openai/e", dimensions=3)
    with patch(
        "llm_archive.rag.llm_client.litellm.embedding",
        side_effect=_provider_error(litellm.exceptions.RateLimitError),
    ):
        with pytest.raises(ExternalServiceError, match="Embedding request failed"):
            embedder.embed("hello")
