"""Tests for the LLM client, the category prompt and its parser.

HTTP backends are simulated with httpx.MockTransport; nothing leaves the
process.
"""
import json

import httpx
import pytest

from tests.fakes import ScriptedLlm, categories_json
from notegraph.config import LlmConfig, LlmProvider
from notegraph.exceptions import ConfigurationError, ErrorCode, LlmError
from notegraph.services.llm_client import (
    LlmClient,
    NullLlmClient,
    TextGenerator,
    build_category_prompt,
    parse_category_suggestions,
    request_category_suggestions,
)


def make_client(handler, **config):
    return LlmClient(LlmConfig(**config), transport=httpx.MockTransport(handler))


def gemini_reply(text):
    return httpx.Response(
        200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]}
    )


class TestAvailability:
    """Tests for is_available()."""

    def test_none_provider(self):
        client = LlmClient(LlmConfig(provider=LlmProvider.NONE))
        assert client.is_available() is False
        with pytest.raises(LlmError) as exc_info:
            client.generate_text("hi")
        assert exc_info.value.code == ErrorCode.LLM_UNAVAILABLE

    def test_gemini_depends_on_api_key(self):
        assert LlmClient(
            LlmConfig(provider=LlmProvider.GEMINI, gemini_api_key="")
        ).is_available() is False
        assert LlmClient(
            LlmConfig(provider=LlmProvider.GEMINI, gemini_api_key="k")
        ).is_available() is True

    def test_local_checks_tags_endpoint(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={"models": []})

        client = make_client(handler, provider=LlmProvider.LOCAL, local_llm_url="http://llm.test")
        assert client.is_available() is True
        assert seen == [("GET", "/api/tags")]

    def test_local_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler, provider=LlmProvider.LOCAL)
        assert client.is_available() is False

    def test_local_malformed_url(self):
        client = make_client(
            lambda request: httpx.Response(200),
            provider=LlmProvider.LOCAL,
            local_llm_url="http://[::1",
        )
        assert client.is_available() is False
        with pytest.raises(LlmError) as exc_info:
            client.generate_text("hello")
        assert exc_info.value.code == ErrorCode.LLM_UNAVAILABLE

    def test_local_error_status(self):
        client = make_client(
            lambda request: httpx.Response(503), provider=LlmProvider.LOCAL
        )
        assert client.is_available() is False

    def test_protocol_conformance(self):
        assert isinstance(LlmClient(LlmConfig(provider=LlmProvider.NONE)), TextGenerator)
        assert isinstance(NullLlmClient(), TextGenerator)
        assert isinstance(ScriptedLlm(), TextGenerator)


class TestGemini:
    """Tests for the Gemini REST backend."""

    def test_generate_text(self):
        captured = {}

        def handler(request):
            captured["path"] = request.url.path
            captured["key"] = request.headers.get("x-goog-api-key")
            captured["body"] = json.loads(request.content)
            return gemini_reply('{"categories": []}')

        client = make_client(
            handler,
            provider=LlmProvider.GEMINI,
            gemini_api_key="secret",
            gemini_base_url="https://gemini.test/v1beta",
        )
        text = client.generate_text("Categorize this", temperature=0.5, max_tokens=300)

        assert text == '{"categories": []}'
        assert captured["path"] == "/v1beta/models/gemini-2.0-flash:generateContent"
        assert captured["key"] == "secret"
        body = captured["body"]
        assert body["contents"][0]["parts"][0]["text"] == "Categorize this"
        assert body["generationConfig"]["temperature"] == 0.5
        assert body["generationConfig"]["maxOutputTokens"] == 300
        assert body["generationConfig"]["topK"] == 1

    def test_defaults_used_when_options_omitted(self):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            return gemini_reply("ok")

        client = make_client(handler, provider=LlmProvider.GEMINI, gemini_api_key="k")
        client.generate_text("hi")
        assert captured["body"]["generationConfig"]["temperature"] == 0.7
        assert captured["body"]["generationConfig"]["maxOutputTokens"] == 1000

    def test_zero_temperature_is_honored(self):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            return gemini_reply("ok")

        client = make_client(handler, provider=LlmProvider.GEMINI, gemini_api_key="k")
        client.generate_text("hi", temperature=0.0)
        assert captured["body"]["generationConfig"]["temperature"] == 0.0

    def test_http_error(self):
        client = make_client(
            lambda request: httpx.Response(500, json={"error": "boom"}),
            provider=LlmProvider.GEMINI,
            gemini_api_key="k",
        )
        with pytest.raises(LlmError) as exc_info:
            client.generate_text("hi")
        assert exc_info.value.code == ErrorCode.LLM_REQUEST_FAILED
        assert exc_info.value.provider == "gemini"

    def test_response_without_candidates(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"promptFeedback": {}}),
            provider=LlmProvider.GEMINI,
            gemini_api_key="k",
        )
        with pytest.raises(LlmError) as exc_info:
            client.generate_text("hi")
        assert exc_info.value.code == ErrorCode.LLM_MALFORMED_RESPONSE

    def test_missing_key_fails_without_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        client = make_client(handler, provider=LlmProvider.GEMINI, gemini_api_key="")
        with pytest.raises(LlmError) as exc_info:
            client.generate_text("hi")
        assert exc_info.value.code == ErrorCode.LLM_UNAVAILABLE


class TestLocal:
    """Tests for the Ollama-compatible backend."""

    def test_generate_text(self):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "hello", "done": True})

        client = make_client(
            handler,
            provider=LlmProvider.LOCAL,
            local_llm_url="http://llm.test:11434/",
            local_llm_model="mistral",
        )
        assert client.generate_text("hi", temperature=0.5, max_tokens=300) == "hello"
        assert captured["url"] == "http://llm.test:11434/api/generate"
        assert captured["body"] == {
            "model": "mistral",
            "prompt": "hi",
            "stream": False,
            "options": {"temperature": 0.5, "num_predict": 300},
        }

    def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler, provider=LlmProvider.LOCAL)
        with pytest.raises(LlmError) as exc_info:
            client.generate_text("hi")
        assert exc_info.value.code == ErrorCode.LLM_UNAVAILABLE

    def test_non_json_body(self):
        client = make_client(
            lambda request: httpx.Response(200, text="not json"),
            provider=LlmProvider.LOCAL,
        )
        with pytest.raises(LlmError) as exc_info:
            client.generate_text("hi")
        assert exc_info.value.code == ErrorCode.LLM_MALFORMED_RESPONSE

    def test_missing_response_field(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"done": True}),
            provider=LlmProvider.LOCAL,
        )
        with pytest.raises(LlmError) as exc_info:
            client.generate_text("hi")
        assert exc_info.value.code == ErrorCode.LLM_MALFORMED_RESPONSE


class TestConfigUpdates:
    """Tests for update_config() and get_config()."""

    def test_update_swaps_config(self):
        client = LlmClient(LlmConfig(provider=LlmProvider.NONE))
        before = client.config
        after = client.update_config(provider="gemini", gemini_api_key="k")
        assert client.config is after
        assert after.provider == LlmProvider.GEMINI
        assert before.provider == LlmProvider.NONE
        assert client.is_available() is True

    @pytest.mark.parametrize(
        "changes", [{"temperature": -1}, {"provider": "openai"}, {"unknown": 1}]
    )
    def test_invalid_update_keeps_previous_config(self, changes):
        client = LlmClient(LlmConfig(provider=LlmProvider.NONE))
        before = client.config
        with pytest.raises(ConfigurationError):
            client.update_config(**changes)
        assert client.config is before

    def test_get_config_masks_key(self):
        client = LlmClient(LlmConfig(provider=LlmProvider.GEMINI, gemini_api_key="secret"))
        data = client.get_config()
        assert data["gemini_api_key"] == "[CONFIGURED]"
        assert data["provider"] == "gemini"

    def test_get_config_without_key(self):
        client = LlmClient(LlmConfig(provider=LlmProvider.NONE, gemini_api_key=""))
        assert client.get_config()["gemini_api_key"] == ""


class TestPromptAndParsing:
    """Tests for the category prompt and response parser."""

    def test_prompt_lists_existing_categories_and_text(self):
        prompt = build_category_prompt("Sourdough needs time", ["Cooking", "Baking"])
        assert "[Cooking, Baking]" in prompt
        assert "Sourdough needs time" in prompt
        assert '"categories"' in prompt
        assert prompt.rstrip().endswith("Only respond with the JSON.")

    def test_parse_plain_json(self):
        parsed = parse_category_suggestions(categories_json(("Food", 0), ("Baking", 1)))
        assert [s.name for s in parsed.categories] == ["Food", "Baking"]

    def test_parse_tolerates_surrounding_text(self):
        text = "Sure! Here you go:\n```json\n" + categories_json(("Food", 0)) + "\n```\nEnjoy."
        parsed = parse_category_suggestions(text)
        assert parsed.categories[0].name == "Food"

    @pytest.mark.parametrize(
        "text",
        [
            "no json here",
            "",
            "} backwards {",
            '{"categories": [{"name": "Food", "level": "zero"}]}',
            '{"categories": []}',
            '{"categories": [{"name": "Food", "level": 0}',
            '{"labels": ["Food"]}',
        ],
    )
    def test_parse_rejects_deviations(self, text):
        with pytest.raises(LlmError) as exc_info:
            parse_category_suggestions(text)
        assert exc_info.value.code == ErrorCode.LLM_MALFORMED_RESPONSE


class TestRequestCategorySuggestions:
    """Tests for the failure-absorbing suggestion helper."""

    def test_unavailable_llm_is_not_called(self):
        llm = ScriptedLlm([categories_json(("Food", 0))], available=False)
        assert request_category_suggestions(llm, "text", []) is None
        assert llm.calls == []

    def test_returns_suggestions_with_generation_options(self):
        llm = ScriptedLlm([categories_json(("Food", 0))])
        result = request_category_suggestions(
            llm, "Bread recipe", ["Cooking"], temperature=0.5, max_tokens=300
        )
        assert result.categories[0].name == "Food"
        assert llm.calls[0]["temperature"] == 0.5
        assert llm.calls[0]["max_tokens"] == 300
        assert "Bread recipe" in llm.calls[0]["prompt"]

    def test_failures_become_none(self):
        llm = ScriptedLlm(["garbage", LlmError("timeout")])
        assert request_category_suggestions(llm, "a", []) is None
        assert request_category_suggestions(llm, "b", []) is None
        assert request_category_suggestions(llm, "c", []) is None  # queue exhausted

    def test_unexpected_exceptions_become_none(self):
        llm = ScriptedLlm([RuntimeError("backend exploded")])
        assert request_category_suggestions(llm, "a", []) is None
        assert len(llm.calls) == 1

    def test_null_client(self):
        assert request_category_suggestions(NullLlmClient(), "text", []) is None
