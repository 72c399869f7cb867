"""
Unit tests for the vendor adapters.

Tests request shapes, completion checks and usage mapping per vendor.
"""

import httpx
import pytest

from issue_resolver.connectors.claude import ASSISTANT_PREFILL, ClaudeAdapter
from issue_resolver.connectors.deepseek import DeepSeekAdapter
from issue_resolver.connectors.gemini import GeminiAdapter
from issue_resolver.connectors.mistral import MistralAdapter
from issue_resolver.connectors.ollama import OllamaAdapter
from issue_resolver.connectors.openai_api import OpenAIAdapter
from issue_resolver.core.errors import EmptyOrRejectedResponse
from issue_resolver.core.models import AIModel, Prompt, SourceFile
from issue_resolver.core.prompts import RESPONSE_SCHEMA
from issue_resolver.core.usage import UsageMetadata

ANSWER = '{"replacements": [{"newCode": "class A {}", "filePath": "src/A.cs"}]}'


def make_prompt() -> Prompt:
    return Prompt(
        text="Fix S1234",
        rule_id="S1234",
        system_prompt="You fix code smells.",
        response_schema=RESPONSE_SCHEMA,
    )


def json_response(body: dict) -> httpx.Response:
    return httpx.Response(200, json=body)


class TestGeminiAdapter:
    """Test the Gemini request and response mapping."""

    def setup_method(self):
        self.adapter = GeminiAdapter()

    def test_endpoint_and_auth(self):
        assert self.adapter.endpoint_path(AIModel.GEMINI_FLASH_LITE) == "v1beta/models/gemini-2.0-flash-lite:generateContent"
        assert self.adapter.auth_headers("key") == {"x-goog-api-key": "key"}

    def test_request_uses_lenient_schema_and_system_instruction(self):
        body = self.adapter.build_request(make_prompt(), AIModel.GEMINI_FLASH_LITE)

        assert body["contents"] == [{"role": "user", "parts": [{"text": "Fix S1234"}]}]
        assert body["systemInstruction"] == {"parts": [{"text": "You fix code smells."}]}
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert body["generationConfig"]["maxOutputTokens"] == 8192
        assert "additionalProperties" not in str(body["generationConfig"]["responseSchema"])
        assert "cachedContent" not in body

    def test_request_references_cache(self):
        self.adapter.cache_name = "cachedContents/abc"

        body = self.adapter.build_request(make_prompt(), AIModel.GEMINI_FLASH_LITE)

        assert body["cachedContent"] == "cachedContents/abc"
        assert "systemInstruction" not in body

    def test_parse_response(self):
        response = json_response({
            "candidates": [{
                "content": {"role": "model", "parts": [{"text": ANSWER}]},
                "finishReason": "STOP",
            }],
            "usageMetadata": {
                "promptTokenCount": 100,
                "cachedContentTokenCount": 60,
                "candidatesTokenCount": 20,
                "totalTokenCount": 125,
                "thoughtsTokenCount": 5,
            },
        })

        result = self.adapter.parse_response(response)

        assert result.text == ANSWER
        assert result.usage == UsageMetadata(
            prompt_tokens=100, cached_tokens=60, total_tokens=125, candidate_tokens=20, reasoning_tokens=5
        )

    def test_wrong_finish_reason_rejected_with_usage(self):
        response = json_response({
            "candidates": [{"content": {"parts": [{"text": "{"}]}, "finishReason": "MAX_TOKENS"}],
            "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 8192},
        })

        with pytest.raises(EmptyOrRejectedResponse) as exc_info:
            self.adapter.parse_response(response)

        assert exc_info.value.usage.prompt_tokens == 10
        assert exc_info.value.usage.candidate_tokens == 8192
        assert exc_info.value.usage.cached_tokens == 0

    def test_missing_candidates_rejected(self):
        with pytest.raises(EmptyOrRejectedResponse, match="no candidates"):
            self.adapter.parse_response(json_response({"promptFeedback": {"blockReason": "SAFETY"}}))

    def test_cache_request(self):
        body = self.adapter.build_cache_request(
            (SourceFile("src/A.cs", "class A {}"),), "system", AIModel.GEMINI_25_FLASH
        )

        assert self.adapter.cache_endpoint_path() == "v1beta/cachedContents"
        assert body["model"] == "models/gemini-2.5-flash"
        assert "## File Path: src/A.cs" in body["contents"][0]["parts"][0]["text"]
        assert body["systemInstruction"] == {"parts": [{"text": "system"}]}
        assert body["ttl"].endswith("s")

    def test_parse_cache_response(self):
        name, usage = self.adapter.parse_cache_response(json_response({
            "name": "cachedContents/xyz",
            "usageMetadata": {"totalTokenCount": 4000},
        }))

        assert name == "cachedContents/xyz"
        assert usage.total_tokens == 4000


class TestOpenAIAdapter:
    """Test the Responses API mapping."""

    def setup_method(self):
        self.adapter = OpenAIAdapter()

    def test_request_uses_strict_schema(self):
        body = self.adapter.build_request(make_prompt(), AIModel.GPT41_NANO)

        assert self.adapter.endpoint_path(AIModel.GPT41_NANO) == "v1/responses"
        assert body["model"] == "gpt-4.1-nano"
        assert body["instructions"] == "You fix code smells."
        assert body["input"] == [{"role": "user", "content": "Fix S1234"}]
        text_format = body["text"]["format"]
        assert text_format["type"] == "json_schema"
        assert text_format["name"] == "response_schema"
        assert text_format["strict"] is True
        assert text_format["schema"]["additionalProperties"] is False

    def test_bearer_auth(self):
        assert self.adapter.auth_headers("sk") == {"Authorization": "Bearer sk"}

    def test_parse_response_skips_reasoning_items(self):
        response = json_response({
            "status": "completed",
            "output": [
                {"type": "reasoning", "summary": []},
                {"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": ANSWER}]},
            ],
            "usage": {
                "input_tokens": 200,
                "input_tokens_details": {"cached_tokens": 150},
                "output_tokens": 40,
                "output_tokens_details": {"reasoning_tokens": 25},
                "total_tokens": 240,
            },
        })

        result = self.adapter.parse_response(response)

        assert result.text == ANSWER
        assert result.usage == UsageMetadata(
            prompt_tokens=200, cached_tokens=150, total_tokens=240, candidate_tokens=40, reasoning_tokens=25
        )

    def test_incomplete_status_rejected(self):
        response = json_response({"status": "incomplete", "output": [], "usage": {"input_tokens": 5}})

        with pytest.raises(EmptyOrRejectedResponse, match="incomplete") as exc_info:
            self.adapter.parse_response(response)

        assert exc_info.value.usage.prompt_tokens == 5

    def test_refusal_rejected(self):
        response = json_response({
            "status": "completed",
            "output": [{"type": "message", "role": "assistant", "content": [{"type": "refusal", "refusal": "no"}]}],
        })

        with pytest.raises(EmptyOrRejectedResponse, match="no assistant output"):
            self.adapter.parse_response(response)


class TestClaudeAdapter:
    """Test the Messages API mapping."""

    def setup_method(self):
        self.adapter = ClaudeAdapter()

    def test_auth_headers(self):
        headers = self.adapter.auth_headers("key")

        assert headers["x-api-key"] == "key"
        assert headers["anthropic-version"] == "2023-06-01"

    def test_request_prefills_assistant_and_appends_schema(self):
        body = self.adapter.build_request(make_prompt(), AIModel.CLAUDE_HAIKU_35)

        assert self.adapter.endpoint_path(AIModel.CLAUDE_HAIKU_35) == "v1/messages"
        assert body["max_tokens"] == 8192
        assert body["messages"][-1] == {"role": "assistant", "content": ASSISTANT_PREFILL}
        assert body["system"][0]["text"] == "You fix code smells."
        assert body["system"][1]["text"].startswith("# Output format")
        assert "additionalProperties" not in body["system"][1]["text"]

    def test_parse_response_restores_prefill(self):
        response = json_response({
            "content": [{"type": "text", "text": 'src/A.cs", "newCode": "class A {}"}]}'}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 50, "cache_read_input_tokens": 30, "output_tokens": 10},
        })

        result = self.adapter.parse_response(response)

        assert result.text.startswith(ASSISTANT_PREFILL)
        assert result.usage == UsageMetadata(
            prompt_tokens=80, cached_tokens=30, total_tokens=90, candidate_tokens=10
        )

    def test_complete_json_is_not_prefixed(self):
        response = json_response({"content": [{"type": "text", "text": ANSWER}], "stop_reason": "end_turn"})

        assert self.adapter.parse_response(response).text == ANSWER

    def test_max_tokens_rejected(self):
        response = json_response({"content": [{"type": "text", "text": "{"}], "stop_reason": "max_tokens"})

        with pytest.raises(EmptyOrRejectedResponse, match="max_tokens"):
            self.adapter.parse_response(response)


class TestMistralAdapter:

    def setup_method(self):
        self.adapter = MistralAdapter()

    def test_request_uses_strict_schema(self):
        body = self.adapter.build_request(make_prompt(), AIModel.MISTRAL_LARGE)

        assert self.adapter.endpoint_path(AIModel.MISTRAL_LARGE) == "v1/chat/completions"
        assert body["messages"] == [
            {"role": "system", "content": "You fix code smells."},
            {"role": "user", "content": "Fix S1234"},
        ]
        json_schema = body["response_format"]["json_schema"]
        assert json_schema["strict"] is True
        assert json_schema["schema"]["additionalProperties"] is False

    def test_parse_response(self):
        response = json_response({
            "choices": [{"index": 0, "message": {"role": "assistant", "content": ANSWER}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 70, "completion_tokens": 30, "total_tokens": 100},
        })

        result = self.adapter.parse_response(response)

        assert result.text == ANSWER
        assert result.usage == UsageMetadata(prompt_tokens=70, total_tokens=100, candidate_tokens=30)

    def test_length_finish_rejected(self):
        response = json_response({
            "choices": [{"index": 0, "message": {"role": "assistant", "content": "{"}, "finish_reason": "length"}],
        })

        with pytest.raises(EmptyOrRejectedResponse, match="length"):
            self.adapter.parse_response(response)


class TestDeepSeekAdapter:

    def setup_method(self):
        self.adapter = DeepSeekAdapter()

    def test_request_sends_schema_as_system_message(self):
        body = self.adapter.build_request(make_prompt(), AIModel.DEEPSEEK_CHAT)

        assert self.adapter.endpoint_path(AIModel.DEEPSEEK_CHAT) == "chat/completions"
        assert [message["role"] for message in body["messages"]] == ["system", "system", "user"]
        assert body["messages"][1]["content"].startswith("# Output format")
        assert body["response_format"] == {"type": "json_object"}

    def test_parse_response_picks_lowest_index_assistant_choice(self):
        response = json_response({
            "choices": [
                {"index": 1, "message": {"role": "assistant", "content": "second"}, "finish_reason": "stop"},
                {"index": 0, "message": {"role": "assistant", "content": ANSWER}, "finish_reason": "stop"},
            ],
            "usage": {
                "prompt_tokens": 90,
                "prompt_cache_hit_tokens": 64,
                "completion_tokens": 30,
                "total_tokens": 120,
                "completion_tokens_details": {"reasoning_tokens": 12},
            },
        })

        result = self.adapter.parse_response(response)

        assert result.text == ANSWER
        assert result.usage == UsageMetadata(
            prompt_tokens=90, cached_tokens=64, total_tokens=120, candidate_tokens=30, reasoning_tokens=12
        )

    def test_empty_content_rejected(self):
        response = json_response({
            "choices": [{"index": 0, "message": {"role": "assistant", "content": ""}, "finish_reason": "stop"}],
        })

        with pytest.raises(EmptyOrRejectedResponse, match="empty content"):
            self.adapter.parse_response(response)


class TestOllamaAdapter:

    def setup_method(self):
        self.adapter = OllamaAdapter()

    def test_no_auth_without_token(self):
        assert self.adapter.auth_headers(None) == {}

    def test_request_uses_strict_format(self):
        body = self.adapter.build_request(make_prompt(), AIModel.PHI4_LOCAL)

        assert self.adapter.endpoint_path(AIModel.PHI4_LOCAL) == "api/generate"
        assert body["model"] == "phi4"
        assert body["stream"] is False
        assert body["system"] == "You fix code smells."
        assert body["format"]["additionalProperties"] is False

    def test_parse_response(self):
        response = json_response({
            "response": ANSWER, "done": True, "done_reason": "stop",
            "prompt_eval_count": 26, "eval_count": 290,
        })

        result = self.adapter.parse_response(response)

        assert result.text == ANSWER
        assert result.usage == UsageMetadata(prompt_tokens=26, total_tokens=316, candidate_tokens=290)

    def test_unfinished_generation_rejected(self):
        response = json_response({"response": "{", "done": True, "done_reason": "length", "eval_count": 3})

        with pytest.raises(EmptyOrRejectedResponse) as exc_info:
            self.adapter.parse_response(response)

        assert exc_info.value.usage.candidate_tokens == 3


class TestEnvelopeErrors:

    def test_non_json_body_is_rejected_response(self):
        with pytest.raises(EmptyOrRejectedResponse):
            MistralAdapter().parse_response(httpx.Response(200, text="<html>gateway</html>"))
