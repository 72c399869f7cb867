"""
DeepSeek adapter.

DeepSeek only offers a plain JSON mode, so the schema is sent as an
additional system message.
"""

from typing import Any, Dict

import httpx

from ..core.errors import EmptyOrRejectedResponse
from ..core.models import AIModel, AiResponse, Prompt, Vendor
from ..core.prompts import schema_as_system_message
from ..core.usage import UsageMetadata
from .base import VendorAdapter, read_envelope
from .openai_compatible import ChatCompletionResponse


class DeepSeekAdapter(VendorAdapter):
    vendor = Vendor.DEEPSEEK
    default_base_url = "https://api.deepseek.com/"

    def endpoint_path(self, model: AIModel) -> str:
        return "chat/completions"

    def build_request(self, prompt: Prompt, model: AIModel) -> Dict[str, Any]:
        messages = []
        if prompt.system_prompt:
            messages.append({"role": "system", "content": prompt.system_prompt})
        if prompt.response_schema is not None:
            messages.append({"role": "system", "content": schema_as_system_message(prompt.response_schema.lenient())})
        messages.append({"role": "user", "content": prompt.text})

        return {
            "model": model.model_name,
            "messages": messages,
            "max_tokens": model.max_output_tokens,
            "response_format": {"type": "json_object"},
            "stream": False,
        }

    def parse_response(self, response: httpx.Response) -> AiResponse:
        envelope = read_envelope(response, ChatCompletionResponse)
        usage = UsageMetadata()
        if envelope.usage:
            details = envelope.usage.completion_tokens_details
            usage = UsageMetadata(
                prompt_tokens=envelope.usage.prompt_tokens,
                cached_tokens=envelope.usage.prompt_cache_hit_tokens,
                total_tokens=envelope.usage.total_tokens,
                candidate_tokens=envelope.usage.completion_tokens,
                reasoning_tokens=details.reasoning_tokens if details else 0,
            )

        choice = envelope.assistant_choice()
        if choice is None:
            raise EmptyOrRejectedResponse("DeepSeek returned no assistant choice", usage)
        if choice.finish_reason != "stop":
            raise EmptyOrRejectedResponse(f"DeepSeek finished with reason {choice.finish_reason}", usage)
        if not choice.message.content or not choice.message.content.strip():
            raise EmptyOrRejectedResponse("DeepSeek returned empty content", usage)
        return AiResponse(text=choice.message.content, usage=usage)
