"""Mistral AI adapter using chat completions with a strict JSON schema."""

from typing import Any, Dict

import httpx

from ..core.errors import EmptyOrRejectedResponse
from ..core.models import AIModel, AiResponse, Prompt, Vendor
from ..core.usage import UsageMetadata
from .base import VendorAdapter, read_envelope
from .openai_compatible import ChatCompletionResponse

SCHEMA_NAME = "response_schema"


class MistralAdapter(VendorAdapter):
    vendor = Vendor.MISTRAL
    default_base_url = "https://api.mistral.ai/"

    def endpoint_path(self, model: AIModel) -> str:
        return "v1/chat/completions"

    def build_request(self, prompt: Prompt, model: AIModel) -> Dict[str, Any]:
        messages = []
        if prompt.system_prompt:
            messages.append({"role": "system", "content": prompt.system_prompt})
        messages.append({"role": "user", "content": prompt.text})

        body: Dict[str, Any] = {
            "model": model.model_name,
            "messages": messages,
            "max_tokens": model.max_output_tokens,
        }
        if prompt.response_schema is not None:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": SCHEMA_NAME,
                    "schema": prompt.response_schema.as_dict(strict=True),
                    "strict": True,
                },
            }
        return body

    def parse_response(self, response: httpx.Response) -> AiResponse:
        envelope = read_envelope(response, ChatCompletionResponse)
        usage = UsageMetadata()
        if envelope.usage:
            usage = UsageMetadata(
                prompt_tokens=envelope.usage.prompt_tokens,
                total_tokens=envelope.usage.total_tokens,
                candidate_tokens=envelope.usage.completion_tokens,
            )

        choice = envelope.assistant_choice()
        if choice is None:
            raise EmptyOrRejectedResponse("Mistral returned no assistant choice", usage)
        if choice.finish_reason != "stop":
            raise EmptyOrRejectedResponse(f"Mistral finished with reason {choice.finish_reason}", usage)
        if not choice.message.content or not choice.message.content.strip():
            raise EmptyOrRejectedResponse("Mistral returned empty content", usage)
        return AiResponse(text=choice.message.content, usage=usage)
