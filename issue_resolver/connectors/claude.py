"""
Anthropic Claude adapter.

The Messages API has no structured output mode. The schema is described in
a system block and the assistant turn is prefilled with the beginning of the
expected JSON document to steer the model into the format.
"""

from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from ..core.errors import EmptyOrRejectedResponse
from ..core.models import AIModel, AiResponse, Prompt, Vendor
from ..core.prompts import schema_as_system_message
from ..core.usage import UsageMetadata
from .base import VendorAdapter, read_envelope

ANTHROPIC_VERSION = "2023-06-01"
ASSISTANT_PREFILL = '{ "replacements":[{"filePath": "'


class _ContentBlock(BaseModel):
    type: str
    text: Optional[str] = None


class _Usage(BaseModel):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cache_read_input_tokens: Optional[int] = None

    def to_usage(self) -> UsageMetadata:
        cached = self.cache_read_input_tokens or 0
        prompt = (self.input_tokens or 0) + cached
        output = self.output_tokens or 0
        return UsageMetadata(
            prompt_tokens=prompt,
            cached_tokens=cached,
            total_tokens=prompt + output,
            candidate_tokens=output,
        )


class MessagesResponse(BaseModel):
    content: List[_ContentBlock] = []
    stop_reason: Optional[str] = None
    usage: Optional[_Usage] = None


class ClaudeAdapter(VendorAdapter):
    vendor = Vendor.ANTHROPIC
    default_base_url = "https://api.anthropic.com/"

    def auth_headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if token:
            headers["x-api-key"] = token
        return headers

    def endpoint_path(self, model: AIModel) -> str:
        return "v1/messages"

    def build_request(self, prompt: Prompt, model: AIModel) -> Dict[str, Any]:
        system = []
        if prompt.system_prompt:
            system.append({"type": "text", "text": prompt.system_prompt})
        if prompt.response_schema is not None:
            system.append({"type": "text", "text": schema_as_system_message(prompt.response_schema.lenient())})

        body: Dict[str, Any] = {
            "model": model.model_name,
            "max_tokens": model.max_output_tokens,
            "messages": [
                {"role": "user", "content": prompt.text},
                {"role": "assistant", "content": ASSISTANT_PREFILL},
            ],
        }
        if system:
            body["system"] = system
        return body

    def parse_response(self, response: httpx.Response) -> AiResponse:
        envelope = read_envelope(response, MessagesResponse)
        usage = envelope.usage.to_usage() if envelope.usage else UsageMetadata()

        if envelope.stop_reason != "end_turn":
            raise EmptyOrRejectedResponse(f"Claude stopped with reason {envelope.stop_reason}", usage)

        text = next((block.text for block in envelope.content if block.type == "text" and block.text), None)
        if not text:
            raise EmptyOrRejectedResponse("Claude returned no text content", usage)
        # the prefill is part of the request, not of the answer
        if not text.lstrip().startswith("{"):
            text = ASSISTANT_PREFILL + text
        return AiResponse(text=text, usage=usage)
