"""OpenAI adapter using the Responses API with strict structured output."""

from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from ..core.errors import EmptyOrRejectedResponse
from ..core.models import AIModel, AiResponse, Prompt, Vendor
from ..core.usage import UsageMetadata
from .base import VendorAdapter, read_envelope

SCHEMA_NAME = "response_schema"


class _OutputContent(BaseModel):
    type: str
    text: Optional[str] = None


class _OutputItem(BaseModel):
    type: str
    role: Optional[str] = None
    content: Optional[List[_OutputContent]] = None


class _InputDetails(BaseModel):
    cached_tokens: Optional[int] = None


class _OutputDetails(BaseModel):
    reasoning_tokens: Optional[int] = None


class _Usage(BaseModel):
    input_tokens: Optional[int] = None
    input_tokens_details: Optional[_InputDetails] = None
    output_tokens: Optional[int] = None
    output_tokens_details: Optional[_OutputDetails] = None
    total_tokens: Optional[int] = None

    def to_usage(self) -> UsageMetadata:
        return UsageMetadata(
            prompt_tokens=self.input_tokens,
            cached_tokens=self.input_tokens_details.cached_tokens if self.input_tokens_details else 0,
            total_tokens=self.total_tokens,
            candidate_tokens=self.output_tokens,
            reasoning_tokens=self.output_tokens_details.reasoning_tokens if self.output_tokens_details else 0,
        )


class ResponsesApiResponse(BaseModel):
    status: Optional[str] = None
    output: List[_OutputItem] = []
    usage: Optional[_Usage] = None


class OpenAIAdapter(VendorAdapter):
    vendor = Vendor.OPENAI
    default_base_url = "https://api.openai.com/"

    def endpoint_path(self, model: AIModel) -> str:
        return "v1/responses"

    def build_request(self, prompt: Prompt, model: AIModel) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model.model_name,
            "input": [{"role": "user", "content": prompt.text}],
            "max_output_tokens": model.max_output_tokens,
        }
        if prompt.system_prompt:
            body["instructions"] = prompt.system_prompt
        if prompt.response_schema is not None:
            body["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": SCHEMA_NAME,
                    "schema": prompt.response_schema.as_dict(strict=True),
                    "strict": True,
                }
            }
        return body

    def parse_response(self, response: httpx.Response) -> AiResponse:
        envelope = read_envelope(response, ResponsesApiResponse)
        usage = envelope.usage.to_usage() if envelope.usage else UsageMetadata()

        if envelope.status != "completed":
            raise EmptyOrRejectedResponse(f"OpenAI response status is {envelope.status}", usage)

        for item in envelope.output:
            if item.type != "message" or item.role != "assistant":
                continue
            texts = [content.text for content in item.content or [] if content.type == "output_text" and content.text]
            if texts:
                return AiResponse(text="".join(texts), usage=usage)
        raise EmptyOrRejectedResponse("OpenAI returned no assistant output text", usage)
