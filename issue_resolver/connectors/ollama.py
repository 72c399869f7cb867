"""Adapter for models served by a local Ollama instance."""

from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from ..core.errors import EmptyOrRejectedResponse
from ..core.models import AIModel, AiResponse, Prompt, Vendor
from ..core.usage import UsageMetadata
from .base import VendorAdapter, read_envelope


class GenerateResponse(BaseModel):
    response: Optional[str] = None
    done: bool = False
    done_reason: Optional[str] = None
    prompt_eval_count: Optional[int] = None
    eval_count: Optional[int] = None


class OllamaAdapter(VendorAdapter):
    vendor = Vendor.OLLAMA
    default_base_url = "http://localhost:11434/"

    def endpoint_path(self, model: AIModel) -> str:
        return "api/generate"

    def build_request(self, prompt: Prompt, model: AIModel) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model.model_name,
            "prompt": prompt.text,
            "stream": False,
            "options": {"num_predict": model.max_output_tokens},
        }
        if prompt.system_prompt:
            body["system"] = prompt.system_prompt
        if prompt.response_schema is not None:
            body["format"] = prompt.response_schema.as_dict(strict=True)
        return body

    def parse_response(self, response: httpx.Response) -> AiResponse:
        envelope = read_envelope(response, GenerateResponse)
        prompt_tokens = envelope.prompt_eval_count or 0
        eval_tokens = envelope.eval_count or 0
        usage = UsageMetadata(
            prompt_tokens=prompt_tokens,
            total_tokens=prompt_tokens + eval_tokens,
            candidate_tokens=eval_tokens,
        )

        if not envelope.done or envelope.done_reason != "stop":
            raise EmptyOrRejectedResponse(f"Ollama finished with reason {envelope.done_reason}", usage)
        if not envelope.response or not envelope.response.strip():
            raise EmptyOrRejectedResponse("Ollama returned an empty response", usage)
        return AiResponse(text=envelope.response, usage=usage)
