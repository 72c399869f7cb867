"""
Google Gemini adapter.

Gemini is the only vendor with explicit server-side caching: the source files
and the system prompt are uploaded once per run as cached content and later
requests reference the returned cache name instead of inlining them.
"""

from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel

from ..core.errors import EmptyOrRejectedResponse
from ..core.models import AIModel, AiResponse, Prompt, SourceFile, Vendor
from ..core.prompts import render_files
from ..core.usage import UsageMetadata
from .base import VendorAdapter, read_envelope

CACHE_TTL = "3600s"


class _Part(BaseModel):
    text: Optional[str] = None
    thought: Optional[bool] = None


class _Content(BaseModel):
    role: Optional[str] = None
    parts: List[_Part] = []


class _Candidate(BaseModel):
    content: Optional[_Content] = None
    finishReason: Optional[str] = None


class _UsageMetadata(BaseModel):
    promptTokenCount: Optional[int] = None
    cachedContentTokenCount: Optional[int] = None
    totalTokenCount: Optional[int] = None
    candidatesTokenCount: Optional[int] = None
    thoughtsTokenCount: Optional[int] = None

    def to_usage(self) -> UsageMetadata:
        return UsageMetadata(
            prompt_tokens=self.promptTokenCount,
            cached_tokens=self.cachedContentTokenCount,
            total_tokens=self.totalTokenCount,
            candidate_tokens=self.candidatesTokenCount,
            reasoning_tokens=self.thoughtsTokenCount,
        )


class GenerateContentResponse(BaseModel):
    candidates: List[_Candidate] = []
    usageMetadata: Optional[_UsageMetadata] = None


class CachedContentResponse(BaseModel):
    name: str
    usageMetadata: Optional[_UsageMetadata] = None


def _text_content(role: str, text: str) -> Dict[str, Any]:
    return {"role": role, "parts": [{"text": text}]}


class GeminiAdapter(VendorAdapter):
    vendor = Vendor.GOOGLE
    default_base_url = "https://generativelanguage.googleapis.com/"
    supports_caching = True

    def auth_headers(self, token: Optional[str]) -> Dict[str, str]:
        return {"x-goog-api-key": token} if token else {}

    def endpoint_path(self, model: AIModel) -> str:
        return f"v1beta/models/{model.model_name}:generateContent"

    def build_request(self, prompt: Prompt, model: AIModel) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "maxOutputTokens": model.max_output_tokens,
            "responseMimeType": "application/json",
        }
        if prompt.response_schema is not None:
            generation_config["responseSchema"] = prompt.response_schema.as_dict(strict=False)

        body: Dict[str, Any] = {
            "contents": [_text_content("user", prompt.text)],
            "generationConfig": generation_config,
        }
        # cached content already carries the system instruction
        if self.cache_name:
            body["cachedContent"] = self.cache_name
        elif prompt.system_prompt:
            body["systemInstruction"] = {"parts": [{"text": prompt.system_prompt}]}
        return body

    def parse_response(self, response: httpx.Response) -> AiResponse:
        envelope = read_envelope(response, GenerateContentResponse)
        usage = envelope.usageMetadata.to_usage() if envelope.usageMetadata else UsageMetadata()

        if not envelope.candidates:
            raise EmptyOrRejectedResponse("Gemini returned no candidates", usage)
        candidate = envelope.candidates[0]
        if candidate.finishReason != "STOP":
            raise EmptyOrRejectedResponse(f"Gemini finished with reason {candidate.finishReason}", usage)

        parts = candidate.content.parts if candidate.content else []
        text = "".join(part.text for part in parts if part.text and not part.thought)
        if not text.strip():
            raise EmptyOrRejectedResponse("Gemini returned empty content", usage)
        return AiResponse(text=text, usage=usage)

    def cache_endpoint_path(self) -> str:
        return "v1beta/cachedContents"

    def build_cache_request(self, files: Tuple[SourceFile, ...], system_prompt: str, model: AIModel) -> Dict[str, Any]:
        return {
            "model": f"models/{model.model_name}",
            "contents": [_text_content("user", render_files(files))],
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "ttl": CACHE_TTL,
        }

    def parse_cache_response(self, response: httpx.Response) -> Tuple[str, UsageMetadata]:
        envelope = read_envelope(response, CachedContentResponse)
        usage = envelope.usageMetadata.to_usage() if envelope.usageMetadata else UsageMetadata()
        return envelope.name, usage
