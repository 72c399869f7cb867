"""
Vendor adapter contract.

A vendor adapter translates a provider-neutral Prompt into the request body
of one AI vendor API and parses that vendor's response envelope back into an
AiResponse. Adapters are pure translators: HTTP, retries, decoding and usage
accounting are handled by the connector pipeline.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, Optional, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..core.errors import EmptyOrRejectedResponse
from ..core.models import AIModel, AiResponse, Prompt, SourceFile, Vendor
from ..core.usage import UsageMetadata

EnvelopeT = TypeVar("EnvelopeT", bound=BaseModel)


def read_envelope(response: httpx.Response, envelope: Type[EnvelopeT]) -> EnvelopeT:
    """Parse a vendor response body into its envelope model.

    Raises:
        EmptyOrRejectedResponse: If the body is not the expected JSON shape
    """
    try:
        return envelope.model_validate_json(response.content)
    except ValidationError as exc:
        raise EmptyOrRejectedResponse(
            f"Unexpected {envelope.__name__} body: {exc.error_count()} validation error(s)"
        ) from exc


class VendorAdapter(ABC):
    """Translator between the neutral prompt model and one vendor API."""

    vendor: Vendor
    default_base_url: str
    supports_caching = False

    def __init__(self):
        self.cache_name: Optional[str] = None

    @property
    def supported_models(self) -> FrozenSet[AIModel]:
        return frozenset(model for model in AIModel if model.vendor is self.vendor)

    def can_handle(self, model: AIModel) -> bool:
        return model in self.supported_models

    def auth_headers(self, token: Optional[str]) -> Dict[str, str]:
        """Headers authenticating requests with the configured token."""
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    @abstractmethod
    def endpoint_path(self, model: AIModel) -> str:
        """Path of the completion endpoint, relative to the base URL."""

    @abstractmethod
    def build_request(self, prompt: Prompt, model: AIModel) -> Dict[str, Any]:
        """Build the JSON request body for a prompt."""

    @abstractmethod
    def parse_response(self, response: httpx.Response) -> AiResponse:
        """Extract the completion text and the usage from a successful response.

        Raises:
            EmptyOrRejectedResponse: If the response carries no usable text
        """

    def cache_endpoint_path(self) -> str:
        raise NotImplementedError(f"{self.vendor.value} does not support caching")

    def build_cache_request(self, files: Tuple[SourceFile, ...], system_prompt: str, model: AIModel) -> Dict[str, Any]:
        raise NotImplementedError(f"{self.vendor.value} does not support caching")

    def parse_cache_response(self, response: httpx.Response) -> Tuple[str, UsageMetadata]:
        raise NotImplementedError(f"{self.vendor.value} does not support caching")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(vendor={self.vendor.value!r})"
