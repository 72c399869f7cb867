"""
Model to adapter registry.

Every supported model has to be served by exactly one vendor adapter. The
mapping is checked when an adapter is resolved, so a gap or an ambiguity is
reported as a configuration error instead of silently dropping a model.
"""

from typing import Dict, List, Optional, Type

import httpx

from ..core.errors import ConfigurationError
from ..core.models import AIModel
from ..core.retry import RetryPolicy
from ..storage.repository import UsageLedger
from .base import VendorAdapter
from .claude import ClaudeAdapter
from .deepseek import DeepSeekAdapter
from .gemini import GeminiAdapter
from .http import DEFAULT_TIMEOUT_SECONDS, create_http_client
from .mistral import MistralAdapter
from .ollama import OllamaAdapter
from .openai_api import OpenAIAdapter
from .pipeline import ConnectorPipeline

ADAPTERS: List[Type[VendorAdapter]] = [
    GeminiAdapter,
    OpenAIAdapter,
    ClaudeAdapter,
    MistralAdapter,
    DeepSeekAdapter,
    OllamaAdapter,
]


def build_model_map(adapters: List[Type[VendorAdapter]]) -> Dict[AIModel, Type[VendorAdapter]]:
    """Map every model to the adapter serving it.

    Raises:
        ConfigurationError: If a model is claimed by several adapters or by none
    """
    mapping: Dict[AIModel, Type[VendorAdapter]] = {}
    for adapter_cls in adapters:
        for model in adapter_cls().supported_models:
            if model in mapping:
                raise ConfigurationError(
                    f"Model {model.model_name} is claimed by {mapping[model].__name__} and {adapter_cls.__name__}"
                )
            mapping[model] = adapter_cls

    missing = [model.model_name for model in AIModel if model not in mapping]
    if missing:
        raise ConfigurationError(f"No adapter for model(s): {', '.join(missing)}")
    return mapping


def resolve_adapter(model: AIModel, adapters: Optional[List[Type[VendorAdapter]]] = None) -> VendorAdapter:
    """Create the adapter for a model."""
    return build_model_map(adapters if adapters is not None else ADAPTERS)[model]()


def create_connector(
    model: AIModel,
    ledger: UsageLedger,
    source=None,
    token: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    file_extension: str = "*.cs",
    retry_policy: Optional[RetryPolicy] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ConnectorPipeline:
    """Wire the connector pipeline for the configured model."""
    adapter = resolve_adapter(model)
    http_client = create_http_client(
        adapter,
        token=token,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
        transport=transport,
    )
    return ConnectorPipeline(
        adapter,
        model,
        http_client,
        ledger,
        source=source,
        retry_policy=retry_policy,
        file_extension=file_extension,
    )
