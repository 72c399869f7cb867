"""
Connector pipeline.

Runs the request cycle shared by all AI vendors: capability check, request
construction, HTTP dispatch, response parsing, decoding with recovery,
retries and usage accounting. Vendor specifics are delegated to a
VendorAdapter.

Every request is recorded in the usage ledger. The record is opened before
the first attempt and closed exactly once when the call returns, whether it
succeeds, fails or is cancelled.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Optional

import httpx

from ..core.errors import ConnectorError, EmptyOrRejectedResponse, TransportFailure, UnsupportedModelError
from ..core.models import AIModel, Prompt, ReplacementResponse
from ..core.prompts import SYSTEM_PROMPT, append_files
from ..core.recovery import decode_replacements
from ..core.retry import RetryPolicy
from ..core.usage import UsageMetadata
from ..storage.models import RequestStatus, RequestType
from ..storage.repository import UsageLedger
from .base import VendorAdapter
from .http import RETRYABLE_STATUS_CODES

logger = logging.getLogger(__name__)


@dataclass
class RequestUsage:
    """Usage of one pipeline call.

    ``pending`` holds usage not yet written to the ledger, ``total`` the usage
    of all attempts so far.
    """
    pending: UsageMetadata = field(default_factory=UsageMetadata)
    total: UsageMetadata = field(default_factory=UsageMetadata)

    def record(self, usage: UsageMetadata) -> None:
        self.pending = self.pending + usage
        self.total = self.total + usage

    def flush(self) -> UsageMetadata:
        """Return the pending usage and reset it."""
        pending, self.pending = self.pending, UsageMetadata()
        return pending


class ConnectorPipeline:
    """Resilient request/response cycle against one AI vendor."""

    def __init__(
        self,
        adapter: VendorAdapter,
        model: AIModel,
        http_client: httpx.AsyncClient,
        ledger: UsageLedger,
        source=None,
        retry_policy: Optional[RetryPolicy] = None,
        file_extension: str = "*.cs",
    ):
        """Initialize the pipeline.

        Args:
            adapter: Adapter of the vendor serving ``model``
            model: Configured AI model
            http_client: Client configured with the vendor base URL and auth
            ledger: Usage ledger of the current run
            source: Source control client providing the files sent as context
            retry_policy: Application-level retry policy
            file_extension: Glob selecting the source files sent as context
        """
        self.adapter = adapter
        self.model = model
        self.http_client = http_client
        self.ledger = ledger
        self.source = source
        self.retry_policy = retry_policy or RetryPolicy()
        self.file_extension = file_extension

    def can_handle(self, model: AIModel) -> bool:
        return self.adapter.can_handle(model)

    async def get_response(self, prompt: Prompt) -> ReplacementResponse:
        """Get a structured fix for a prompt.

        Args:
            prompt: Prompt describing one issue

        Returns:
            Decoded replacements proposed by the model

        Raises:
            UnsupportedModelError: If the adapter does not serve the model
            ConnectorError: If the request still fails after all retries
        """
        if not self.can_handle(self.model):
            raise UnsupportedModelError(
                f"Model {self.model.model_name} is not supported by {self.adapter.vendor.value}"
            )

        request_id = self.ledger.initialize_request(RequestType.CODE_GENERATION, prompt.rule_id)
        usage = RequestUsage()
        status = RequestStatus.FAILED

        def on_retry(attempt: int, error: ConnectorError, delay: float) -> None:
            self.ledger.increment_retries(request_id, usage.flush())

        try:
            result = await self.retry_policy.run(
                lambda: self._attempt(prompt, usage),
                on_retry=on_retry,
            )
            status = RequestStatus.SUCCEEDED
            return result
        finally:
            self.ledger.end_request(request_id, status, usage.flush())
            logger.info(
                "Request %s for %s finished as %s, used %d tokens (%d cached)",
                request_id, prompt.rule_id, status.value,
                usage.total.actual_used_tokens, usage.total.cached_tokens
            )

    async def _attempt(self, prompt: Prompt, usage: RequestUsage) -> ReplacementResponse:
        response = await self._send(prompt)
        if response.is_error and self._is_stale_cache(response):
            logger.warning(
                "Request using cache %s returned HTTP %d, files will be sent with every request",
                self.adapter.cache_name, response.status_code
            )
            self.adapter.cache_name = None
            self.ledger.metadata.cache_name = None
            response = await self._send(prompt)

        if response.is_error:
            raise TransportFailure(
                f"{self.adapter.vendor.value} returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            ai_response = self.adapter.parse_response(response)
        except ConnectorError as exc:
            usage.record(exc.usage)
            raise
        except ValueError as exc:
            raise EmptyOrRejectedResponse(
                f"Invalid response from {self.adapter.vendor.value}: {exc}"
            ) from exc
        usage.record(ai_response.usage)
        logger.debug("Received %d characters from %s", len(ai_response.text), self.adapter.vendor.value)
        return decode_replacements(ai_response.text, ai_response.usage)

    async def _send(self, prompt: Prompt) -> httpx.Response:
        body = self.adapter.build_request(await self._with_context(prompt), self.model)
        path = self.adapter.endpoint_path(self.model)
        try:
            return await self.http_client.post(path, json=body)
        except httpx.HTTPError as exc:
            raise TransportFailure(f"Request to {self.adapter.vendor.value} failed: {exc}") from exc

    def _is_stale_cache(self, response: httpx.Response) -> bool:
        """A client error on a cached request means the vendor dropped the cache."""
        return (
            self.adapter.cache_name is not None
            and 400 <= response.status_code < 500
            and response.status_code not in RETRYABLE_STATUS_CODES
        )

    async def _with_context(self, prompt: Prompt) -> Prompt:
        """Append the relevant source files unless they live in a vendor cache."""
        if self.source is None or self.adapter.cache_name:
            return prompt
        try:
            files = await self.source.get_all_files(self.file_extension, prompt.rule_id)
        except Exception as exc:
            logger.warning("Could not read source files for %s, sending prompt without them: %s", prompt.rule_id, exc)
            return prompt
        if not files:
            return prompt
        return replace(prompt, text=append_files(prompt.text, files))

    async def setup_caching(self) -> None:
        """Upload the source files to the vendor cache, if the vendor has one.

        Failures are logged and not retried; requests then inline the files.
        """
        if not self.adapter.supports_caching or self.adapter.cache_name or self.source is None:
            return

        request_id = None
        status = RequestStatus.FAILED
        usage = UsageMetadata()
        try:
            request_id = self.ledger.initialize_request(RequestType.CACHE_CREATION)
            files = await self.source.get_all_files(self.file_extension)
            body = self.adapter.build_cache_request(tuple(files), SYSTEM_PROMPT, self.model)
            response = await self.http_client.post(self.adapter.cache_endpoint_path(), json=body)
            if response.is_error:
                logger.warning(
                    "Cache creation returned HTTP %d, files will be sent with every request: %s",
                    response.status_code, response.text[:500]
                )
                return
            cache_name, usage = self.adapter.parse_cache_response(response)
            self.adapter.cache_name = cache_name
            self.ledger.metadata.cache_name = cache_name
            status = RequestStatus.SUCCEEDED
            logger.info("Created cache %s with %d file(s)", cache_name, len(files))
        except Exception as exc:
            logger.warning("Cache creation failed, files will be sent with every request: %s", exc)
        finally:
            if request_id is not None:
                self.ledger.end_request(request_id, status, usage)

    async def aclose(self) -> None:
        await self.http_client.aclose()
