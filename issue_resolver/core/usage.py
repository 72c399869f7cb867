"""
Token usage accounting.

Normalizes the token counts reported by the different AI vendors.
"""

from dataclasses import dataclass, fields
from typing import Optional


@dataclass(frozen=True)
class UsageMetadata:
    """Token usage of one or more requests against an AI vendor.

    Vendors report usage with different field sets. Missing counts are
    stored as zero so that usage can always be summed across retries.

    Attributes:
        prompt_tokens: Tokens used by the prompt, including cached tokens
        cached_tokens: Tokens of the prompt served from a vendor-side cache
        total_tokens: Total tokens as reported by the vendor
        candidate_tokens: Tokens used to generate the response
        reasoning_tokens: Tokens used for reasoning, if the model reports them
    """
    prompt_tokens: Optional[int] = 0
    cached_tokens: Optional[int] = 0
    total_tokens: Optional[int] = 0
    candidate_tokens: Optional[int] = 0
    reasoning_tokens: Optional[int] = 0

    def __post_init__(self):
        """Coerce absent counts to zero and reject negative counts."""
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                value = 0
            value = int(value)
            if value < 0:
                raise ValueError(f"{item.name} must be >= 0")
            object.__setattr__(self, item.name, value)

    @property
    def actual_request_tokens(self) -> int:
        """Tokens used by the request, including cached content."""
        return self.prompt_tokens

    @property
    def actual_response_tokens(self) -> int:
        """Tokens used by the response, including reasoning tokens."""
        return self.candidate_tokens + self.reasoning_tokens

    @property
    def actual_used_tokens(self) -> int:
        """Tokens actually used by request and response together."""
        return self.actual_request_tokens + self.actual_response_tokens

    def __add__(self, other: "UsageMetadata") -> "UsageMetadata":
        if not isinstance(other, UsageMetadata):
            return NotImplemented
        return UsageMetadata(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            cached_tokens=self.cached_tokens + other.cached_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            candidate_tokens=self.candidate_tokens + other.candidate_tokens,
            reasoning_tokens=self.reasoning_tokens + other.reasoning_tokens,
        )


EMPTY_USAGE = UsageMetadata()
