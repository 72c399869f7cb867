"""
Data models for storage layer.

Defines the run and request records kept by the usage ledger.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class RequestType(Enum):
    CACHE_CREATION = "CacheCreation"
    CODE_GENERATION = "CodeGeneration"


class RequestStatus(Enum):
    """Lifecycle of a request record. Open moves to a final status exactly once."""
    OPEN = "Open"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass(frozen=True)
class RunRecord:
    """One end-to-end execution against one branch."""
    id: str
    branch: str
    model: str
    start_time: datetime
    end_time: Optional[datetime] = None


@dataclass(frozen=True)
class RequestRecord:
    """Token usage and outcome of one request against an AI vendor.

    Token columns accumulate over all attempts of the request.
    """
    id: str
    run_id: str
    request_type: RequestType
    status: RequestStatus
    total_tokens: int
    cached_tokens: int
    prompt_tokens: int
    response_tokens: int
    retries: int
    start_time: datetime
    code_smell_reference: Optional[str] = None
    end_time: Optional[datetime] = None


@dataclass(frozen=True)
class RunUsageSummary:
    """Aggregated usage of a run, used for reporting."""
    run: RunRecord
    requests: int
    failed_requests: int
    retries: int
    total_tokens: int
    cached_tokens: int
