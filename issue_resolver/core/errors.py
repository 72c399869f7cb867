"""
Error taxonomy and process exit codes.

Connector errors carry whether they may be retried and the token usage
collected before they were raised, so that no cost is lost when a request
fails.
"""

from enum import IntEnum
from typing import Optional

from .usage import EMPTY_USAGE, UsageMetadata


class ExitCode(IntEnum):
    """Process exit codes, one per failing subsystem."""
    SUCCESS = 0
    CONFIGURATION_ERROR = 1
    SOURCE_CODE_CONNECTION_ERROR = 2
    CODE_ANALYSIS_ERROR = 3
    AI_CONNECTOR_ERROR = 4
    UNKNOWN_ERROR = 5


class IssueResolverError(Exception):
    """Base class for all errors raised by issue-resolver."""


class ConfigurationError(IssueResolverError):
    """Raised when the configuration is missing or invalid. Never retried."""


class ConnectorError(IssueResolverError):
    """Raised when a request against an AI vendor did not produce a result."""

    retryable = False

    def __init__(self, message: str, usage: Optional[UsageMetadata] = None):
        super().__init__(message)
        self.usage = usage if usage is not None else EMPTY_USAGE


class UnsupportedModelError(ConnectorError):
    """The configured model is not served by the connector."""


class TransportFailure(ConnectorError):
    """The vendor answered with a non-success HTTP status or was unreachable."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
        usage: Optional[UsageMetadata] = None
    ):
        super().__init__(message, usage)
        self.status_code = status_code
        self.body = body


class EmptyOrRejectedResponse(ConnectorError):
    """The vendor returned no usable content or stopped for a bad reason."""

    retryable = True


class MalformedResponse(ConnectorError):
    """The vendor content could not be decoded, even after recovery."""

    retryable = True


class AnalysisError(IssueResolverError):
    """Raised when the static-analysis service request fails."""


class SourceControlError(IssueResolverError):
    """Raised when a version-control operation fails."""


class SourceFileNotFoundError(SourceControlError, FileNotFoundError):
    """Raised when a file is not part of the checked out repository."""


class LedgerError(IssueResolverError):
    """Raised when a usage ledger record cannot be found."""
