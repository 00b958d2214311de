"""
Base provider client interface.

Defines the contract that all operation provider clients must implement,
and the error taxonomy the poll worker and API routes act on.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from app.operations.models import (
    CreatedOperation,
    OperationKind,
    StatusCheckResult,
)


class BaseOperationClient(ABC):
    """
    Abstract base class for operation provider clients.

    Implementations create operations on the provider and answer
    read-only status checks; they never touch the database.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the client.

        Args:
            api_key: API authentication key
            base_url: Base URL for the API
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout

    @abstractmethod
    async def create_operation(
        self, kind: OperationKind, parameters: Dict[str, Any]
    ) -> CreatedOperation:
        """
        Submit an operation to the provider.

        Args:
            kind: Operation kind
            parameters: Provider request parameters

        Returns:
            Provider-issued operation id and initial status

        Raises:
            NeedsReauthorizationError: If the account consent must be renewed
            APIAuthenticationError: If provider credentials are rejected
            APIConnectionError: If the provider cannot be reached
        """
        pass

    @abstractmethod
    async def check_status(
        self,
        operation_id: str,
        kind: OperationKind,
        linked_account_ref: Optional[str] = None,
    ) -> StatusCheckResult:
        """
        Ask the provider for the current status of an operation.

        Must be safe to call repeatedly.

        Raises:
            OperationNotFoundError: If the provider does not know the id
            APIError: Any other provider failure
        """
        pass

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """
        Validate API credentials.

        Returns:
            True if credentials are valid, False otherwise
        """
        pass

    @abstractmethod
    def get_source_name(self) -> str:
        """
        Get the name of this provider.

        Returns:
            Source identifier (e.g., 'tecnospeed', 'mock')
        """
        pass

    async def aclose(self) -> None:
        """Release network resources held by the client."""
        return None


class APIError(Exception):
    """Base exception for provider client errors."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class APIConnectionError(APIError):
    """Raised when connection to the provider fails."""

    pass


class APIAuthenticationError(APIError):
    """Raised when provider authentication fails."""

    pass


class NeedsReauthorizationError(APIError):
    """Raised when the account consent is stale and the user must reconnect."""

    pass


class OperationNotFoundError(APIError):
    """Raised when an operation id is unknown."""

    pass


class APIRateLimitError(APIError):
    """Raised when provider rate limit is exceeded."""

    retryable = True


class APIServerError(APIError):
    """Raised on provider 5xx responses."""

    retryable = True


class APIValidationError(APIError):
    """Raised when the provider returns invalid data."""

    pass
