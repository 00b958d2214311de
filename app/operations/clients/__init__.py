"""Provider client implementations."""

from typing import Optional

from app.core.config import Settings, get_settings
from app.operations.clients.base import BaseOperationClient
from app.operations.clients.mock_client import MockOperationClient
from app.operations.clients.tecnospeed import TecnoSpeedClient


def create_operation_client(settings: Optional[Settings] = None) -> BaseOperationClient:
    """Build the provider client selected by OPERATION_CLIENT_TYPE."""
    settings = settings or get_settings()
    if settings.OPERATION_CLIENT_TYPE == "tecnospeed":
        return TecnoSpeedClient.from_settings(settings)
    return MockOperationClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS)


__all__ = [
    "BaseOperationClient",
    "MockOperationClient",
    "TecnoSpeedClient",
    "create_operation_client",
]
