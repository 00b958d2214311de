"""
Operation API routes.

Create operations, read their stored state, check them once on demand, and
start or stop background polling for them.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.core.config import get_settings
from app.db.models.operation import Operation
from app.operations.clients import BaseOperationClient, create_operation_client
from app.operations.clients.base import (
    APIError,
    NeedsReauthorizationError,
    OperationNotFoundError,
)
from app.operations.config import PollerConfig, get_poller_config
from app.operations.models import OperationKind, StatusCheckResult
from app.operations.poller import PollerRegistry, get_poller_registry
from app.operations.service import DuplicateOperationError, OperationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/operations", tags=["operations"])

_client: Optional[BaseOperationClient] = None


def get_operation_client() -> BaseOperationClient:
    """Provider client shared by the API process."""
    global _client
    if _client is None:
        _client = create_operation_client(get_settings())
    return _client


async def close_operation_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def get_operation_service() -> OperationService:
    return OperationService(client=get_operation_client())


class CreateOperationRequest(BaseModel):
    """Request body for creating an operation."""

    kind: OperationKind
    parameters: Dict[str, Any] = Field(default_factory=dict)
    linked_entity_id: Optional[str] = None
    linked_account_ref: Optional[str] = None
    watch: bool = Field(default=True, description="Start polling right away")


class OperationResponse(BaseModel):
    """Stored state of an operation."""

    operation_id: str
    kind: str
    source: str
    status: str
    is_terminal: bool
    linked_entity_id: Optional[str] = None
    linked_account_ref: Optional[str] = None
    attempts: int
    effective_date: Optional[str] = None
    end_to_end_id: Optional[str] = None
    occurrences: Optional[List[Any]] = None
    error_message: Optional[str] = None
    result_payload: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_model(cls, operation: Operation) -> "OperationResponse":
        return cls(
            operation_id=operation.operation_id,
            kind=operation.kind,
            source=operation.source,
            status=operation.status,
            is_terminal=operation.is_terminal,
            linked_entity_id=operation.linked_entity_id,
            linked_account_ref=operation.linked_account_ref,
            attempts=operation.attempts,
            effective_date=operation.effective_date,
            end_to_end_id=operation.end_to_end_id,
            occurrences=operation.occurrences,
            error_message=operation.error_message,
            result_payload=operation.result_payload,
            created_at=operation.created_at.isoformat() if operation.created_at else None,
            completed_at=(
                operation.completed_at.isoformat() if operation.completed_at else None
            ),
        )


class WatchRequest(BaseModel):
    """Request body for watch/resume."""

    linked_account_ref: Optional[str] = None


def _not_found(operation_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Operation {operation_id} not found",
    )


def _provider_error(e: APIError) -> HTTPException:
    logger.error(f"Provider call failed: {e.message} (status={e.status_code})")
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Provider error: {e.message}",
    )


@router.post("", response_model=OperationResponse, status_code=status.HTTP_201_CREATED)
async def create_operation(
    body: CreateOperationRequest,
    service: OperationService = Depends(get_operation_service),
    registry: PollerRegistry = Depends(get_poller_registry),
    config: PollerConfig = Depends(get_poller_config),
):
    """
    Submit an operation to the provider, record it and optionally start polling.

    A provider consent failure answers 422 with `needs_consent: true`; the
    caller must send the user to reconnect the account instead of retrying.
    """
    try:
        operation = await service.create_operation(
            body.kind,
            body.parameters,
            linked_entity_id=body.linked_entity_id,
            linked_account_ref=body.linked_account_ref,
        )
    except NeedsReauthorizationError as e:
        logger.warning(f"Operation creation needs consent renewal: {e.message}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": e.message, "needs_consent": True},
        )
    except DuplicateOperationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except APIError as e:
        raise _provider_error(e)

    if body.watch and not operation.is_terminal:
        registry.watch(
            operation.operation_id,
            service,
            config=config,
            linked_account_ref=operation.linked_account_ref,
        )

    return OperationResponse.from_model(operation)


@router.get("", response_model=List[OperationResponse])
async def list_operations(
    linked_entity_id: str = Query(..., description="Ledger transaction id"),
    service: OperationService = Depends(get_operation_service),
):
    """Reverse lookup: every operation linked to a ledger transaction."""
    operations = await service.get_by_linked_entity(linked_entity_id)
    return [OperationResponse.from_model(op) for op in operations]


@router.get("/{operation_id}", response_model=OperationResponse)
async def get_operation(
    operation_id: str,
    service: OperationService = Depends(get_operation_service),
):
    try:
        operation = await service.get_operation(operation_id)
    except OperationNotFoundError:
        raise _not_found(operation_id)
    return OperationResponse.from_model(operation)


@router.get("/{operation_id}/status", response_model=StatusCheckResult)
async def check_operation_status(
    operation_id: str,
    linked_account_ref: Optional[str] = None,
    service: OperationService = Depends(get_operation_service),
):
    """
    Check an operation once against the provider and reconcile the answer.

    Terminal operations are answered from the store.
    """
    try:
        return await service.check_status(operation_id, linked_account_ref)
    except OperationNotFoundError:
        raise _not_found(operation_id)
    except NeedsReauthorizationError as e:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": e.message, "needs_consent": True},
        )
    except APIError as e:
        raise _provider_error(e)


async def _watch(
    operation_id: str,
    body: Optional[WatchRequest],
    service: OperationService,
    registry: PollerRegistry,
    config: PollerConfig,
    resume: bool,
) -> Dict[str, Any]:
    try:
        operation = await service.get_operation(operation_id)
    except OperationNotFoundError:
        raise _not_found(operation_id)

    if operation.is_terminal:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Operation {operation_id} already ended with {operation.status}",
        )

    linked_account_ref = (body.linked_account_ref if body else None) or (
        operation.linked_account_ref
    )
    poller = registry.watch(
        operation_id,
        service,
        config=config,
        linked_account_ref=linked_account_ref,
        resume=resume,
        attempts=operation.attempts if resume else 0,
    )
    return poller.snapshot()


@router.post("/{operation_id}/watch")
async def watch_operation(
    operation_id: str,
    body: Optional[WatchRequest] = None,
    service: OperationService = Depends(get_operation_service),
    registry: PollerRegistry = Depends(get_poller_registry),
    config: PollerConfig = Depends(get_poller_config),
):
    """Start background polling; the first check runs after the base interval."""
    return await _watch(operation_id, body, service, registry, config, resume=False)


@router.post("/{operation_id}/resume")
async def resume_operation(
    operation_id: str,
    body: Optional[WatchRequest] = None,
    service: OperationService = Depends(get_operation_service),
    registry: PollerRegistry = Depends(get_poller_registry),
    config: PollerConfig = Depends(get_poller_config),
):
    """Re-attach polling to an in-flight operation and check it immediately."""
    return await _watch(operation_id, body, service, registry, config, resume=True)


@router.delete("/{operation_id}/watch")
async def stop_watching(
    operation_id: str,
    registry: PollerRegistry = Depends(get_poller_registry),
):
    stopped = registry.stop(operation_id)
    return {"operation_id": operation_id, "stopped": stopped}


@router.get("/{operation_id}/progress")
async def get_progress(
    operation_id: str,
    service: OperationService = Depends(get_operation_service),
    registry: PollerRegistry = Depends(get_poller_registry),
    config: PollerConfig = Depends(get_poller_config),
):
    """
    Polling progress for an operation.

    Uses the live or recently finished poller when there is one, otherwise
    the stored attempt count.
    """
    snapshot = registry.snapshot(operation_id)
    if snapshot is not None:
        return snapshot

    try:
        operation = await service.get_operation(operation_id)
    except OperationNotFoundError:
        raise _not_found(operation_id)

    progress = 1.0 if operation.is_terminal else min(
        operation.attempts / config.max_attempts, 1.0
    )
    return {
        "operation_id": operation_id,
        "status": operation.status,
        "attempts": operation.attempts,
        "max_attempts": config.max_attempts,
        "is_polling": False,
        "progress": round(progress, 4),
        "next_delay_ms": None,
        "estimated_time_remaining_ms": 0,
        "timed_out": False,
        "last_error": operation.error_message,
    }
