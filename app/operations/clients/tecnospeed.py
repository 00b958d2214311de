"""
TecnoSpeed provider client.

Statement requests go through the Open Finance API; statement retrieval and
payments go through the Pagamento Bancario API. Only the fields needed to
track an operation are interpreted; everything else is passed through.
"""

import re
from typing import Any, Dict, Optional

import httpx
import structlog

from app.core.config import Settings, get_settings
from app.operations.clients.base import (
    APIAuthenticationError,
    APIConnectionError,
    APIError,
    APIRateLimitError,
    APIServerError,
    APIValidationError,
    BaseOperationClient,
    NeedsReauthorizationError,
    OperationNotFoundError,
)
from app.operations.models import (
    CreatedOperation,
    OperationKind,
    OperationStatus,
    StatementData,
    StatementLine,
    StatusCheckResult,
    is_terminal,
    normalize_status,
)

logger = structlog.get_logger()

PAYMENTS_URLS = {
    "production": "https://api.pagamentobancario.com.br/api/v1",
    "sandbox": "https://staging.pagamentobancario.com.br/api/v1",
}
OPENFINANCE_URLS = {
    "production": "https://api.openfinance.tecnospeed.com.br/v1",
    "sandbox": "https://api.sandbox.openfinance.tecnospeed.com.br/v1",
}


def _env_key(environment: str) -> str:
    return "production" if environment == "production" else "sandbox"


def _parse_amount(value: Any) -> float:
    try:
        return abs(float(value))
    except (TypeError, ValueError):
        return 0.0


def _statement_line(raw: Dict[str, Any], fallback_description: str) -> StatementLine:
    return StatementLine(
        id=raw.get("transactionId") or raw.get("id"),
        date=raw.get("date"),
        description=(
            raw.get("description")
            or raw.get("memo")
            or raw.get("category")
            or raw.get("code")
            or fallback_description
        ),
        amount=_parse_amount(raw.get("amount")),
        document=raw.get("paymentName") or raw.get("fitid") or raw.get("transactionId"),
    )


def normalize_statement(data: Dict[str, Any]) -> StatementData:
    """
    Build StatementData from a statement response.

    The deduplicated transaction block is preferred when it has any lines.
    """
    duplicated = data.get("transactionDuplicated") or {}
    if duplicated.get("credit") or duplicated.get("debit"):
        source = duplicated
    else:
        source = data.get("transaction") or {}

    credits = [_statement_line(t, "Crédito") for t in source.get("credit") or []]
    debits = [_statement_line(t, "Débito") for t in source.get("debit") or []]
    return StatementData.from_lines(credits, debits)


class TecnoSpeedClient(BaseOperationClient):
    """httpx-based client for TecnoSpeed statement and payment operations."""

    def __init__(
        self,
        token: Optional[str],
        cnpj_softwarehouse: Optional[str],
        login_auth: Optional[str] = None,
        payer_cnpj: Optional[str] = None,
        environment: str = "staging",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key=token, timeout=timeout)
        self.cnpj_softwarehouse = cnpj_softwarehouse
        self.login_auth = login_auth or cnpj_softwarehouse
        self.payer_cnpj = re.sub(r"\D", "", payer_cnpj) if payer_cnpj else None
        self.payments_url = PAYMENTS_URLS[_env_key(environment)]
        self.openfinance_url = OPENFINANCE_URLS[_env_key(environment)]
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "TecnoSpeedClient":
        settings = settings or get_settings()
        return cls(
            token=settings.TECNOSPEED_TOKEN,
            cnpj_softwarehouse=settings.TECNOSPEED_CNPJ_SOFTWAREHOUSE,
            login_auth=settings.TECNOSPEED_LOGIN_AUTH,
            payer_cnpj=settings.TECNOSPEED_PAYER_CNPJ,
            environment=settings.TECNOSPEED_ENVIRONMENT,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )

    def get_source_name(self) -> str:
        return "tecnospeed"

    async def validate_credentials(self) -> bool:
        return bool(self.api_key and self.cnpj_softwarehouse)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def create_operation(
        self, kind: OperationKind, parameters: Dict[str, Any]
    ) -> CreatedOperation:
        self._require_credentials()

        if kind == OperationKind.STATEMENT_REQUEST:
            data = await self._request(
                "POST",
                f"{self.openfinance_url}/statements",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "LoginAuth": self.login_auth or "",
                },
                json={
                    "accountId": parameters.get("account_id"),
                    "startDate": parameters.get("start_date"),
                    "endDate": parameters.get("end_date"),
                },
            )
            default_status = OperationStatus.PROCESSING
        else:
            body = dict(parameters)
            payment_type = str(body.pop("payment_type", "transfer")).lower()
            data = await self._request(
                "POST",
                f"{self.payments_url}/payment/{payment_type}",
                headers=self._payment_headers(),
                json=body,
            )
            default_status = OperationStatus.PENDING

        nested = data.get("data") if isinstance(data.get("data"), dict) else {}
        operation_id = (
            data.get("uniqueId")
            or data.get("id")
            or data.get("protocolId")
            or nested.get("uniqueId")
        )
        if not operation_id:
            raise APIValidationError("Provider response did not include an operation id")

        status = normalize_status(data.get("status"), kind) or default_status
        logger.info(
            "provider.operation_created",
            source=self.get_source_name(),
            kind=kind.value,
            operation_id=operation_id,
            status=status.value,
        )
        return CreatedOperation(operation_id=str(operation_id), initial_status=status, raw=data)

    async def check_status(
        self,
        operation_id: str,
        kind: OperationKind,
        linked_account_ref: Optional[str] = None,
    ) -> StatusCheckResult:
        self._require_credentials()
        if kind == OperationKind.STATEMENT_REQUEST:
            return await self._check_statement(operation_id)
        return await self._check_payment(operation_id)

    async def _check_statement(self, operation_id: str) -> StatusCheckResult:
        if not self.payer_cnpj:
            raise APIValidationError("Payer CNPJ is not configured")

        data = await self._request(
            "GET",
            f"{self.payments_url}/statement/openfinance/{operation_id}",
            headers={
                "cnpjsh": self.cnpj_softwarehouse or "",
                "tokensh": self.api_key or "",
                "payercpfcnpj": self.payer_cnpj,
            },
        )

        statement = data.get("statement") or {}
        raw_status = statement.get("status") or data.get("status") or "PROCESSING"
        status = (
            normalize_status(raw_status, OperationKind.STATEMENT_REQUEST)
            or OperationStatus.PROCESSING
        )
        terminal = is_terminal(status)

        payload = None
        if status == OperationStatus.COMPLETED:
            payload = normalize_statement(data).model_dump()

        return StatusCheckResult(
            operation_id=operation_id,
            is_terminal=terminal,
            status=status,
            result_payload=payload,
            error_message=data.get("message") if status == OperationStatus.ERROR else None,
            metadata={"raw_status": raw_status},
        )

    async def _check_payment(self, operation_id: str) -> StatusCheckResult:
        data = await self._request(
            "GET",
            f"{self.payments_url}/payment",
            headers=self._payment_headers(),
            params={"uniqueId": operation_id},
        )

        nested = data.get("data") if isinstance(data.get("data"), dict) else {}
        raw_status = data.get("status") or nested.get("status")
        status = normalize_status(raw_status, OperationKind.PAYMENT) or OperationStatus.PROCESSING
        terminal = is_terminal(status)

        metadata: Dict[str, Any] = {"raw_status": raw_status}
        for key, provider_key in (
            ("occurrences", "occurrences"),
            ("effective_date", "effectiveDate"),
            ("payment_date", "paymentDate"),
            ("end_to_end_id", "endToEndId"),
        ):
            value = data.get(provider_key) or nested.get(provider_key)
            if value:
                metadata[key] = value

        return StatusCheckResult(
            operation_id=operation_id,
            is_terminal=terminal,
            status=status,
            result_payload=data if terminal else None,
            error_message=data.get("errorMessage") if terminal and status != OperationStatus.PAID else None,
            metadata=metadata,
        )

    def _payment_headers(self) -> Dict[str, str]:
        return {
            "cnpj-sh": self.cnpj_softwarehouse or "",
            "token-sh": self.api_key or "",
        }

    def _require_credentials(self) -> None:
        if not self.api_key or not self.cnpj_softwarehouse:
            raise APIAuthenticationError("TecnoSpeed credentials are not configured")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", **kwargs.pop("headers", {})}
        try:
            response = await self._get_client().request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise APIConnectionError(f"Provider request timed out: {e}") from e
        except httpx.TransportError as e:
            raise APIConnectionError(f"Provider connection failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {"message": response.text}
        if not isinstance(data, dict):
            data = {"data": data}

        logger.debug(
            "provider.response",
            method=method,
            url=url,
            status_code=response.status_code,
        )

        if response.is_success:
            return data
        raise self._error_for(response.status_code, data)

    @staticmethod
    def _error_for(status_code: int, data: Dict[str, Any]) -> APIError:
        message = str(data.get("message") or data.get("error") or f"HTTP {status_code}")

        if status_code == 401:
            lowered = message.lower()
            if "pagador" in lowered or "payer" in lowered:
                return APIAuthenticationError(
                    "Payer CNPJ is invalid or not registered for Open Finance",
                    status_code=status_code,
                )
            return APIAuthenticationError("Provider token rejected", status_code=status_code)
        if status_code == 404:
            return OperationNotFoundError("Operation not found at provider", status_code=status_code)
        if status_code == 422:
            return NeedsReauthorizationError(
                "Bank account must be reconnected to renew consent",
                status_code=status_code,
            )
        if status_code == 429:
            return APIRateLimitError(message, status_code=status_code)
        if status_code >= 500:
            return APIServerError(message, status_code=status_code)
        return APIError(message, status_code=status_code)
