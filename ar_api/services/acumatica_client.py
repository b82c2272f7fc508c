"""
Acumatica contract-based REST client.

A client is a cookie session: login on enter, logout on exit. Entity values
come back wrapped as {"Field": {"value": x}} and are flattened with
unwrap_fields().
"""

from datetime import datetime
from typing import Any, Optional
import logging

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
import structlog

from ar_api.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

INVOICE_FIELD_MAP = {
    "Type": "type",
    "ReferenceNbr": "reference_number",
    "Status": "status",
    "Date": "date",
    "DueDate": "due_date",
    "PostPeriod": "post_period",
    "Customer": "customer",
    "CustomerName": "customer_name",
    "CustomerOrder": "customer_order",
    "CurrencyID": "currency",
    "Amount": "amount",
    "Balance": "balance",
    "Terms": "terms",
    "Description": "description",
    "LastModifiedDateTime": "last_modified_datetime",
}

CUSTOMER_FIELD_MAP = {
    "CustomerID": "customer_id",
    "CustomerName": "customer_name",
    "Status": "customer_status",
    "CustomerClass": "customer_class",
    "Terms": "terms",
    "CreditLimit": "credit_limit",
    "Email": "general_email",
    "LastModifiedDateTime": "last_modified_datetime",
}

PAYMENT_FIELD_MAP = {
    "ReferenceNbr": "reference_number",
    "Type": "type",
    "Status": "status",
    "ApplicationDate": "application_date",
    "PaymentAmount": "payment_amount",
    "UnappliedBalance": "available_balance",
    "CustomerID": "customer_id",
    "PaymentMethod": "payment_method",
    "PaymentRef": "payment_ref",
    "Description": "description",
    "LastModifiedDateTime": "last_modified_datetime",
}

APPLICATION_FIELD_MAP = {
    "DisplayRefNbr": "invoice_reference_number",
    "DisplayDocType": "doc_type",
    "AmountPaid": "amount_paid",
    "ApplicationDate": "application_date",
    "Balance": "balance",
    "CashDiscountTaken": "cash_discount_taken",
}


class AcumaticaError(Exception):
    """Non-retryable failure talking to Acumatica."""


class _AcumaticaRetryableError(Exception):
    """Raised for 5xx or network errors that warrant a retry."""


def unwrap_fields(record: dict, field_map: dict[str, str]) -> dict:
    """Flatten {"Field": {"value": x}} into {"column": x} for mapped fields."""
    mapped: dict[str, Any] = {}
    for source, target in field_map.items():
        raw = record.get(source)
        if isinstance(raw, dict) and "value" in raw:
            mapped[target] = raw["value"]
    return mapped


def format_filter_timestamp(since: datetime) -> str:
    # Acumatica rejects fractional seconds in datetimeoffset literals
    return since.replace(microsecond=0, tzinfo=None).isoformat()


def normalize_base_url(url: str) -> str:
    url = (url or "").strip().rstrip("/")
    if url and not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


class AcumaticaClient:
    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        company: Optional[str] = None,
        branch: Optional[str] = None,
        api_version: str = settings.ACUMATICA_API_VERSION,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = normalize_base_url(base_url)
        self.username = username
        self.password = password
        self.company = company
        self.branch = branch
        self.api_version = api_version
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.ACUMATICA_TIMEOUT_SECONDS, connect=10.0),
        )
        self._logged_in = False

    @classmethod
    def from_credentials(cls, credentials, **kwargs) -> "AcumaticaClient":
        return cls(
            base_url=credentials.acumatica_url,
            username=credentials.username,
            password=credentials.password,
            company=credentials.company,
            branch=credentials.branch,
            **kwargs,
        )

    async def __aenter__(self) -> "AcumaticaClient":
        await self.login()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.logout()
        finally:
            if self._owns_client:
                await self._http.aclose()

    def entity_url(self, entity: str) -> str:
        return f"{self.base_url}/entity/Default/{self.api_version}/{entity}"

    async def login(self) -> None:
        body = {"name": self.username, "password": self.password}
        if self.company:
            body["company"] = self.company
        if self.branch:
            body["branch"] = self.branch

        response = await self._http.post(f"{self.base_url}/entity/auth/login", json=body)
        if response.status_code not in (200, 204):
            logger.error(
                "acumatica_login_failed",
                status_code=response.status_code,
                response=response.text[:500],
            )
            raise AcumaticaError(f"Acumatica login failed: {response.status_code}")
        self._logged_in = True
        logger.info("acumatica_login_ok", base_url=self.base_url)

    async def logout(self) -> None:
        if not self._logged_in:
            return
        try:
            await self._http.post(f"{self.base_url}/entity/auth/logout")
        except httpx.HTTPError as exc:
            # Sessions expire server-side anyway
            logger.warning("acumatica_logout_failed", error=str(exc))
        finally:
            self._logged_in = False

    @retry(
        retry=retry_if_exception_type(_AcumaticaRetryableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        before_sleep=before_sleep_log(_std_logger, logging.WARNING),
        reraise=True,
    )
    async def _get(self, url: str, params: dict) -> list[dict]:
        try:
            response = await self._http.get(
                url, params=params, headers={"Accept": "application/json"}
            )
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            logger.warning("acumatica_network_error_retrying", error=str(exc), url=url)
            raise _AcumaticaRetryableError(str(exc)) from exc

        if response.status_code >= 500:
            logger.warning("acumatica_5xx_retrying", status_code=response.status_code)
            raise _AcumaticaRetryableError(f"Acumatica returned {response.status_code}")
        if response.status_code != 200:
            raise AcumaticaError(
                f"Acumatica request failed: {response.status_code} {response.text[:500]}"
            )

        data = response.json()
        return data if isinstance(data, list) else []

    async def fetch_modified_since(
        self,
        entity: str,
        since: datetime,
        expand: Optional[str] = None,
        extra_filter: Optional[str] = None,
    ) -> list[dict]:
        odata_filter = (
            f"LastModifiedDateTime gt datetimeoffset'{format_filter_timestamp(since)}'"
        )
        if extra_filter:
            odata_filter = f"{odata_filter} and {extra_filter}"
        params = {"$filter": odata_filter}
        if expand:
            params["$expand"] = expand

        records = await self._get(self.entity_url(entity), params)
        logger.info(
            "acumatica_entities_fetched",
            entity=entity,
            since=format_filter_timestamp(since),
            count=len(records),
        )
        return records

    async def fetch_invoices(self, since: datetime) -> list[dict]:
        return await self.fetch_modified_since("Invoice", since)

    async def fetch_customers(self, since: datetime) -> list[dict]:
        return await self.fetch_modified_since("Customer", since, expand="MainContact")

    async def fetch_payments(self, since: datetime) -> list[dict]:
        return await self.fetch_modified_since(
            "Payment", since, extra_filter="Type ne 'Credit Memo'"
        )

    async def fetch_payment_applications(self, reference_number: str, payment_type: str) -> list[dict]:
        params = {
            "$expand": "ApplicationHistory",
            "$filter": f"ReferenceNbr eq '{reference_number}' and Type eq '{payment_type}'",
        }
        records = await self._get(self.entity_url("Payment"), params)
        if not records:
            return []
        return records[0].get("ApplicationHistory") or []
