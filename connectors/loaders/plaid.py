"""
Financial aggregator loader backed by the Plaid REST API.

Plaid Link replaces the OAuth redirect: ``authenticate`` creates a link
token for the frontend and ``continue_to_authenticate`` receives the
public token Link hands back. There is no refresh token and no native
pagination cursor here; fetching is delegated entirely to ``on_fetch``.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlencode
import logging

import httpx

from connectors.loaders.base import DataLoader
from core.config import settings
from core.exceptions import (
    APIFetchError,
    ConnectorAuthenticationError,
    InvalidConnectorConfigError,
    ResourceNotFoundError,
)
from schemas.connector import ResourceConfig
from schemas.loader import AuthInfo, FetchBatch, ResourceInfo, TokenPair

logger = logging.getLogger(__name__)

PLAID_ENVIRONMENTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

PLAID_API_VERSION = "2020-09-14"

PLAID_RESOURCES = ["Transaction", "Account", "Balance", "Identity", "Investment"]

_BALANCES = {
    "type": "object",
    "description": "Current and available balances of an account",
    "properties": {
        "available": {"type": "number"},
        "current": {"type": "number"},
        "limit": {"type": "number"},
        "iso_currency_code": {"type": "string"},
        "unofficial_currency_code": {"type": "string"},
    },
}

PLAID_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "Account": {
        "type": "object",
        "description": "A financial account linked through Plaid",
        "properties": {
            "account_id": {"type": "string", "description": "Plaid account identifier"},
            "name": {"type": "string"},
            "official_name": {"type": "string"},
            "mask": {"type": "string", "description": "Last digits of the account number"},
            "type": {"type": "string", "enum": ["investment", "credit", "depository", "loan", "brokerage", "other"]},
            "subtype": {"type": "string"},
            "balances": _BALANCES,
        },
        "required": ["account_id"],
    },
    "Transaction": {
        "type": "object",
        "description": "A posted or pending account transaction",
        "properties": {
            "transaction_id": {"type": "string", "description": "Plaid transaction identifier"},
            "account_id": {"type": "string"},
            "amount": {"type": "number", "description": "Positive values are outflows"},
            "iso_currency_code": {"type": "string"},
            "date": {"type": "string", "format": "date"},
            "authorized_date": {"type": "string", "format": "date"},
            "datetime": {"type": "string", "format": "date-time"},
            "name": {"type": "string"},
            "merchant_name": {"type": "string"},
            "pending": {"type": "boolean"},
            "payment_channel": {"type": "string"},
            "category": {"type": "array", "items": {"type": "string"}},
            "personal_finance_category": {"type": "object"},
            "location": {"type": "object"},
        },
        "required": ["transaction_id", "account_id"],
    },
    "Balance": {
        "type": "object",
        "description": "Real-time balance snapshot of an account",
        "properties": {"account_id": {"type": "string"}, **_BALANCES["properties"]},
        "required": ["account_id"],
    },
    "Identity": {
        "type": "object",
        "description": "Account holder identity information",
        "properties": {
            "account_id": {"type": "string"},
            "owners": {"type": "array", "items": {"type": "object"}},
        },
        "required": ["account_id"],
    },
    "Investment": {
        "type": "object",
        "description": "Investment holding",
        "properties": {
            "account_id": {"type": "string"},
            "security_id": {"type": "string"},
            "quantity": {"type": "number"},
            "institution_price": {"type": "number"},
            "institution_value": {"type": "number"},
            "cost_basis": {"type": "number"},
            "iso_currency_code": {"type": "string"},
        },
        "required": ["account_id", "security_id"],
    },
}


class PlaidClient:
    """Minimal JSON client for Plaid's POST-only API"""

    def __init__(self, http: httpx.AsyncClient, base_url: str, client_id: str, secret: str, access_token: Optional[str] = None):
        self.http = http
        self.base_url = base_url
        self.client_id = client_id
        self.secret = secret
        self.access_token = access_token

    async def post(self, path: str, body: Optional[Dict[str, Any]] = None, authorized: bool = True) -> Dict[str, Any]:
        payload = {"client_id": self.client_id, "secret": self.secret, **(body or {})}
        if authorized and self.access_token:
            payload["access_token"] = self.access_token

        url = f"{self.base_url}{path}"
        try:
            response = await self.http.post(url, json=payload, headers={"Plaid-Version": PLAID_API_VERSION})
        except httpx.HTTPError as e:
            raise APIFetchError(f"Network error calling Plaid {path}", context={"url": url}, original_exception=e)

        if response.status_code >= 400:
            error = response.json() if response.content else {}
            raise APIFetchError(
                f"Plaid {path} failed: {error.get('error_code', response.status_code)} {error.get('error_message', '')}".strip(),
                context={"url": url, "status_code": response.status_code, "error_type": error.get("error_type")}
            )
        return response.json()


OnFetch = Callable[..., Awaitable[FetchBatch]]


class PlaidDataLoader(DataLoader):
    """
    Plaid loader.

    Config:
        products: Plaid products requested at link time
        country_codes: Country codes for Link (default ["US"])
        language: Link language (default "en")
        on_fetch: Coroutine receiving an authorized PlaidClient, resources,
                  ``last_synced_at`` and a checkpoint copy; returns a FetchBatch
    """

    is_hidden = True
    example_config = {
        "products": ["transactions"],
        "country_codes": ["US"],
        "language": "en",
        "on_fetch": "/* custom fetch coroutine required */",
    }

    def __init__(self, config: Optional[Dict[str, Any]] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        self.client_id = self.config.get("client_id") or settings.PLAID_CLIENT_ID
        self.secret = self.config.get("client_secret") or settings.PLAID_CLIENT_SECRET
        if not self.client_id or not self.secret:
            raise InvalidConnectorConfigError(
                "Plaid loader requires PLAID_CLIENT_ID and PLAID_CLIENT_SECRET"
            )
        on_fetch = self.config.get("on_fetch")
        if not callable(on_fetch):
            raise InvalidConnectorConfigError("Plaid loader requires an 'on_fetch' coroutine")

        self.on_fetch: OnFetch = on_fetch
        self.products: List[str] = list(self.config.get("products") or ["transactions"])
        self.country_codes: List[str] = list(self.config.get("country_codes") or ["US"])
        self.language: str = self.config.get("language") or "en"
        environment = self.config.get("environment") or settings.PLAID_ENVIRONMENT
        self.base_url = PLAID_ENVIRONMENTS.get(environment, PLAID_ENVIRONMENTS["sandbox"])
        self.transport = transport

    def _client(self, http: httpx.AsyncClient) -> PlaidClient:
        return PlaidClient(http, self.base_url, self.client_id, self.secret, self._token_pair.access_token)

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self.transport)

    async def authenticate(self, redirect_to: str, user_id: Optional[str] = None) -> AuthInfo:
        async with self._http_client() as http:
            response = await self._client(http).post("/link/token/create", {
                "client_name": settings.PLAID_CLIENT_NAME,
                "user": {"client_user_id": user_id or "default"},
                "products": self.products,
                "country_codes": self.country_codes,
                "language": self.language,
            }, authorized=False)

        link_token = response["link_token"]
        logger.info("Created Plaid link token")
        query = urlencode({"linkToken": link_token, "redirectTo": redirect_to})
        return AuthInfo(auth_url=f"plaid://?{query}", success=False)

    async def continue_to_authenticate(self, code: str, redirect_to: str) -> None:
        """``code`` is the public token returned by Plaid Link."""
        async with self._http_client() as http:
            try:
                response = await self._client(http).post(
                    "/item/public_token/exchange", {"public_token": code}, authorized=False
                )
            except APIFetchError as e:
                raise ConnectorAuthenticationError(
                    "Plaid public token exchange failed",
                    context=e.context,
                    original_exception=e
                )

        self._token_pair = TokenPair(access_token=response["access_token"], refresh_token=None)
        logger.info("Exchanged Plaid public token for access token")

    async def get_available_resource_names(self) -> List[str]:
        return list(PLAID_RESOURCES)

    async def get_resource_info(self, resource_name: str) -> ResourceInfo:
        schema = PLAID_SCHEMAS.get(resource_name)
        if schema is None:
            raise ResourceNotFoundError(
                f"Schema {resource_name} not found",
                context={"loader": "plaid", "resource_name": resource_name}
            )
        return ResourceInfo(
            name=resource_name,
            record_schema=schema,
            columns=list(schema["properties"]),
            timestamp_columns=[
                name for name, prop in schema["properties"].items()
                if prop.get("format") in ("date", "date-time")
            ],
        )

    async def fetch(
        self,
        resources: List[ResourceConfig],
        sync_context: Optional[Dict[str, Any]] = None,
        last_synced_at: Optional[datetime] = None,
        max_duration_ms: Optional[int] = None,
    ):
        logger.info("Fetching data from Plaid API")
        async with self._http_client() as http:
            page = await self.on_fetch(
                client=self._client(http),
                resources=resources,
                last_synced_at=last_synced_at,
                sync_context=dict(sync_context or {}),
            )
        logger.info(f"Completed Plaid fetch with {len(page.records)} records")
        yield FetchBatch(records=page.records, sync_context=dict(page.sync_context), has_more=page.has_more)
