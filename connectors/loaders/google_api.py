"""
Generic Google OAuth REST loader.

Handles the OAuth consent / code exchange / refresh cycle and hands an
authorized HTTP client to a connector-specific ``on_fetch`` coroutine
that knows the provider's list+detail endpoints and checkpoint shape.

Features:
- Offline access consent URL (refresh token on first consent)
- Transparent access token refresh on expiry or HTTP 401
- Retry with exponential backoff per RetryConfig (status codes, methods)
- Duration-bounded page loop with resumable checkpoint
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
import logging

import httpx
from pydantic import BaseModel, Field

from connectors.loaders.base import DataLoader, Deadline
from core.config import settings
from core.exceptions import (
    APIFetchError,
    ConnectorAuthenticationError,
    IntrospectionUnavailableError,
    InvalidConnectorConfigError,
    QuotaExceededError,
)
from core.timeutil import utcnow
from schemas.connector import ResourceConfig
from schemas.loader import AuthInfo, FetchBatch, ResourceInfo, TokenPair

logger = logging.getLogger(__name__)

# Refresh a little before the provider's stated expiry
TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)


class RetryConfig(BaseModel):
    """Provider-specific retry policy for quota and transient failures"""
    retry: int = 3
    retry_delay_ms: int = 1000
    # Inclusive (min, max) status ranges
    status_codes_to_retry: List[Tuple[int, int]] = Field(default_factory=lambda: [(429, 429), (500, 599)])
    http_methods_to_retry: List[str] = Field(default_factory=lambda: ["GET", "HEAD", "OPTIONS", "PUT", "DELETE"])

    def should_retry(self, method: str, status_code: int) -> bool:
        if method.upper() not in self.http_methods_to_retry:
            return False
        return any(low <= status_code <= high for low, high in self.status_codes_to_retry)


class GoogleApiClient:
    """
    Authorized JSON client handed to ``on_fetch``.

    Adds the bearer token, refreshes it once on 401, and retries according
    to the default or per-request RetryConfig.
    """

    def __init__(self, loader: "GoogleApiDataLoader", http: httpx.AsyncClient, retry_config: Optional[RetryConfig] = None):
        self.loader = loader
        self.http = http
        self.retry_config = retry_config or RetryConfig()

    async def get(self, url: str, params: Optional[Dict[str, Any]] = None, retry_config: Optional[RetryConfig] = None) -> Dict[str, Any]:
        return await self.request("GET", url, params=params, retry_config=retry_config)

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> Dict[str, Any]:
        """
        Make an HTTP request with token refresh and retry.

        Raises:
            ConnectorAuthenticationError: 401 persists after a refresh
            QuotaExceededError: retryable status outlived its retries
            APIFetchError: any other non-success response or network failure
        """
        config = retry_config or self.retry_config
        refreshed = False
        attempt = 0

        while True:
            headers = {"Authorization": f"Bearer {self.loader.get_token_pair().access_token}"}
            try:
                response = await self.http.request(method, url, params=params, json=json, headers=headers)
            except httpx.TransportError as e:
                if attempt < config.retry and method.upper() in config.http_methods_to_retry:
                    delay = self._backoff(config, attempt)
                    logger.warning(f"Network error calling {url}: {e}. Retrying in {delay:.1f}s")
                    attempt += 1
                    await asyncio.sleep(delay)
                    continue
                raise APIFetchError(
                    f"Network error calling {url}",
                    context={"url": url, "attempts": attempt + 1},
                    original_exception=e
                )

            if response.status_code == 401 and not refreshed:
                logger.info(f"Access token rejected by {url}, refreshing")
                await self.loader.refresh_access_token()
                refreshed = True
                continue

            if response.status_code == 401:
                raise ConnectorAuthenticationError(
                    f"Authentication failed for {url}",
                    context={"url": url, "status_code": 401}
                )

            if config.should_retry(method, response.status_code):
                if attempt < config.retry:
                    retry_after = response.headers.get("Retry-After")
                    delay = float(retry_after) if retry_after and retry_after.isdigit() else self._backoff(config, attempt)
                    logger.warning(
                        f"{method} {url} returned {response.status_code}, "
                        f"retry {attempt + 1}/{config.retry} in {delay:.1f}s"
                    )
                    attempt += 1
                    await asyncio.sleep(delay)
                    continue
                raise QuotaExceededError(
                    f"{method} {url} still failing with {response.status_code} after {config.retry} retries",
                    context={"url": url, "status_code": response.status_code}
                )

            if response.status_code >= 400:
                raise APIFetchError(
                    f"{method} {url} failed with {response.status_code}",
                    context={"url": url, "status_code": response.status_code, "response_body": response.text[:500]}
                )

            return response.json() if response.content else {}

    @staticmethod
    def _backoff(config: RetryConfig, attempt: int) -> float:
        return (config.retry_delay_ms / 1000.0) * (2 ** attempt)


# on_fetch(client=..., resources=..., last_synced_at=..., sync_context=...) -> one page
OnFetch = Callable[..., Awaitable[FetchBatch]]


class GoogleApiDataLoader(DataLoader):
    """
    OAuth loader for Google REST APIs.

    Config:
        scopes: OAuth scopes requested at consent
        on_fetch: Coroutine fetching one page; receives an authorized
                  GoogleApiClient, the resources, ``last_synced_at`` and a
                  copy of the checkpoint, and returns a FetchBatch
        retry_config: Optional default RetryConfig (or dict)
        client_id / client_secret: Override the GOOGLE_* settings
    """

    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"

    is_hidden = True
    example_config = {
        "scopes": ["https://www.googleapis.com/auth/gmail.readonly"],
        "on_fetch": "/* page fetch coroutine supplied by the connector config */",
    }

    def __init__(self, config: Optional[Dict[str, Any]] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        scopes = self.config.get("scopes")
        if not scopes or not isinstance(scopes, (list, tuple)):
            raise InvalidConnectorConfigError("Google API loader requires a non-empty 'scopes' list")
        on_fetch = self.config.get("on_fetch")
        if not callable(on_fetch):
            raise InvalidConnectorConfigError("Google API loader requires an 'on_fetch' coroutine")

        self.scopes: Sequence[str] = list(scopes)
        self.on_fetch: OnFetch = on_fetch
        retry_config = self.config.get("retry_config")
        self.retry_config = retry_config if isinstance(retry_config, RetryConfig) else RetryConfig(**(retry_config or {}))
        self.client_id = self.config.get("client_id") or settings.GOOGLE_CLIENT_ID
        self.client_secret = self.config.get("client_secret") or settings.GOOGLE_CLIENT_SECRET
        self.transport = transport

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self.transport)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self, redirect_to: str, user_id: Optional[str] = None) -> AuthInfo:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_to,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        }
        if user_id:
            params["state"] = user_id
        return AuthInfo(auth_url=str(httpx.URL(self.AUTH_URL, params=params)), success=False)

    async def continue_to_authenticate(self, code: str, redirect_to: str) -> None:
        payload = await self._token_request({
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_to,
            "grant_type": "authorization_code",
        })
        self._store_tokens(payload)
        logger.info("Exchanged Google auth code for tokens")

    async def refresh_access_token(self) -> None:
        refresh_token = self._token_pair.refresh_token
        if not refresh_token:
            raise ConnectorAuthenticationError("Access token expired and no refresh token is available")

        payload = await self._token_request({
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
        })
        self._store_tokens(payload, fallback_refresh_token=refresh_token)
        logger.info("Refreshed Google access token")

    async def _token_request(self, form: Dict[str, Any]) -> Dict[str, Any]:
        async with self._http_client() as http:
            try:
                response = await http.post(self.TOKEN_URL, data=form)
            except httpx.HTTPError as e:
                raise ConnectorAuthenticationError(
                    "Token endpoint unreachable",
                    context={"grant_type": form.get("grant_type")},
                    original_exception=e
                )

        if response.status_code != 200:
            raise ConnectorAuthenticationError(
                f"Token request failed with {response.status_code}",
                context={"grant_type": form.get("grant_type"), "response_body": response.text[:200]}
            )
        payload = response.json()
        if not payload.get("access_token"):
            raise ConnectorAuthenticationError("Token response did not include an access token")
        return payload

    def _store_tokens(self, payload: Dict[str, Any], fallback_refresh_token: Optional[str] = None) -> None:
        expires_in = payload.get("expires_in")
        self._token_pair = TokenPair(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or fallback_refresh_token,
            expires_at=utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None,
        )

    def _token_expired(self) -> bool:
        expires_at = self._token_pair.expires_at
        return expires_at is not None and utcnow() >= expires_at - TOKEN_EXPIRY_MARGIN

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def get_available_resource_names(self) -> List[str]:
        raise IntrospectionUnavailableError("No introspection available for Google API loader")

    async def get_resource_info(self, resource_name: str) -> ResourceInfo:
        raise IntrospectionUnavailableError(
            "No introspection available for Google API loader",
            context={"resource_name": resource_name}
        )

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(
        self,
        resources: List[ResourceConfig],
        sync_context: Optional[Dict[str, Any]] = None,
        last_synced_at: Optional[datetime] = None,
        max_duration_ms: Optional[int] = None,
    ):
        deadline = Deadline(max_duration_ms)
        checkpoint = dict(sync_context or {})

        if self._token_expired():
            await self.refresh_access_token()

        async with self._http_client() as http:
            client = GoogleApiClient(self, http, self.retry_config)
            page_number = 0
            while True:
                page = await self.on_fetch(
                    client=client,
                    resources=resources,
                    last_synced_at=last_synced_at,
                    sync_context=dict(checkpoint),
                )
                page_number += 1
                checkpoint = dict(page.sync_context)

                if page.has_more and deadline.expired():
                    logger.info(f"Time budget reached after {page_number} pages ({deadline.elapsed_ms}ms), pausing")
                    yield FetchBatch(records=page.records, sync_context=checkpoint, has_more=True)
                    return

                yield FetchBatch(records=page.records, sync_context=checkpoint, has_more=page.has_more)
                if not page.has_more:
                    logger.info(f"Fetch complete after {page_number} pages")
                    return
