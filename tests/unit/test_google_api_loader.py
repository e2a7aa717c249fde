"""
Unit tests for the Google OAuth REST loader
"""

import httpx
import pytest
from datetime import timedelta
from urllib.parse import parse_qs, urlparse
from connectors.loaders.google_api import GoogleApiClient, GoogleApiDataLoader, RetryConfig
from core.exceptions import (
    APIFetchError,
    ConnectorAuthenticationError,
    IntrospectionUnavailableError,
    InvalidConnectorConfigError,
    QuotaExceededError,
)
from core.timeutil import utcnow
from schemas.connector import ResourceConfig
from schemas.loader import DataRecord, FetchBatch, TokenPair


TOKEN_URL = GoogleApiDataLoader.TOKEN_URL
API_URL = "https://www.googleapis.com/test/v1/items"


async def fetch_nothing(client, resources, last_synced_at=None, sync_context=None):
    return FetchBatch(records=[], sync_context={}, has_more=False)


def make_loader(handler, on_fetch=fetch_nothing, **config):
    return GoogleApiDataLoader(
        {
            "scopes": ["https://www.googleapis.com/auth/test.readonly"],
            "on_fetch": on_fetch,
            "client_id": "client-id",
            "client_secret": "client-secret",
            "retry_config": RetryConfig(retry=2, retry_delay_ms=0),
            **config,
        },
        transport=httpx.MockTransport(handler),
    )


def token_response(request):
    form = parse_qs(request.content.decode())
    if form["grant_type"] == ["authorization_code"]:
        return httpx.Response(200, json={"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 3600})
    return httpx.Response(200, json={"access_token": "access-2", "expires_in": 3600})


class TestGoogleAuth:
    """Test consent URL, code exchange and refresh"""

    def test_requires_scopes_and_on_fetch(self):
        with pytest.raises(InvalidConnectorConfigError):
            GoogleApiDataLoader({"on_fetch": fetch_nothing})
        with pytest.raises(InvalidConnectorConfigError):
            GoogleApiDataLoader({"scopes": ["s"]})

    @pytest.mark.asyncio
    async def test_consent_url(self):
        loader = make_loader(token_response)

        auth_info = await loader.authenticate("https://app.example/callback", user_id="user-7")

        assert auth_info.success is False
        query = parse_qs(urlparse(auth_info.auth_url).query)
        assert query["client_id"] == ["client-id"]
        assert query["redirect_uri"] == ["https://app.example/callback"]
        assert query["access_type"] == ["offline"]
        assert query["scope"] == ["https://www.googleapis.com/auth/test.readonly"]
        assert query["state"] == ["user-7"]

    @pytest.mark.asyncio
    async def test_code_exchange_stores_tokens(self):
        loader = make_loader(token_response)

        await loader.continue_to_authenticate("code-1", "https://app.example/callback")

        tokens = loader.get_token_pair()
        assert tokens.access_token == "access-1"
        assert tokens.refresh_token == "refresh-1"
        assert tokens.expires_at > utcnow()

    @pytest.mark.asyncio
    async def test_failed_exchange(self):
        loader = make_loader(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

        with pytest.raises(ConnectorAuthenticationError):
            await loader.continue_to_authenticate("bad-code", "https://app.example/callback")

    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token(self):
        loader = make_loader(token_response)
        loader.set_token_pair(TokenPair(access_token="old", refresh_token="refresh-1"))

        await loader.refresh_access_token()

        assert loader.get_token_pair().access_token == "access-2"
        assert loader.get_token_pair().refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self):
        loader = make_loader(token_response)

        with pytest.raises(ConnectorAuthenticationError):
            await loader.refresh_access_token()

    @pytest.mark.asyncio
    async def test_no_introspection(self):
        loader = make_loader(token_response)

        with pytest.raises(IntrospectionUnavailableError):
            await loader.get_available_resource_names()
        with pytest.raises(IntrospectionUnavailableError):
            await loader.get_resource_info("Message")


class TestGoogleApiClient:
    """Test retries and token refresh on the authorized client"""

    @pytest.mark.asyncio
    async def test_retries_configured_status(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(429)
            return httpx.Response(200, json={"ok": True})

        loader = make_loader(handler)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = GoogleApiClient(loader, http, RetryConfig(retry=2, retry_delay_ms=0))
            body = await client.get(API_URL)

        assert body == {"ok": True}
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        loader = make_loader(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503))) as http:
            client = GoogleApiClient(loader, http, RetryConfig(retry=1, retry_delay_ms=0))
            with pytest.raises(QuotaExceededError):
                await client.get(API_URL)

    @pytest.mark.asyncio
    async def test_method_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        loader = make_loader(handler)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = GoogleApiClient(loader, http, RetryConfig(retry=3, retry_delay_ms=0, http_methods_to_retry=["GET"]))
            with pytest.raises(APIFetchError):
                await client.request("POST", API_URL, json={})

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_refreshes_once_on_unauthorized(self):
        def handler(request):
            if request.url == httpx.URL(TOKEN_URL):
                return token_response(request)
            if request.headers["Authorization"] == "Bearer access-2":
                return httpx.Response(200, json={"items": []})
            return httpx.Response(401)

        loader = make_loader(handler)
        loader.set_token_pair(TokenPair(access_token="stale", refresh_token="refresh-1"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = GoogleApiClient(loader, http)
            body = await client.get(API_URL)

        assert body == {"items": []}
        assert loader.get_token_pair().access_token == "access-2"

    @pytest.mark.asyncio
    async def test_persistent_unauthorized(self):
        def handler(request):
            if request.url == httpx.URL(TOKEN_URL):
                return token_response(request)
            return httpx.Response(401)

        loader = make_loader(handler)
        loader.set_token_pair(TokenPair(access_token="stale", refresh_token="refresh-1"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = GoogleApiClient(loader, http)
            with pytest.raises(ConnectorAuthenticationError):
                await client.get(API_URL)


class TestGoogleFetch:
    """Test the page loop around on_fetch"""

    RESOURCES = [ResourceConfig(name="Item")]

    @staticmethod
    def paged_on_fetch(total_pages, seen):
        async def on_fetch(client, resources, last_synced_at=None, sync_context=None):
            seen.append(dict(sync_context))
            page = int(sync_context.get("page", 0))
            has_more = page + 1 < total_pages
            return FetchBatch(
                records=[DataRecord(resource_name="Item", data={"id": f"item-{page}"})],
                sync_context={"page": page + 1} if has_more else {"cursor": "done"},
                has_more=has_more,
            )
        return on_fetch

    @pytest.mark.asyncio
    async def test_fetches_all_pages(self):
        seen = []
        loader = make_loader(token_response, on_fetch=self.paged_on_fetch(3, seen))
        loader.set_token_pair(TokenPair(access_token="access-1"))

        batches = [batch async for batch in loader.fetch(self.RESOURCES, {})]

        assert [batch.records[0].get("id") for batch in batches] == ["item-0", "item-1", "item-2"]
        assert batches[-1].has_more is False
        assert batches[-1].sync_context == {"cursor": "done"}
        assert seen == [{}, {"page": 1}, {"page": 2}]

    @pytest.mark.asyncio
    async def test_pauses_when_budget_exhausted(self):
        seen = []
        loader = make_loader(token_response, on_fetch=self.paged_on_fetch(3, seen))
        loader.set_token_pair(TokenPair(access_token="access-1"))

        batches = [batch async for batch in loader.fetch(self.RESOURCES, {"page": 1}, max_duration_ms=0)]

        assert len(batches) == 1
        assert batches[0].has_more is True
        assert batches[0].sync_context == {"page": 2}

    @pytest.mark.asyncio
    async def test_refreshes_expired_token_before_fetching(self):
        loader = make_loader(token_response)
        loader.set_token_pair(TokenPair(
            access_token="old",
            refresh_token="refresh-1",
            expires_at=utcnow() - timedelta(minutes=5),
        ))

        batches = [batch async for batch in loader.fetch(self.RESOURCES)]

        assert batches[0].has_more is False
        assert loader.get_token_pair().access_token == "access-2"
