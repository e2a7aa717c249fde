"""
Unit tests for the Plaid loader and the bundled Plaid fetch hook
"""

import json
import httpx
import pytest
from urllib.parse import parse_qs, urlparse
from connectors.configs.plaid import fetch_accounts_and_transactions
from connectors.loaders.plaid import PlaidClient, PlaidDataLoader
from core.exceptions import (
    APIFetchError,
    ConnectorAuthenticationError,
    InvalidConnectorConfigError,
    ResourceNotFoundError,
)
from schemas.connector import ResourceConfig
from schemas.loader import TokenPair


class FakePlaid:
    """Request handler emulating the Plaid endpoints the loader uses"""

    def __init__(self, transaction_pages=None):
        self.requests = []
        self.transaction_pages = list(transaction_pages or [])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((request.url.path, body))

        if request.url.path == "/link/token/create":
            return httpx.Response(200, json={"link_token": "link-sandbox-123"})
        if request.url.path == "/item/public_token/exchange":
            if body["public_token"] != "public-good":
                return httpx.Response(400, json={"error_code": "INVALID_PUBLIC_TOKEN", "error_message": "bad token"})
            return httpx.Response(200, json={"access_token": "access-sandbox-1"})
        if request.url.path == "/accounts/get":
            return httpx.Response(200, json={"accounts": [{"account_id": "acc-1", "name": "Checking"}]})
        if request.url.path == "/transactions/sync":
            return httpx.Response(200, json=self.transaction_pages.pop(0))
        return httpx.Response(404, json={"error_code": "NOT_FOUND"})


def make_loader(handler, **config):
    return PlaidDataLoader(
        {
            "client_id": "plaid-client",
            "client_secret": "plaid-secret",
            "on_fetch": fetch_accounts_and_transactions,
            **config,
        },
        transport=httpx.MockTransport(handler),
    )


class TestPlaidLoader:
    """Test link flow and introspection"""

    def test_requires_credentials_and_on_fetch(self):
        with pytest.raises(InvalidConnectorConfigError):
            PlaidDataLoader({"client_id": "x", "client_secret": "y"})

    @pytest.mark.asyncio
    async def test_link_token_url(self):
        plaid = FakePlaid()
        loader = make_loader(plaid)

        auth_info = await loader.authenticate("https://app.example/callback", user_id="user-9")

        assert auth_info.success is False
        parsed = urlparse(auth_info.auth_url)
        assert parsed.scheme == "plaid"
        query = parse_qs(parsed.query)
        assert query["linkToken"] == ["link-sandbox-123"]
        assert query["redirectTo"] == ["https://app.example/callback"]

        path, body = plaid.requests[0]
        assert body["user"] == {"client_user_id": "user-9"}
        assert body["products"] == ["transactions"]
        assert "access_token" not in body

    @pytest.mark.asyncio
    async def test_public_token_exchange(self):
        loader = make_loader(FakePlaid())

        await loader.continue_to_authenticate("public-good", "https://app.example/callback")

        assert loader.get_token_pair().access_token == "access-sandbox-1"
        assert loader.get_token_pair().refresh_token is None

    @pytest.mark.asyncio
    async def test_failed_exchange(self):
        loader = make_loader(FakePlaid())

        with pytest.raises(ConnectorAuthenticationError):
            await loader.continue_to_authenticate("public-bad", "https://app.example/callback")

    @pytest.mark.asyncio
    async def test_static_schemas(self):
        loader = make_loader(FakePlaid())

        assert "Transaction" in await loader.get_available_resource_names()
        info = await loader.get_resource_info("Transaction")
        assert "transaction_id" in info.columns
        assert "date" in info.timestamp_columns
        with pytest.raises(ResourceNotFoundError):
            await loader.get_resource_info("Loan")

    @pytest.mark.asyncio
    async def test_error_response(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(FakePlaid())) as http:
            client = PlaidClient(http, "https://sandbox.plaid.com", "id", "secret", "token")
            with pytest.raises(APIFetchError):
                await client.post("/unknown")


class TestPlaidFetch:
    """Test accounts and the transactions cursor"""

    RESOURCES = [ResourceConfig(name="Account"), ResourceConfig(name="Transaction")]

    @pytest.mark.asyncio
    async def test_drains_transaction_cursor(self):
        plaid = FakePlaid(transaction_pages=[
            {"added": [{"transaction_id": "t1"}], "modified": [], "next_cursor": "c1", "has_more": True},
            {"added": [{"transaction_id": "t2"}], "modified": [{"transaction_id": "t0"}], "next_cursor": "c2", "has_more": False},
        ])
        loader = make_loader(plaid)
        loader.set_token_pair(TokenPair(access_token="access-sandbox-1"))

        batches = [batch async for batch in loader.fetch(self.RESOURCES, {})]

        assert len(batches) == 1
        batch = batches[0]
        assert batch.has_more is False
        assert batch.sync_context == {"transactionsCursor": "c2"}
        assert [(r.resource_name, r.data.get("account_id") or r.data.get("transaction_id")) for r in batch.records] == [
            ("Account", "acc-1"),
            ("Transaction", "t1"),
            ("Transaction", "t2"),
            ("Transaction", "t0"),
        ]

        sync_bodies = [body for path, body in plaid.requests if path == "/transactions/sync"]
        assert "cursor" not in sync_bodies[0]
        assert sync_bodies[1]["cursor"] == "c1"
        assert all(body["access_token"] == "access-sandbox-1" for body in sync_bodies)

    @pytest.mark.asyncio
    async def test_resumes_from_stored_cursor(self):
        plaid = FakePlaid(transaction_pages=[
            {"added": [], "modified": [], "next_cursor": "c3", "has_more": False},
        ])
        loader = make_loader(plaid)
        loader.set_token_pair(TokenPair(access_token="access-sandbox-1"))
        checkpoint = {"transactionsCursor": "c2"}

        batches = [batch async for batch in loader.fetch(self.RESOURCES, checkpoint)]

        sync_body = next(body for path, body in plaid.requests if path == "/transactions/sync")
        assert sync_body["cursor"] == "c2"
        assert batches[0].sync_context == {"transactionsCursor": "c3"}
        assert checkpoint == {"transactionsCursor": "c2"}
