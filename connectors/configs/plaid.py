"""
Bundled Plaid connector: accounts and transactions of the linked item.

Transactions use Plaid's ``/transactions/sync`` cursor, kept in the
checkpoint as ``transactionsCursor``; each fetch drains the cursor.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from connectors.loaders.plaid import PlaidClient
from schemas.connector import ConnectorConfig, ResourceConfig
from schemas.loader import DataRecord, FetchBatch

logger = logging.getLogger(__name__)


async def fetch_accounts_and_transactions(
    client: PlaidClient,
    resources: List[ResourceConfig],
    last_synced_at: Optional[datetime] = None,
    sync_context: Optional[Dict[str, Any]] = None,
) -> FetchBatch:
    checkpoint = dict(sync_context or {})
    records: List[DataRecord] = []

    logger.info("Fetching accounts from Plaid")
    accounts = (await client.post("/accounts/get")).get("accounts", [])
    records.extend(DataRecord(resource_name="Account", data=account) for account in accounts)
    logger.info(f"Fetched {len(accounts)} accounts")

    has_more = True
    while has_more:
        body: Dict[str, Any] = {}
        if checkpoint.get("transactionsCursor"):
            body["cursor"] = checkpoint["transactionsCursor"]
        logger.info(f"Fetching transactions from Plaid with cursor: {body.get('cursor', 'none')}")

        response = await client.post("/transactions/sync", body)
        added = response.get("added", [])
        modified = response.get("modified", [])
        records.extend(DataRecord(resource_name="Transaction", data=txn) for txn in added + modified)

        checkpoint["transactionsCursor"] = response.get("next_cursor")
        has_more = bool(response.get("has_more"))
        logger.info(f"Fetched {len(added)} new and {len(modified)} modified transactions, hasMore: {has_more}")

    return FetchBatch(records=records, sync_context=checkpoint, has_more=False)


config = ConnectorConfig(
    id="plaid",
    name="Plaid",
    description="Loads financial data from Plaid including transactions, accounts, and balances.",
    resources=[
        ResourceConfig(name="Account", id_column="account_id"),
        ResourceConfig(
            name="Transaction",
            id_column="transaction_id",
            created_at_column="date",
            updated_at_column="authorized_date",
        ),
    ],
    loader_type="plaid",
    loader_config={
        "products": ["transactions"],
        "country_codes": ["US"],
        "language": "en",
        "on_fetch": fetch_accounts_and_transactions,
    },
)
