"""
Bundled Gmail connector: message metadata from the authorized mailbox.

One page = one ``messages.list`` call plus metadata lookups for the listed
ids, gathered concurrently in chunks. Checkpoint keys: ``nextPageToken``
while paging, ``lastMessageDate`` (ISO) once a pass completes.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import asyncio
import logging

from connectors.loaders.google_api import GoogleApiClient, RetryConfig
from core.exceptions import SyncError
from schemas.connector import ConnectorConfig, ResourceConfig
from schemas.loader import DataRecord, FetchBatch

logger = logging.getLogger(__name__)

MESSAGES_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages"

MAX_RESULTS = 100  # Gmail API maximum
LOOKBACK_DAYS = 365
BATCH_MAX_SIZE = 20

# Gmail signals per-user rate limits with 403
RETRY_CONFIG = RetryConfig(
    retry=5,
    retry_delay_ms=5000,
    status_codes_to_retry=[(403, 403)],
    http_methods_to_retry=["GET"],
)

OPENAPI_SPEC: Dict[str, Any] = {
    "openapi": "3.0.0",
    "info": {"title": "Gmail API", "version": "v1"},
    "paths": {},
    "components": {
        "schemas": {
            "MessagePartHeader": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "value": {"type": "string"},
                },
            },
            "MessagePart": {
                "type": "object",
                "description": "A single MIME message part",
                "properties": {
                    "partId": {"type": "string"},
                    "mimeType": {"type": "string"},
                    "filename": {"type": "string"},
                    "headers": {"type": "array", "items": {"$ref": "#/components/schemas/MessagePartHeader"}},
                    "body": {"type": "object"},
                    "parts": {"type": "array", "items": {"type": "object"}},
                },
            },
            "Message": {
                "type": "object",
                "description": "An email message",
                "properties": {
                    "id": {"type": "string", "description": "The immutable ID of the message"},
                    "threadId": {"type": "string", "description": "The ID of the thread the message belongs to"},
                    "labelIds": {"type": "array", "items": {"type": "string"}, "description": "IDs of labels applied to this message"},
                    "snippet": {"type": "string", "description": "A short part of the message text"},
                    "historyId": {"type": "string", "description": "The ID of the last history record that modified this message"},
                    "internalDate": {"type": "string", "description": "Internal message creation timestamp (epoch ms)"},
                    "payload": {"$ref": "#/components/schemas/MessagePart"},
                    "sizeEstimate": {"type": "integer", "description": "Estimated size in bytes of the message"},
                    "raw": {"type": "string", "description": "The entire email message in RFC 2822 format"},
                },
            },
        }
    },
}


def _internal_date_to_iso(internal_date: str) -> str:
    return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc).isoformat()


async def _get_message(client: GoogleApiClient, message_id: str) -> Optional[Dict[str, Any]]:
    try:
        return await client.get(f"{MESSAGES_URL}/{message_id}", params={"format": "metadata"}, retry_config=RETRY_CONFIG)
    except SyncError as e:
        logger.error(f"Failed to get message {message_id}: {e}")
        return None


async def fetch_messages(
    client: GoogleApiClient,
    resources: List[ResourceConfig],
    last_synced_at: Optional[datetime] = None,
    sync_context: Optional[Dict[str, Any]] = None,
) -> FetchBatch:
    checkpoint = dict(sync_context or {})

    last_message_date = checkpoint.get("lastMessageDate")
    if last_message_date:
        after = datetime.fromisoformat(last_message_date)
    else:
        after = datetime.now(timezone.utc) - timedelta(days=LOOKBACK_DAYS)

    params: Dict[str, Any] = {
        "maxResults": MAX_RESULTS,
        "q": f"after:{int(after.timestamp())}",
        "includeSpamTrash": "false",
    }
    if checkpoint.get("nextPageToken"):
        params["pageToken"] = checkpoint["nextPageToken"]

    logger.info("Fetching Gmail message list")
    response = await client.get(MESSAGES_URL, params=params, retry_config=RETRY_CONFIG)
    message_refs = [ref for ref in response.get("messages", []) if ref.get("id")]
    logger.info(f"Getting {len(message_refs)} messages in chunks of {BATCH_MAX_SIZE}")

    records: List[DataRecord] = []
    latest_internal_date: Optional[str] = None
    for start in range(0, len(message_refs), BATCH_MAX_SIZE):
        chunk = message_refs[start:start + BATCH_MAX_SIZE]
        messages = await asyncio.gather(*(_get_message(client, ref["id"]) for ref in chunk))
        for message in messages:
            if not message:
                continue
            records.append(DataRecord(resource_name="Message", data=message))
            internal_date = message.get("internalDate")
            if internal_date and (latest_internal_date is None or int(internal_date) > int(latest_internal_date)):
                latest_internal_date = internal_date

    next_page_token = response.get("nextPageToken")
    logger.info(
        f"Gmail pagination: messageCount={len(message_refs)}, "
        f"nextPageToken={'present' if next_page_token else 'null'}, MAX_RESULTS={MAX_RESULTS}"
    )

    # A short page is the last one even when a page token is returned
    has_more = bool(next_page_token) and len(message_refs) >= MAX_RESULTS
    if has_more:
        checkpoint["nextPageToken"] = next_page_token
    else:
        checkpoint["lastMessageDate"] = (
            _internal_date_to_iso(latest_internal_date) if latest_internal_date
            else datetime.now(timezone.utc).isoformat()
        )
        checkpoint.pop("nextPageToken", None)

    logger.info(f"Processed Gmail messages page, hasMore: {has_more}")
    return FetchBatch(records=records, sync_context=checkpoint, has_more=has_more)


config = ConnectorConfig(
    id="gmail",
    name="Gmail",
    description="Loads Gmail messages with full details.",
    resources=[ResourceConfig(name="Message")],
    openapi_spec=OPENAPI_SPEC,
    loader_type="google_api",
    loader_config={
        "scopes": ["https://www.googleapis.com/auth/gmail.readonly"],
        "on_fetch": fetch_messages,
    },
)
