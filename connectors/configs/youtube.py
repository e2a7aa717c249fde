"""
Bundled YouTube connector: activity feed of the authorized channel.

Checkpoint keys: ``nextPageToken`` while paging, ``lastActivityTime``
(RFC 3339) of the newest activity seen so far.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from connectors.loaders.google_api import GoogleApiClient
from core.timeutil import to_naive_utc
from schemas.connector import ConnectorConfig, ResourceConfig
from schemas.loader import DataRecord, FetchBatch

logger = logging.getLogger(__name__)

ACTIVITIES_URL = "https://www.googleapis.com/youtube/v3/activities"

MAX_RESULTS = 50  # YouTube Data API maximum
LOOKBACK_DAYS = 365

OPENAPI_SPEC: Dict[str, Any] = {
    "openapi": "3.0.0",
    "info": {"title": "YouTube Data API", "version": "v3"},
    "paths": {},
    "components": {
        "schemas": {
            "ActivitySnippet": {
                "type": "object",
                "properties": {
                    "publishedAt": {"type": "string", "format": "date-time"},
                    "channelId": {"type": "string"},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "thumbnails": {"type": "object"},
                    "channelTitle": {"type": "string"},
                    "type": {"type": "string", "description": "upload, like, favorite, comment, subscription, ..."},
                    "groupId": {"type": "string"},
                },
            },
            "Activity": {
                "type": "object",
                "description": "An action taken by the channel owner",
                "properties": {
                    "kind": {"type": "string"},
                    "etag": {"type": "string"},
                    "id": {"type": "string", "description": "ID that YouTube uses to identify the activity"},
                    "snippet": {"$ref": "#/components/schemas/ActivitySnippet"},
                    "contentDetails": {"type": "object", "description": "Details keyed by activity type"},
                },
            },
        }
    },
}


def _published_at(activity: Dict[str, Any]) -> Optional[str]:
    return (activity.get("snippet") or {}).get("publishedAt")


async def fetch_activities(
    client: GoogleApiClient,
    resources: List[ResourceConfig],
    last_synced_at: Optional[datetime] = None,
    sync_context: Optional[Dict[str, Any]] = None,
) -> FetchBatch:
    checkpoint = dict(sync_context or {})

    if last_synced_at is not None:
        published_after = to_naive_utc(last_synced_at).replace(tzinfo=timezone.utc).isoformat()
    else:
        published_after = (datetime.now(timezone.utc) - timedelta(days=LOOKBACK_DAYS)).isoformat()

    params: Dict[str, Any] = {
        "part": "snippet,contentDetails",
        "mine": "true",
        "maxResults": MAX_RESULTS,
        "publishedAfter": published_after,
    }
    if checkpoint.get("nextPageToken"):
        params["pageToken"] = checkpoint["nextPageToken"]

    logger.info("Fetching YouTube activities")
    response = await client.get(ACTIVITIES_URL, params=params)

    items = response.get("items", [])
    records = [DataRecord(resource_name="Activity", data=activity) for activity in items]

    # RFC 3339 UTC strings compare chronologically
    latest = max(
        [value for value in (_published_at(activity) for activity in items) if value]
        + ([checkpoint["lastActivityTime"]] if checkpoint.get("lastActivityTime") else []),
        default=None,
    )
    if latest:
        checkpoint["lastActivityTime"] = latest

    next_page_token = response.get("nextPageToken")
    has_more = bool(next_page_token) and len(items) >= MAX_RESULTS
    if has_more:
        checkpoint["nextPageToken"] = next_page_token
    else:
        checkpoint.pop("nextPageToken", None)

    logger.info(f"Processed YouTube activities page, hasMore: {has_more}")
    return FetchBatch(records=records, sync_context=checkpoint, has_more=has_more)


config = ConnectorConfig(
    id="youtube",
    name="YouTube Activity",
    description="Loads YouTube activity data including uploads, likes, favorites, comments, and subscriptions.",
    resources=[ResourceConfig(name="Activity", created_at_column="snippet.publishedAt", updated_at_column="snippet.publishedAt")],
    openapi_spec=OPENAPI_SPEC,
    loader_type="google_api",
    loader_config={
        "scopes": ["https://www.googleapis.com/auth/youtube.readonly"],
        "on_fetch": fetch_activities,
    },
)
