"""
Bundled Google Calendar connector: events of the primary calendar.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from connectors.loaders.google_api import GoogleApiClient
from schemas.connector import ConnectorConfig, ResourceConfig
from schemas.loader import DataRecord, FetchBatch

logger = logging.getLogger(__name__)

EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"

MAX_RESULTS = 2500  # Calendar API maximum
LOOKBACK_DAYS = 2 * 365

_EVENT_DATE_TIME = {
    "type": "object",
    "properties": {
        "date": {"type": "string", "format": "date"},
        "dateTime": {"type": "string", "format": "date-time"},
        "timeZone": {"type": "string"},
    },
}

OPENAPI_SPEC: Dict[str, Any] = {
    "openapi": "3.0.0",
    "info": {"title": "Calendar API", "version": "v3"},
    "paths": {},
    "components": {
        "schemas": {
            "Event": {
                "type": "object",
                "description": "A calendar event",
                "properties": {
                    "id": {"type": "string", "description": "Opaque identifier of the event"},
                    "status": {"type": "string", "enum": ["confirmed", "tentative", "cancelled"]},
                    "htmlLink": {"type": "string", "description": "Link to the event in the Calendar web UI"},
                    "created": {"type": "string", "format": "date-time", "description": "Creation time of the event"},
                    "updated": {"type": "string", "format": "date-time", "description": "Last modification time of the event"},
                    "summary": {"type": "string", "description": "Title of the event"},
                    "description": {"type": "string"},
                    "location": {"type": "string"},
                    "creator": {"type": "object"},
                    "organizer": {"type": "object"},
                    "start": _EVENT_DATE_TIME,
                    "end": _EVENT_DATE_TIME,
                    "recurringEventId": {"type": "string"},
                    "attendees": {"type": "array", "items": {"type": "object"}},
                    "eventType": {"type": "string"},
                    "transparency": {"type": "string"},
                    "visibility": {"type": "string"},
                    "sequence": {"type": "integer"},
                },
            },
        }
    },
}


async def fetch_events(
    client: GoogleApiClient,
    resources: List[ResourceConfig],
    last_synced_at: Optional[datetime] = None,
    sync_context: Optional[Dict[str, Any]] = None,
) -> FetchBatch:
    checkpoint = dict(sync_context or {})
    current = datetime.now(timezone.utc)

    params: Dict[str, Any] = {
        "timeMin": (current - timedelta(days=LOOKBACK_DAYS)).isoformat(),
        "timeMax": current.isoformat(),
        "maxResults": MAX_RESULTS,
        "showDeleted": "true",
        "singleEvents": "true",
        "orderBy": "updated",
    }
    if checkpoint.get("lastEventUpdateTime"):
        params["updatedMin"] = checkpoint["lastEventUpdateTime"]
    if checkpoint.get("nextPageToken"):
        params["pageToken"] = checkpoint["nextPageToken"]

    logger.info("Fetching calendar events")
    response = await client.get(EVENTS_URL, params=params)

    items = response.get("items", [])
    records = [DataRecord(resource_name="Event", data=event) for event in items]
    # RFC 3339 UTC strings compare chronologically
    latest_update = max((event["updated"] for event in items if event.get("updated")), default=None)

    next_page_token = response.get("nextPageToken")
    has_more = bool(next_page_token) and len(items) >= MAX_RESULTS
    if has_more:
        checkpoint["nextPageToken"] = next_page_token
    else:
        checkpoint["lastEventUpdateTime"] = latest_update or current.isoformat()
        checkpoint.pop("nextPageToken", None)

    logger.info(f"Processed calendar events page, hasMore: {has_more}")
    return FetchBatch(records=records, sync_context=checkpoint, has_more=has_more)


config = ConnectorConfig(
    id="google_calendar",
    name="Google Calendar",
    description="Loads Google Calendar events data.",
    resources=[ResourceConfig(name="Event", created_at_column="created", updated_at_column="updated")],
    openapi_spec=OPENAPI_SPEC,
    loader_type="google_api",
    loader_config={
        "scopes": ["https://www.googleapis.com/auth/calendar.readonly"],
        "on_fetch": fetch_events,
    },
)
