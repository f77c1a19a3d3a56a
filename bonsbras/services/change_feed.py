import asyncio
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set

import anyio
import structlog
from fastapi import WebSocket

logger = structlog.get_logger(__name__)

EVENTS = {"insert", "update", "delete"}

# table -> columns a client may filter on
TOPIC_COLUMNS = {
    "projects": {"client_id", "pro_id", "id"},
    "project_requests": {"pro_id", "client_id"},
    "project_phases": {"project_id"},
    "project_photos": {"project_id"},
    "project_costs": {"project_id"},
    "pro_profiles": {"user_id"},
}


def topic(table: str, column: str, value: Any) -> str:
    return f"{table}:{column}={value}"


def _json_value(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def row_to_record(row: Any) -> Dict[str, Any]:
    """Plain JSON-safe dict of an ORM row's column values."""
    return {col.key: _json_value(getattr(row, col.key)) for col in row.__table__.columns}


def row_topics(table: str, record: Dict[str, Any]) -> List[str]:
    out = []
    for column in TOPIC_COLUMNS.get(table, ()):
        value = record.get(column)
        if value is not None:
            out.append(topic(table, column, value))
    return out


class ChangeFeed:
    """In-process pub/sub of row deltas, keyed by (table, column, value) topics."""

    def __init__(self) -> None:
        # topic -> set of WebSocket connections
        self._subscribers: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, topic_key: str, ws: WebSocket) -> None:
        async with self._lock:
            self._subscribers.setdefault(topic_key, set()).add(ws)

    async def unsubscribe(self, topic_key: str, ws: WebSocket) -> None:
        async with self._lock:
            conns = self._subscribers.get(topic_key)
            if conns is not None:
                conns.discard(ws)
                if not conns:
                    self._subscribers.pop(topic_key, None)

    async def drop(self, ws: WebSocket) -> None:
        async with self._lock:
            for key in list(self._subscribers):
                conns = self._subscribers[key]
                conns.discard(ws)
                if not conns:
                    self._subscribers.pop(key, None)

    def subscriber_count(self, topic_key: str) -> int:
        return len(self._subscribers.get(topic_key, ()))

    async def publish(self, event: str, table: str, record: Dict[str, Any], topics: Optional[Iterable[str]] = None) -> int:
        """Send one delta to every subscriber of the record's topics; returns deliveries."""
        if event not in EVENTS:
            raise ValueError(f"unknown event {event!r}")
        keys = set(topics) if topics is not None else set(row_topics(table, record))
        data = {"event": event, "table": table, "id": record.get("id"), "record": record}
        async with self._lock:
            targets: Set[WebSocket] = set()
            for key in keys:
                targets.update(self._subscribers.get(key, set()))
        delivered = 0
        for ws in targets:
            try:
                await ws.send_json(data)
                delivered += 1
            except Exception as exc:
                # subscriber went away; the socket loop cleans up on disconnect
                logger.info("change_feed_send_failed", table=table, error=str(exc))
        return delivered


# Global singleton feed
feed = ChangeFeed()


def publish_rows(changes: Iterable[tuple]) -> None:
    """
    Publish (event, row) pairs from a sync route after its commit.

    Rows are serialized immediately so the caller's session may be closed
    before the event loop delivers them.
    """
    payloads = []
    for event, row in changes:
        record = row_to_record(row)
        payloads.append((event, row.__tablename__, record))

    async def _publish():
        for event, table, record in payloads:
            await feed.publish(event, table, record)

    try:
        anyio.from_thread.run(_publish)
    except RuntimeError:
        # not called from a worker thread (scripts, direct service use)
        logger.debug("change_feed_no_event_loop", count=len(payloads))
