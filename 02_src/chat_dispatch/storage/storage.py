"""SQLite storage for dispatch trace events and bus messages."""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import resolve_db_path
from ..models import BusMessage, Topic, TraceEvent


class IStorage(Protocol):
    """Persistent storage for observability data (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        ...

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters."""
        ...

    # BusMessages
    async def save_bus_message(self, message: BusMessage) -> None:
        """Save a bus message."""
        ...

    async def get_bus_messages(
        self,
        topic: Topic | None = None,
        session_id: str | None = None,
        limit: int = 100,
    ) -> list[BusMessage]:
        """Get bus messages (newest first)."""
        ...

    async def get_session_history(self, session_id: str) -> list[BusMessage]:
        """State changes of one dispatch session, oldest first."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    # TraceEvents
    async def save_trace_event(self, event: TraceEvent) -> None:
        """Save a trace event."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        await self._conn.execute(
            """
            INSERT INTO trace_events (id, event_type, actor, data, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                event.id or str(uuid.uuid4()),
                event.event_type,
                event.actor,
                json.dumps(event.data, default=str),
                event.timestamp.isoformat(),
            ),
        )
        await self._conn.commit()

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        conditions = []
        params: list = []

        if after:
            conditions.append("timestamp > ?")
            params.append(after.isoformat())
        if event_types:
            placeholders = ",".join("?" * len(event_types))
            conditions.append(f"event_type IN ({placeholders})")
            params.extend(event_types)
        if actor:
            conditions.append("actor = ?")
            params.append(actor)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        query = f"""
            SELECT id, event_type, actor, data, timestamp
            FROM trace_events
            {where_clause}
            ORDER BY timestamp DESC
            LIMIT ?
        """
        params.append(limit)

        cursor = await self._conn.execute(query, params)
        rows = await cursor.fetchall()

        return [
            TraceEvent(
                id=row[0],
                event_type=row[1],
                actor=row[2],
                data=json.loads(row[3]),
                timestamp=_parse_timestamp(row[4]),
            )
            for row in rows
        ]

    # BusMessages
    async def save_bus_message(self, message: BusMessage) -> None:
        """Save a bus message, indexed by the session it belongs to."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        await self._conn.execute(
            """
            INSERT INTO bus_messages (id, topic, session_id, payload, source, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                message.id or str(uuid.uuid4()),
                message.topic.value,
                message.payload.get("session_id"),
                json.dumps(message.payload, default=str),
                message.source,
                message.timestamp.isoformat(),
            ),
        )
        await self._conn.commit()

    async def get_bus_messages(
        self,
        topic: Topic | None = None,
        session_id: str | None = None,
        limit: int = 100,
    ) -> list[BusMessage]:
        """Get bus messages (newest first)."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        conditions = []
        params: list = []
        if topic:
            conditions.append("topic = ?")
            params.append(topic.value)
        if session_id:
            conditions.append("session_id = ?")
            params.append(session_id)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)

        cursor = await self._conn.execute(
            f"""
            SELECT id, topic, payload, source, timestamp
            FROM bus_messages
            {where_clause}
            ORDER BY timestamp DESC
            LIMIT ?
            """,
            params,
        )
        return [_row_to_bus_message(row) for row in await cursor.fetchall()]

    async def get_session_history(self, session_id: str) -> list[BusMessage]:
        """State changes of one dispatch session, oldest first."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        cursor = await self._conn.execute(
            """
            SELECT id, topic, payload, source, timestamp
            FROM bus_messages
            WHERE session_id = ? AND topic = ?
            ORDER BY timestamp ASC, rowid ASC
            """,
            (session_id, Topic.SESSION_STATE.value),
        )
        return [_row_to_bus_message(row) for row in await cursor.fetchall()]

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        for table in ("trace_events", "bus_messages"):
            await self._conn.execute(f"DELETE FROM {table}")

        await self._conn.commit()


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_bus_message(row) -> BusMessage:
    return BusMessage(
        id=row[0],
        topic=Topic(row[1]),
        payload=json.loads(row[2]),
        source=row[3],
        timestamp=_parse_timestamp(row[4]),
    )
