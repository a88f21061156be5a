from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from smartlinks.app.models import ClickEventRecord, DeviceType


def _normalize_database_url(database_url: str) -> str:
    value = database_url.strip()
    if value.startswith("sqlite:///"):
        sqlite_path = value[len("sqlite:///") :].split("?", 1)[0]
        if sqlite_path and sqlite_path != ":memory:":
            path = Path(sqlite_path)
            if path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)
        return value
    if "://" in value:
        return value
    path = Path(value)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{str(path).replace(chr(92), '/')}"


def _parse_device_type(value: Optional[str]) -> DeviceType:
    try:
        return DeviceType(value or DeviceType.unknown.value)
    except ValueError:
        return DeviceType.unknown


class SqlitePersistence:
    """
    SQLAlchemy-backed persistence; accepts SQLite and PostgreSQL URLs.

    Campaigns, groups and links are stored as one JSON snapshot row. Click
    events are append-only and live in their own table.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = _normalize_database_url(database_url)
        self._lock = Lock()
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.state_snapshots = Table(
            "state_snapshots",
            self.metadata,
            Column("id", String(50), primary_key=True),
            Column("payload_json", Text, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self.click_events = Table(
            "smart_link_clicks",
            self.metadata,
            Column("id", String(64), primary_key=True),
            Column("smart_link_id", String(64), nullable=False, index=True),
            Column("redirected_to_group", String(64), nullable=True),
            Column("device_type", String(20), nullable=True),
            Column("user_agent", Text, nullable=True),
            Column("referrer", Text, nullable=True),
            Column("created_at_utc", DateTime, nullable=False),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def save_snapshot(self, payload: dict) -> None:
        with self._lock:
            serialized = json.dumps(payload)
            now = datetime.utcnow()
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(self.state_snapshots.c.id).where(self.state_snapshots.c.id == "default")
                ).first()
                if existing:
                    conn.execute(
                        self.state_snapshots.update()
                        .where(self.state_snapshots.c.id == "default")
                        .values(payload_json=serialized, updated_at_utc=now)
                    )
                else:
                    conn.execute(
                        self.state_snapshots.insert().values(
                            id="default",
                            payload_json=serialized,
                            updated_at_utc=now,
                        )
                    )

    def load_snapshot(self) -> Optional[dict]:
        with self._lock:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(self.state_snapshots.c.payload_json).where(
                        self.state_snapshots.c.id == "default"
                    )
                ).first()
            if not row:
                return None
            return json.loads(row[0])

    def insert_click_event(self, record: ClickEventRecord) -> None:
        with self._lock:
            with self.engine.begin() as conn:
                conn.execute(
                    self.click_events.insert().values(
                        id=record.id,
                        smart_link_id=record.smart_link_id,
                        redirected_to_group=record.redirected_to_group,
                        device_type=record.device_type.value,
                        user_agent=record.user_agent,
                        referrer=record.referrer,
                        created_at_utc=record.created_at_utc,
                    )
                )

    def list_click_events(self, smart_link_id: Optional[str] = None) -> list[ClickEventRecord]:
        query = select(
            self.click_events.c.id,
            self.click_events.c.smart_link_id,
            self.click_events.c.redirected_to_group,
            self.click_events.c.device_type,
            self.click_events.c.user_agent,
            self.click_events.c.referrer,
            self.click_events.c.created_at_utc,
        ).order_by(self.click_events.c.created_at_utc.asc())
        if smart_link_id:
            query = query.where(self.click_events.c.smart_link_id == smart_link_id)
        with self._lock:
            with self.engine.connect() as conn:
                rows = conn.execute(query).all()
        return [
            ClickEventRecord(
                id=row.id,
                smart_link_id=row.smart_link_id,
                redirected_to_group=row.redirected_to_group,
                device_type=_parse_device_type(row.device_type),
                user_agent=row.user_agent,
                referrer=row.referrer,
                created_at_utc=row.created_at_utc or datetime.utcnow(),
            )
            for row in rows
        ]
