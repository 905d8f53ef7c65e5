"""Base model and repository classes for labdesk."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from labdesk.core.database import DatabaseConnection
from labdesk.core.exceptions import NotFoundError


def new_id() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """Return current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO date or datetime string into an aware UTC datetime."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class LabModel(BaseModel):
    """Base for all labdesk Pydantic models."""

    id: str = Field(default_factory=new_id)
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)

    def to_row(self) -> dict[str, Any]:
        """Convert model to a flat dict suitable for DB insertion."""
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: Any) -> "LabModel":
        """Create model from a sqlite3.Row or dict."""
        if hasattr(row, "keys"):
            return cls(**{k: row[k] for k in row.keys()})
        return cls(**row)


class LinkModel(LabModel):
    """Base for join rows that carry no ``updated_at`` column."""

    updated_at: str = Field(default="", exclude=True)

    def to_row(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data.pop("updated_at", None)
        return data

    @classmethod
    def from_row(cls, row: Any) -> "LinkModel":
        d = {k: row[k] for k in row.keys()}
        d.pop("updated_at", None)
        return cls(**d)


class BaseRepository:
    """Generic CRUD repository backed by SQLite."""

    table: ClassVar[str] = ""
    model_class: ClassVar[type[LabModel]] = LabModel

    def __init__(self, db: DatabaseConnection) -> None:
        self.db = db

    def insert(self, model: LabModel) -> LabModel:
        """Insert a new record."""
        data = model.to_row()
        cols = ", ".join(data.keys())
        placeholders = ", ".join(f":{k}" for k in data.keys())
        self.db.execute(f"INSERT INTO {self.table} ({cols}) VALUES ({placeholders})", data)
        self.db.commit()
        return model

    def get(self, entity_id: str) -> LabModel:
        """Fetch a single record by ID."""
        row = self.db.fetchone(f"SELECT * FROM {self.table} WHERE id = ?", (entity_id,))
        if row is None:
            raise NotFoundError(f"{self.model_class.__name__} not found: {entity_id}")
        return self.model_class.from_row(row)

    def exists(self, entity_id: str) -> bool:
        row = self.db.fetchone(f"SELECT 1 FROM {self.table} WHERE id = ?", (entity_id,))
        return row is not None

    def list_all(self) -> list[LabModel]:
        """List all records, newest first."""
        rows = self.db.fetchall(f"SELECT * FROM {self.table} ORDER BY created_at DESC")
        return [self.model_class.from_row(r) for r in rows]

    def update(self, entity_id: str, **updates: Any) -> LabModel:
        """Update specific fields on a record."""
        updates["updated_at"] = now_iso()
        set_clause = ", ".join(f"{k} = :{k}" for k in updates.keys())
        updates["_id"] = entity_id
        cursor = self.db.execute(
            f"UPDATE {self.table} SET {set_clause} WHERE id = :_id",
            updates,
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"{self.model_class.__name__} not found: {entity_id}")
        self.db.commit()
        return self.get(entity_id)

    def count(self, where: str = "", params: tuple = ()) -> int:
        """Count records with optional WHERE clause."""
        sql = f"SELECT COUNT(*) as cnt FROM {self.table}"
        if where:
            sql += f" WHERE {where}"
        row = self.db.fetchone(sql, params)
        return row["cnt"] if row else 0


def placeholders(values: list[Any]) -> str:
    """Return ``?, ?, ?`` for an IN clause."""
    return ", ".join("?" for _ in values)
