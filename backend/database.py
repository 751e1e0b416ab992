from __future__ import annotations

import logging
import os
import sqlite3
import subprocess
import uuid
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from typing import Optional

from models import AgentContext, CalendarEvent, ChatMessage, Note, TodoItem

logger = logging.getLogger(__name__)

DATABASE_PATH = os.getenv("KIWII_DATABASE_PATH", "kiwii.db")

PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


def init_db():
    """Initialize database by running Alembic migrations."""
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    env = dict(os.environ, KIWII_DATABASE_PATH=os.path.abspath(DATABASE_PATH))
    subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=backend_dir,
        env=env,
        check=True
    )


def _now(previous: Optional[datetime] = None) -> datetime:
    """Current local time, never earlier than `previous`."""
    now = datetime.now()
    if previous is not None and previous > now:
        return previous
    return now


def _to_db(value):
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SqliteRepository:
    """Base class: one short-lived connection per operation on a single table."""

    table = ""
    # Columns that `update` is allowed to touch
    mutable: tuple[str, ...] = ()

    def __init__(self, db_path: str):
        self.db_path = db_path

    @contextmanager
    def connect(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _to_model(self, row):
        raise NotImplementedError

    def _insert(self, values: dict):
        columns = ", ".join(f'"{column}"' for column in values)
        placeholders = ", ".join("?" for _ in values)
        with self.connect() as conn:
            conn.execute(
                f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})",
                [_to_db(v) for v in values.values()]
            )
            conn.commit()

    def get(self, item_id: str):
        with self.connect() as conn:
            row = conn.execute(f"SELECT * FROM {self.table} WHERE id = ?", (item_id,)).fetchone()
            return self._to_model(row) if row else None

    def delete(self, item_id: str) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (item_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted %s row %s", self.table, item_id)
        return deleted

    def _changed_fields(self, row, updates: dict) -> dict:
        """Keep only mutable fields whose value differs from the stored one."""
        changes = {}
        for field, new_value in updates.items():
            if field not in self.mutable:
                continue
            new_value = _to_db(new_value)
            if new_value != row[field]:
                changes[field] = new_value
        return changes

    def _apply(self, conn, item_id: str, changes: dict):
        set_clause = ", ".join(f'"{field}" = ?' for field in changes)
        conn.execute(
            f"UPDATE {self.table} SET {set_clause} WHERE id = ?",
            list(changes.values()) + [item_id]
        )
        conn.commit()

    def update(self, item_id: str, **updates):
        """
        Update an item with any fields provided.
        Only writes fields that differ from current values.
        Returns the updated item, or None if it does not exist.
        """
        with self.connect() as conn:
            row = conn.execute(f"SELECT * FROM {self.table} WHERE id = ?", (item_id,)).fetchone()
            if not row:
                return None
            changes = self._changed_fields(row, updates)
            if changes:
                self._apply(conn, item_id, changes)
            updated_row = conn.execute(f"SELECT * FROM {self.table} WHERE id = ?", (item_id,)).fetchone()
            return self._to_model(updated_row)


class NoteRepository(SqliteRepository):
    table = "notes"
    mutable = ("title", "content")

    def _to_model(self, row) -> Note:
        return Note(
            id=row["id"],
            title=row["title"],
            content=row["content"] or "",
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create(self, title: str, content: str = "") -> Note:
        now = _now()
        note = Note(id=str(uuid.uuid4()), title=title, content=content, created_at=now, updated_at=now)
        self._insert(note.model_dump())
        logger.info("Created note %s", note.id)
        return note

    def list(self) -> list[Note]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM notes ORDER BY rowid").fetchall()
            return [self._to_model(row) for row in rows]

    def update(self, item_id: str, **updates) -> Optional[Note]:
        """Update title/content; updated_at moves forward whenever something changed."""
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM notes WHERE id = ?", (item_id,)).fetchone()
            if not row:
                return None
            changes = self._changed_fields(row, updates)
            if changes:
                previous = datetime.fromisoformat(row["updated_at"])
                changes["updated_at"] = _now(previous).isoformat()
                self._apply(conn, item_id, changes)
            updated_row = conn.execute("SELECT * FROM notes WHERE id = ?", (item_id,)).fetchone()
            return self._to_model(updated_row)

    def search(self, query: str) -> list[Note]:
        """Case-insensitive substring match on title or content."""
        needle = query.lower()
        return [
            note for note in self.list()
            if needle in note.title.lower() or needle in note.content.lower()
        ]


class TodoRepository(SqliteRepository):
    table = "todos"
    mutable = ("title", "completed", "priority", "due_date")

    def _to_model(self, row) -> TodoItem:
        return TodoItem(
            id=row["id"],
            title=row["title"],
            completed=bool(row["completed"]),
            due_date=row["due_date"],
            priority=row["priority"],
            created_at=row["created_at"],
        )

    def create(self, title: str, priority: str = "medium", due_date: Optional[datetime] = None) -> TodoItem:
        todo = TodoItem(
            id=str(uuid.uuid4()),
            title=title,
            completed=False,
            due_date=due_date,
            priority=priority,
            created_at=_now(),
        )
        self._insert(todo.model_dump())
        logger.info("Created todo %s (%s)", todo.id, todo.priority)
        return todo

    def list(self, status: str = "all") -> list[TodoItem]:
        """
        List todos filtered by status ("all", "active" or "completed").
        Active todos come first, then by priority high > medium > low;
        ties keep insertion order.
        """
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM todos ORDER BY rowid").fetchall()
        todos = [self._to_model(row) for row in rows]
        if status == "active":
            todos = [t for t in todos if not t.completed]
        elif status == "completed":
            todos = [t for t in todos if t.completed]
        return sorted(todos, key=lambda t: (t.completed, -PRIORITY_ORDER[t.priority]))

    def toggle(self, item_id: str) -> Optional[TodoItem]:
        todo = self.get(item_id)
        if todo is None:
            return None
        return self.update(item_id, completed=not todo.completed)


class EventRepository(SqliteRepository):
    table = "events"
    mutable = ("title", "description", "start", "end", "color")

    def _to_model(self, row) -> CalendarEvent:
        return CalendarEvent(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            start=row["start"],
            end=row["end"],
            color=row["color"],
        )

    def create(
        self,
        title: str,
        start: datetime,
        end: datetime,
        description: Optional[str] = None,
        color: Optional[str] = None
    ) -> CalendarEvent:
        if end < start:
            raise ValueError("Event end must not be before its start")
        event = CalendarEvent(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            start=start,
            end=end,
            color=color,
        )
        self._insert(event.model_dump())
        logger.info("Created event %s at %s", event.id, event.start.isoformat())
        return event

    def update(self, item_id: str, **updates) -> Optional[CalendarEvent]:
        current = self.get(item_id)
        if current is None:
            return None
        start = updates.get("start") or current.start
        end = updates.get("end") or current.end
        if end < start:
            raise ValueError("Event end must not be before its start")
        return super().update(item_id, **updates)

    def list(self) -> list[CalendarEvent]:
        with self.connect() as conn:
            rows = conn.execute('SELECT * FROM events ORDER BY "start", rowid').fetchall()
            return [self._to_model(row) for row in rows]

    def for_date(self, day: date) -> list[CalendarEvent]:
        """Events overlapping the given calendar day."""
        start_of_day = datetime.combine(day, time.min)
        end_of_day = start_of_day + timedelta(days=1)
        return [
            event for event in self.list()
            if event.start < end_of_day and event.end >= start_of_day
        ]


class ChatRepository(SqliteRepository):
    table = "chat_messages"

    def _to_model(self, row) -> ChatMessage:
        return ChatMessage(
            id=row["id"],
            role=row["role"],
            content=row["content"],
            timestamp=row["timestamp"],
        )

    def add(self, role: str, content: str) -> ChatMessage:
        message = ChatMessage(id=str(uuid.uuid4()), role=role, content=content, timestamp=_now())
        self._insert(message.model_dump())
        return message

    def list(self) -> list[ChatMessage]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM chat_messages ORDER BY rowid").fetchall()
            return [self._to_model(row) for row in rows]

    def clear(self) -> int:
        with self.connect() as conn:
            cursor = conn.execute("DELETE FROM chat_messages")
            conn.commit()
            return cursor.rowcount


class Repositories:
    """All stores bound to one database file."""

    def __init__(self, db_path: str):
        self.notes = NoteRepository(db_path)
        self.todos = TodoRepository(db_path)
        self.events = EventRepository(db_path)
        self.chat = ChatRepository(db_path)

    def context(self) -> AgentContext:
        """Snapshot of notes, todos and events for the chat agent."""
        return AgentContext(
            notes=tuple(self.notes.list()),
            todos=tuple(self.todos.list()),
            events=tuple(self.events.list()),
        )
