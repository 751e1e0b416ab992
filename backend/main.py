from contextlib import asynccontextmanager
from datetime import date
from typing import Literal, Optional
import logging
import os

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

load_dotenv()

import database
from agent import apply_action, resolve
from database import Repositories
from models import (
    CalendarEvent,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    EventCreate,
    EventUpdate,
    Note,
    NoteCreate,
    NoteUpdate,
    TodoCreate,
    TodoItem,
    TodoUpdate,
)

logging.basicConfig(
    level=os.getenv("KIWII_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("KIWII_CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    database.init_db()
    yield
    # Shutdown (nothing to do)

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_repositories() -> Repositories:
    """Repositories bound to the configured database file."""
    return Repositories(database.DATABASE_PATH)


def _or_404(item, kind: str):
    if item is None:
        raise HTTPException(status_code=404, detail=f"{kind} not found")
    return item


# Notes

@app.get("/notes")
def list_notes(q: Optional[str] = None, repos: Repositories = Depends(get_repositories)) -> list[Note]:
    if q:
        return repos.notes.search(q)
    return repos.notes.list()


@app.post("/notes")
def create_note(note_data: NoteCreate, repos: Repositories = Depends(get_repositories)) -> Note:
    return repos.notes.create(note_data.title, note_data.content)


@app.get("/notes/{note_id}")
def get_note(note_id: str, repos: Repositories = Depends(get_repositories)) -> Note:
    return _or_404(repos.notes.get(note_id), "Note")


@app.patch("/notes/{note_id}")
def update_note(note_id: str, note_data: NoteUpdate, repos: Repositories = Depends(get_repositories)) -> Note:
    updates = note_data.model_dump(exclude_none=True)
    return _or_404(repos.notes.update(note_id, **updates), "Note")


@app.delete("/notes/{note_id}")
def delete_note(note_id: str, repos: Repositories = Depends(get_repositories)) -> dict:
    if not repos.notes.delete(note_id):
        raise HTTPException(status_code=404, detail="Note not found")
    return {"status": "deleted"}


# Todos

@app.get("/todos")
def list_todos(
    status: Literal["all", "active", "completed"] = "all",
    repos: Repositories = Depends(get_repositories)
) -> list[TodoItem]:
    return repos.todos.list(status)


@app.post("/todos")
def create_todo(todo_data: TodoCreate, repos: Repositories = Depends(get_repositories)) -> TodoItem:
    return repos.todos.create(todo_data.title.strip(), todo_data.priority, todo_data.due_date)


@app.patch("/todos/{todo_id}")
def update_todo(todo_id: str, todo_data: TodoUpdate, repos: Repositories = Depends(get_repositories)) -> TodoItem:
    updates = todo_data.model_dump(exclude_none=True)
    return _or_404(repos.todos.update(todo_id, **updates), "Todo")


@app.post("/todos/{todo_id}/toggle")
def toggle_todo(todo_id: str, repos: Repositories = Depends(get_repositories)) -> TodoItem:
    return _or_404(repos.todos.toggle(todo_id), "Todo")


@app.delete("/todos/{todo_id}")
def delete_todo(todo_id: str, repos: Repositories = Depends(get_repositories)) -> dict:
    if not repos.todos.delete(todo_id):
        raise HTTPException(status_code=404, detail="Todo not found")
    return {"status": "deleted"}


# Calendar events

@app.get("/events")
def list_events(
    day: Optional[date] = Query(None, alias="date"),
    repos: Repositories = Depends(get_repositories)
) -> list[CalendarEvent]:
    """All events ordered by start, or only those overlapping `day`."""
    if day is not None:
        return repos.events.for_date(day)
    return repos.events.list()


@app.post("/events")
def create_event(event_data: EventCreate, repos: Repositories = Depends(get_repositories)) -> CalendarEvent:
    try:
        return repos.events.create(
            event_data.title,
            event_data.start,
            event_data.end,
            description=event_data.description,
            color=event_data.color,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.patch("/events/{event_id}")
def update_event(event_id: str, event_data: EventUpdate, repos: Repositories = Depends(get_repositories)) -> CalendarEvent:
    updates = event_data.model_dump(exclude_none=True)
    try:
        event = repos.events.update(event_id, **updates)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _or_404(event, "Event")


@app.delete("/events/{event_id}")
def delete_event(event_id: str, repos: Repositories = Depends(get_repositories)) -> dict:
    if not repos.events.delete(event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    return {"status": "deleted"}


# Chat

@app.get("/chat/messages")
def get_chat_messages(repos: Repositories = Depends(get_repositories)) -> list[ChatMessage]:
    """Get saved chat history."""
    return repos.chat.list()


@app.delete("/chat/messages")
def clear_chat_messages(repos: Repositories = Depends(get_repositories)) -> dict:
    removed = repos.chat.clear()
    return {"status": "cleared", "removed": removed}


@app.post("/chat")
def chat(chat_request: ChatRequest, repos: Repositories = Depends(get_repositories)) -> ChatResponse:
    """Resolve a chat message against the current data and apply the resulting action."""
    message = chat_request.message
    if not message.strip():
        raise HTTPException(status_code=422, detail="Message must not be empty")

    repos.chat.add("user", message)

    response, action = resolve(message, repos.context())
    logger.info("Chat intent resolved to %s", action.type)

    created = apply_action(action, repos)

    repos.chat.add("assistant", response)
    return ChatResponse(response=response, action=action, created=created)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
