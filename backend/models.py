from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

Priority = Literal["low", "medium", "high"]
Role = Literal["user", "assistant"]


def to_local_naive(value: datetime) -> datetime:
    """Aware datetimes are converted to local time; everything is stored naive."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value

LocalDatetime = Annotated[datetime, AfterValidator(to_local_naive)]


class Note(BaseModel):
    id: str
    title: str
    content: str = ""  # rich-text markup (HTML from the editor)
    created_at: LocalDatetime
    updated_at: LocalDatetime

class NoteCreate(BaseModel):
    title: str = "Untitled Note"
    content: str = ""

class NoteUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class TodoItem(BaseModel):
    id: str
    title: str
    completed: bool = False
    due_date: Optional[LocalDatetime] = None
    priority: Priority = "medium"
    created_at: LocalDatetime

class TodoCreate(BaseModel):
    title: str = Field(min_length=1)
    priority: Priority = "medium"
    due_date: Optional[LocalDatetime] = None

class TodoUpdate(BaseModel):
    title: Optional[str] = None
    completed: Optional[bool] = None
    priority: Optional[Priority] = None
    due_date: Optional[LocalDatetime] = None


class CalendarEvent(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    start: LocalDatetime
    end: LocalDatetime
    color: Optional[str] = None  # CSS color, e.g. "#22c55e"

class EventCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    start: LocalDatetime
    end: LocalDatetime
    color: Optional[str] = None

class EventUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start: Optional[LocalDatetime] = None
    end: Optional[LocalDatetime] = None
    color: Optional[str] = None


class ChatMessage(BaseModel):
    id: str
    role: Role
    content: str
    timestamp: LocalDatetime

class ChatRequest(BaseModel):
    message: str


class AgentContext(BaseModel):
    """Read-only snapshot of the user's data handed to the chat agent."""
    model_config = ConfigDict(frozen=True)

    notes: tuple[Note, ...] = ()
    todos: tuple[TodoItem, ...] = ()
    events: tuple[CalendarEvent, ...] = ()


# Agent actions: one model per tag, no optional payload fields
class CreateNoteAction(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["create_note"] = "create_note"
    title: str

class CreateTodoAction(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["create_todo"] = "create_todo"
    title: str
    priority: Priority = "medium"

class CreateEventAction(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["create_event"] = "create_event"
    title: str

class NoAction(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["none"] = "none"


AgentAction = Annotated[
    Union[CreateNoteAction, CreateTodoAction, CreateEventAction, NoAction],
    Field(discriminator="type"),
]


class ChatResponse(BaseModel):
    response: str
    action: AgentAction
    created: Optional[Union[Note, TodoItem, CalendarEvent]] = None
