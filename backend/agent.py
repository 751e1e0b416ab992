"""
Rule-based chat agent.

`resolve` maps a chat message onto a reply and an action using a fixed,
ordered list of phrase checks. The first matching check wins. It reads the
context snapshot only and never writes anything; `apply_action` is the
caller's half that turns the returned action into a store write.
"""
import re
from datetime import datetime, timedelta
from typing import Optional

from models import (
    AgentAction,
    AgentContext,
    CreateEventAction,
    CreateNoteAction,
    CreateTodoAction,
    NoAction,
    to_local_naive,
)

DEFAULT_NOTE_TITLE = "New Note from Chat"
DEFAULT_TODO_TITLE = "New Task"
DEFAULT_EVENT_TITLE = "New Event"
DEFAULT_PRIORITY = "medium"
MAX_UPCOMING_EVENTS = 5
MAX_TOP_PRIORITY_TASKS = 3

# Triggers
NOTE_CREATE_RE = re.compile(
    r"\b(?:create|new|add)\b.*\bnote|create note|new note|add note",
    re.IGNORECASE,
)
TODO_CREATE_RE = re.compile(
    r"\b(?:create|new|add)\b.*\b(?:todo|task)|create todo|new task|add task|remind me to",
    re.IGNORECASE,
)
EVENT_CREATE_PHRASES = ("create event", "schedule", "add to calendar")
NOTE_SEARCH_PHRASES = ("find note", "search note")
TODO_LIST_PHRASES = ("show todos", "show my todos", "list tasks", "what are my tasks")
UPCOMING_PHRASES = ("upcoming events", "what's on my calendar", "my schedule")
SUMMARY_PHRASES = ("summary", "overview")

# Extraction
NOTE_TITLE_RE = re.compile(r'(?:called|titled|named)\s+"([^"]+)"', re.IGNORECASE)
TODO_TITLE_RE = re.compile(r"(?:to|task:?)\s+(.+?)(?:\s+(?:with|by|on)|$)", re.IGNORECASE)
PRIORITY_RE = re.compile(r"\b(high|medium|low)\s+priority\b", re.IGNORECASE)
EVENT_QUOTED_TITLE_RE = re.compile(r'(?:called|named|titled)\s+"([^"]+)"', re.IGNORECASE)
EVENT_TITLE_RE = re.compile(
    r'(?:event|schedule|meeting)(?:\s+(?:event|meeting))*\s+(?:(?:called|named)\s+)?"?([^"]+)"?',
    re.IGNORECASE,
)
SEARCH_TERM_RE = re.compile(r'(?:find|search)\s+note\s+(?:about|for|with)?\s*"?([^"]+)"?', re.IGNORECASE)

HELP_TEXT = """I'm your KiwiiLove productivity assistant! I can help you with:

- Creating and searching notes
- Managing your to-do list
- Scheduling calendar events
- Getting summaries and overviews

Try asking me to:
- "Create a note called 'Meeting Notes'"
- "Add a task to buy groceries"
- "Show my todos"
- "What's on my calendar?"
- "Give me a summary"

What would you like help with?"""


def _contains_any(text: str, phrases) -> bool:
    return any(phrase in text for phrase in phrases)


def _format_date(value: datetime) -> str:
    """Short month/day/year date, e.g. 10/20/2026."""
    return f"{value.month}/{value.day}/{value.year}"


def _create_note(message: str) -> tuple[str, AgentAction]:
    match = NOTE_TITLE_RE.search(message)
    title = match.group(1) if match else DEFAULT_NOTE_TITLE
    return (
        f'I\'ll create a new note titled "{title}" for you!',
        CreateNoteAction(title=title),
    )


def _create_todo(message: str) -> tuple[str, AgentAction]:
    # With several trailing markers the earliest one ends the title
    match = TODO_TITLE_RE.search(message)
    title = match.group(1).strip() if match else DEFAULT_TODO_TITLE
    priority_match = PRIORITY_RE.search(message)
    priority = priority_match.group(1).lower() if priority_match else DEFAULT_PRIORITY
    return (
        f'I\'ll create a {priority} priority task: "{title}"',
        CreateTodoAction(title=title, priority=priority),
    )


def _create_event(message: str) -> tuple[str, AgentAction]:
    match = EVENT_QUOTED_TITLE_RE.search(message) or EVENT_TITLE_RE.search(message)
    title = match.group(1).strip() if match else ""
    title = title or DEFAULT_EVENT_TITLE
    return (
        f'I\'ll help you create an event titled "{title}". '
        "Please use the calendar to set the exact time!",
        CreateEventAction(title=title),
    )


def _search_notes(message: str, context: AgentContext) -> tuple[str, AgentAction]:
    match = SEARCH_TERM_RE.search(message)
    term = match.group(1).strip() if match else ""
    needle = term.lower()
    found = [
        note for note in context.notes
        if needle in note.title.lower() or needle in note.content.lower()
    ]
    if found:
        lines = "\n".join(f"- {note.title}" for note in found)
        return f'I found {len(found)} note(s) matching "{term}":\n\n{lines}', NoAction()
    return (
        f'I couldn\'t find any notes matching "{term}". Would you like to create a new one?',
        NoAction(),
    )


def _list_todos(context: AgentContext) -> tuple[str, AgentAction]:
    active = [todo for todo in context.todos if not todo.completed]
    if not active:
        return "You don't have any active tasks. Great job staying on top of things!", NoAction()
    lines = "\n".join(f"- [{todo.priority}] {todo.title}" for todo in active)
    return f"You have {len(active)} active task(s):\n\n{lines}", NoAction()


def _upcoming_events(context: AgentContext, now: datetime) -> tuple[str, AgentAction]:
    upcoming = sorted(
        (event for event in context.events if event.start > now),
        key=lambda event: event.start,
    )[:MAX_UPCOMING_EVENTS]
    if not upcoming:
        return "You don't have any upcoming events scheduled.", NoAction()
    lines = "\n".join(f"- {event.title} ({_format_date(event.start)})" for event in upcoming)
    return f"Here are your upcoming events:\n\n{lines}", NoAction()


def _summary(context: AgentContext, now: datetime) -> tuple[str, AgentAction]:
    active = [todo for todo in context.todos if not todo.completed]
    completed = len(context.todos) - len(active)
    upcoming = [event for event in context.events if event.start > now]

    summary = "\n".join([
        "Here's your productivity overview:",
        "",
        f"📝 Notes: {len(context.notes)} total",
        f"✅ Tasks: {len(active)} active, {completed} completed",
        f"📅 Events: {len(upcoming)} upcoming",
    ])
    if not active:
        return summary, NoAction()
    top = [todo for todo in active if todo.priority == "high"][:MAX_TOP_PRIORITY_TASKS]
    top_lines = "\n".join(f"- {todo.title}" for todo in top)
    # Two blank lines before the priority block
    return f"{summary}\n\n\nYour top priority tasks:\n{top_lines}", NoAction()


def resolve(
    message: str,
    context: AgentContext,
    now: Optional[datetime] = None
) -> tuple[str, AgentAction]:
    """
    Classify a chat message and build the reply.

    Checks run in a fixed order and the first hit wins, so a message that
    says both "create note" and "schedule" creates a note.
    `now` is only used to decide which events are upcoming.
    Never raises: unmatched input gets the help text.
    """
    lower = message.lower()
    now = to_local_naive(now) if now is not None else datetime.now()

    if NOTE_CREATE_RE.search(message):
        return _create_note(message)

    if TODO_CREATE_RE.search(message):
        return _create_todo(message)

    if _contains_any(lower, EVENT_CREATE_PHRASES):
        return _create_event(message)

    if _contains_any(lower, NOTE_SEARCH_PHRASES):
        return _search_notes(message, context)

    if _contains_any(lower, TODO_LIST_PHRASES):
        return _list_todos(context)

    if _contains_any(lower, UPCOMING_PHRASES):
        return _upcoming_events(context, now)

    if _contains_any(lower, SUMMARY_PHRASES):
        return _summary(context, now)

    return HELP_TEXT, NoAction()


def next_event_slot(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Default slot for chat-created events: tomorrow 09:00-10:00 local time."""
    now = now or datetime.now()
    start = (now + timedelta(days=1)).replace(hour=9, minute=0, second=0, microsecond=0)
    return start, start.replace(hour=10)


def apply_action(action: AgentAction, repos, now: Optional[datetime] = None):
    """
    Materialize an agent action against the repositories.
    Returns the created note/todo/event, or None for a no-op action.
    """
    if isinstance(action, CreateNoteAction):
        return repos.notes.create(action.title, content="")
    if isinstance(action, CreateTodoAction):
        return repos.todos.create(action.title, priority=action.priority)
    if isinstance(action, CreateEventAction):
        start, end = next_event_slot(now)
        return repos.events.create(action.title, start, end)
    return None
