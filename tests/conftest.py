"""Pytest configuration and fixtures."""

import os
from datetime import datetime

import pytest
import pytest_asyncio

# Set test environment variables before importing settings
for key in (
    "GOOGLE_AI_API_KEY",
    "GROQ_API_KEY",
    "OPENROUTER_API_KEY",
    "NVIDIA_NIM_API_KEY",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "CONTRIBUTOR_GUILD_ID",
    "CONTRIBUTOR_ROLE_ID",
):
    os.environ.pop(key, None)
os.environ.setdefault("DATABASE_URL", "sqlite://")

from train_log.display.components import Form, OutgoingMessage  # noqa: E402
from train_log.display.surface import StaticRoleChecker  # noqa: E402
from train_log.exceptions import MessageNotFoundError  # noqa: E402
from train_log.storage import LogStore, create_session_factory  # noqa: E402
from train_log.types import User  # noqa: E402

FIXED_NOW = datetime(2025, 6, 2, 12, 0)

ALICE = User(id="100", name="alice", display_name="Alice")
BOB = User(id="101", name="bob", display_name="Bob")
CAROL = User(id="200", name="carol", display_name="Carol")


class FakeChannel:
    """In-memory message channel that hands out sequential handles."""

    def __init__(self, prefix: str = "msg"):
        self._prefix = prefix
        self._counter = 0
        self.messages: dict[str, OutgoingMessage] = {}
        self.sent: list[OutgoingMessage] = []
        self.edits: list[tuple[str, OutgoingMessage]] = []
        self.deleted: list[str] = []

    async def send(self, message: OutgoingMessage) -> str:
        self._counter += 1
        handle = f"{self._prefix}-{self._counter}"
        self.messages[handle] = message
        self.sent.append(message)
        return handle

    async def edit(self, handle: str, message: OutgoingMessage) -> None:
        if handle not in self.messages:
            raise MessageNotFoundError(f"Message {handle} not found")
        self.messages[handle] = message
        self.edits.append((handle, message))

    async def delete(self, handle: str) -> None:
        if handle not in self.messages:
            raise MessageNotFoundError(f"Message {handle} not found")
        del self.messages[handle]
        self.deleted.append(handle)

    def vanish(self, handle: str) -> None:
        """Simulate someone deleting a message behind the bot's back."""
        del self.messages[handle]


class FakeInteraction:
    """Records everything the bot does with an interaction."""

    def __init__(self, user: User, id: str = "req-1", message_id: str | None = None):
        self.id = id
        self.user = user
        self.message_id = message_id
        self.deferred: list[bool] = []
        self.replies: list[OutgoingMessage] = []
        self.edited_replies: list[OutgoingMessage] = []
        self.updates: list[OutgoingMessage] = []
        self.forms: list[tuple[str, Form]] = []

    async def defer(self, update: bool = False) -> None:
        self.deferred.append(update)

    async def reply(self, message: OutgoingMessage) -> str:
        self.replies.append(message)
        return f"reply-{len(self.replies)}"

    async def edit_reply(self, message: OutgoingMessage) -> None:
        self.edited_replies.append(message)

    async def update(self, message: OutgoingMessage) -> None:
        self.updates.append(message)

    async def show_form(self, custom_id: str, form: Form) -> None:
        self.forms.append((custom_id, form))

    @property
    def last_response(self) -> OutgoingMessage:
        """Whatever the user would currently see in response."""
        for responses in (self.edited_replies, self.updates, self.replies):
            if responses:
                return responses[-1]
        raise AssertionError("interaction was never answered")


@pytest.fixture
def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    return create_session_factory("sqlite://")


@pytest.fixture
def clock():
    """A clock fixed at midday on an operating day."""
    return lambda: FIXED_NOW


@pytest_asyncio.fixture
async def store(session_factory, clock):
    """A log store with today's period loaded."""
    log_store = LogStore(session_factory, new_day_hour=3, clock=clock)
    await log_store.load_current_period()
    return log_store


@pytest.fixture
def roles():
    """Only Carol is a contributor."""
    return StaticRoleChecker({CAROL.id})


@pytest.fixture
def log_channel():
    return FakeChannel("log")


@pytest.fixture
def approval_channel():
    return FakeChannel("approval")


@pytest.fixture
def feed_channel():
    return FakeChannel("feed")


@pytest.fixture
def channel_factory():
    """Build extra fake channels with their own handle prefix."""
    return FakeChannel


@pytest.fixture
def interaction_factory():
    """Build fake interactions: ``interaction_factory(user, id=..., message_id=...)``."""
    return FakeInteraction


@pytest.fixture
def alice():
    """A regular user."""
    return ALICE


@pytest.fixture
def bob():
    """Another regular user."""
    return BOB


@pytest.fixture
def carol():
    """A contributor."""
    return CAROL
