"""Protocols for the chat platform the bot runs on.

The bot never talks to a gateway directly; an adapter implements these and
hands the bot ``Interaction`` objects for inbound commands, clicks and
modal submissions.
"""

from collections.abc import Iterable
from typing import Protocol

from train_log.display.components import Form, OutgoingMessage
from train_log.types import User


class MessageChannel(Protocol):
    """A channel the bot can post to and edit its own messages in."""

    async def send(self, message: OutgoingMessage) -> str:
        """Post a message and return its handle."""
        ...

    async def edit(self, handle: str, message: OutgoingMessage) -> None:
        """Replace a message's content.

        Raises:
            MessageNotFoundError: The message no longer exists.
        """
        ...

    async def delete(self, handle: str) -> None: ...


class Interaction(Protocol):
    """One inbound command, button click or form submission."""

    id: str
    user: User
    # Handle of the message a clicked component belongs to
    message_id: str | None

    async def defer(self, update: bool = False) -> None:
        """Acknowledge now and answer later through ``edit_reply``."""
        ...

    async def reply(self, message: OutgoingMessage) -> str:
        """Respond; after ``defer`` this sends a follow-up message instead."""
        ...

    async def edit_reply(self, message: OutgoingMessage) -> None:
        """Fill in a deferred response (the clicked message, if deferred with update)."""
        ...

    async def update(self, message: OutgoingMessage) -> None:
        """Replace the message the clicked component belongs to."""
        ...

    async def show_form(self, custom_id: str, form: Form) -> None: ...


class RoleChecker(Protocol):
    async def is_trusted(self, user: User) -> bool: ...


class UserDirectory(Protocol):
    async def search(self, query: str) -> list[User]: ...


class StaticRoleChecker:
    """Trusts a fixed set of user ids, or everyone when none is given."""

    def __init__(self, trusted_ids: Iterable[str] | None = None):
        self._trusted_ids = set(trusted_ids) if trusted_ids is not None else None

    async def is_trusted(self, user: User) -> bool:
        return self._trusted_ids is None or user.id in self._trusted_ids


class StaticUserDirectory:
    """Case-insensitive substring search over a known list of users."""

    def __init__(self, users: Iterable[User] = ()):
        self._users = list(users)

    async def search(self, query: str) -> list[User]:
        needle = query.lower()
        return [
            user
            for user in self._users
            if needle in user.name.lower()
            or (user.display_name is not None and needle in user.display_name.lower())
        ]
