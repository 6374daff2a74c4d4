"""Keeps the public log messages in step with the store.

The log is shown either as one message holding all three sections or, once
that would pass the character limit, as one message per section. A section
that is still too long on its own is attached as a text file.
"""

import asyncio
from collections.abc import Callable
from datetime import date

import structlog

from train_log.display.components import Attachment, OutgoingMessage
from train_log.display.surface import MessageChannel
from train_log.exceptions import MessageNotFoundError
from train_log.normalization import categorize, strip_markup
from train_log.storage.log_store import LogStore
from train_log.transactions import format_allocation_line
from train_log.types import Category, DailyLog

logger = structlog.get_logger(__name__)

CATEGORY_ORDER = (Category.GREEN, Category.YELLOW, Category.OTHER)

CATEGORY_HEADERS = {
    Category.GREEN: "### Green line",
    Category.YELLOW: "### Yellow line",
    Category.OTHER: "### Other workings",
}

CATEGORY_DISPLAY_NAMES = {
    Category.GREEN: "green line trains",
    Category.YELLOW: "yellow line trains",
    Category.OTHER: "other trains",
}


def partition_log(log: DailyLog) -> dict[Category, list[str]]:
    """Split a log into the TRNs of each section, sorted."""
    groups: dict[Category, list[str]] = {category: [] for category in CATEGORY_ORDER}
    for service_id in sorted(log):
        groups[categorize(service_id)].append(service_id)
    return groups


def render_section(category: Category, log: DailyLog, service_ids: list[str]) -> str:
    header = CATEGORY_HEADERS[category]
    if not service_ids:
        return f"{header}\n*No {CATEGORY_DISPLAY_NAMES[category]} have been logged yet today.*"
    lines = "\n".join(format_allocation_line(trn, log[trn]) for trn in service_ids)
    return f"{header}\n{lines}"


class LogRenderer:
    """Renders the daily log into the log channel."""

    def __init__(
        self,
        channel: MessageChannel,
        store: LogStore,
        character_limit: int = 2000,
        resolve_user: Callable[[str], str | None] | None = None,
    ):
        self._channel = channel
        self._store = store
        self._character_limit = character_limit
        self._resolve_user = resolve_user
        self._handles: list[str] = []
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="log_renderer")

    @property
    def handles(self) -> list[str]:
        return list(self._handles)

    @property
    def is_split(self) -> bool:
        return len(self._handles) == len(CATEGORY_ORDER)

    async def resume(self, handles: list[str]) -> None:
        """Pick up the messages a previous run left for today."""
        if len(handles) in (0, 1, len(CATEGORY_ORDER)):
            self._handles = list(handles)
            return
        self._logger.warning("unexpected_display_message_count", count=len(handles))
        self._handles = handles[:1]
        for handle in handles[1:]:
            await self._store.forget_display_message(handle)

    def reset(self) -> None:
        """Forget the current messages so the next refresh posts new ones."""
        self._handles = []

    async def refresh(self, log: DailyLog) -> None:
        async with self._lock:
            groups = partition_log(log)
            sections = {
                category: render_section(category, log, groups[category])
                for category in CATEGORY_ORDER
            }
            single = "\n".join(sections[category] for category in CATEGORY_ORDER)
            if len(single) <= self._character_limit:
                await self._show_single(OutgoingMessage(content=single))
            else:
                await self._show_split(
                    [self._section_message(category, sections[category]) for category in CATEGORY_ORDER]
                )

    def _section_message(self, category: Category, content: str) -> OutgoingMessage:
        if len(content) <= self._character_limit:
            return OutgoingMessage(content=content)
        period = self._store.period_date or date.today()
        notice = (
            f"{CATEGORY_HEADERS[category]}\nToo many {CATEGORY_DISPLAY_NAMES[category]} "
            "have been logged today to fit in a single message, so they have been attached as a file."
        )
        return OutgoingMessage(
            content=notice,
            attachments=[
                Attachment(
                    name=f"Log - {period.isoformat()} - {category.value}.txt",
                    content=strip_markup(content, self._resolve_user).encode("utf-8"),
                )
            ],
        )

    async def _show_single(self, message: OutgoingMessage) -> None:
        if not self._handles:
            self._handles = [await self._send(message, 0)]
            return
        first, *extras = self._handles
        self._handles = [await self._edit_or_send(first, message, 0)]
        for handle in extras:
            try:
                await self._channel.delete(handle)
            except MessageNotFoundError:
                pass
            await self._store.forget_display_message(handle)
        if extras:
            self._logger.info("log_display_merged")

    async def _show_split(self, messages: list[OutgoingMessage]) -> None:
        handles: list[str] = []
        for position, message in enumerate(messages):
            if position < len(self._handles):
                handles.append(await self._edit_or_send(self._handles[position], message, position))
            else:
                handles.append(await self._send(message, position))
        if len(self._handles) == 1:
            self._logger.info("log_display_split")
        self._handles = handles

    async def _send(self, message: OutgoingMessage, position: int) -> str:
        handle = await self._channel.send(message)
        await self._store.record_display_message(handle, position)
        return handle

    async def _edit_or_send(self, handle: str, message: OutgoingMessage, position: int) -> str:
        try:
            await self._channel.edit(handle, message)
            return handle
        except MessageNotFoundError:
            self._logger.warning("log_message_missing", handle=handle, position=position)
            await self._store.forget_display_message(handle)
            return await self._send(message, position)
