"""The train log bot: inbound commands, clicks and forms.

``TrainLogBot`` is platform-neutral. A gateway adapter turns slash commands,
context menu actions, button clicks, modal submissions and autocomplete
requests into calls on it, passing an ``Interaction`` to answer through.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar
from zoneinfo import ZoneInfo

import structlog

from train_log.config import FlatSettings, request_logger
from train_log.display.components import Embed, EmbedField, OutgoingMessage
from train_log.display.renderer import LogRenderer
from train_log.display.surface import Interaction, MessageChannel, RoleChecker, UserDirectory
from train_log.events import AuditAction, AuditEvent, AuditFeed
from train_log.exceptions import ExpiredStateError, TrainLogError, ValidationError
from train_log.nlp import FallbackState, NlpOrchestrator, UnitStatusDirectory, build_model_tiers
from train_log.normalization import normalize_service_id, normalize_unit_set_display
from train_log.scheduler import RolloverScheduler
from train_log.storage import LogStore, create_session_factory
from train_log.transactions import details_to_string, sorted_allocations
from train_log.types import AddTransaction, AllocationDetails, RemoveTransaction, Submission
from train_log.workflow import IndexChoice, SubmissionWorkflow

logger = structlog.get_logger(__name__)

MAX_AUTOCOMPLETE_RESULTS = 25
GENERIC_ERROR = "❌ Something went wrong while handling that. Please try again later."

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, None]])


def error_message(error: TrainLogError) -> OutgoingMessage:
    return OutgoingMessage(content=f"❌ {error.message}", ephemeral=True)


def answers_errors(handler: F) -> F:
    """Reply with a short error message when a handler raises."""

    @functools.wraps(handler)
    async def wrapper(self: "TrainLogBot", interaction: Interaction, *args: Any, **kwargs: Any) -> None:
        log = request_logger(__name__, interaction.id, handler=handler.__name__)
        try:
            await handler(self, interaction, *args, **kwargs)
        except TrainLogError as e:
            log.info("request_rejected", error_type=type(e).__name__, error=e.message)
            await interaction.reply(error_message(e))
        except Exception:
            log.exception("request_failed")
            await interaction.reply(OutgoingMessage(content=GENERIC_ERROR, ephemeral=True))

    return wrapper  # type: ignore[return-value]


class TrainLogBot:
    """Handles everything users do with the bot."""

    def __init__(
        self,
        store: LogStore,
        workflow: SubmissionWorkflow,
        renderer: LogRenderer,
        feed: AuditFeed | None = None,
        orchestrator: NlpOrchestrator | None = None,
        wiki: UnitStatusDirectory | None = None,
        scheduler: RolloverScheduler | None = None,
        max_search_results: int = 10,
    ):
        self._store = store
        self._workflow = workflow
        self._renderer = renderer
        self._feed = feed or AuditFeed()
        self._orchestrator = orchestrator
        self._wiki = wiki
        self._scheduler = scheduler
        self._max_search_results = max_search_results
        self._logger = logger.bind(component="bot")

    @classmethod
    def from_settings(
        cls,
        settings: FlatSettings,
        log_channel: MessageChannel,
        roles: RoleChecker,
        approval_channel: MessageChannel | None = None,
        feed_channel: MessageChannel | None = None,
        directory: UserDirectory | None = None,
        resolve_user: Callable[[str], str | None] | None = None,
    ) -> "TrainLogBot":
        """Wire up every component from settings and the adapter's channels.

        ``resolve_user`` maps a user id to a display tag for plain-text log
        attachments; without it mentions are left as they are.
        """
        tz = ZoneInfo(settings.timezone) if settings.timezone else None
        store = LogStore(
            create_session_factory(settings.database_url),
            new_day_hour=settings.new_day_hour,
            tz=tz,
        )
        renderer = LogRenderer(
            log_channel,
            store,
            character_limit=settings.character_limit,
            resolve_user=resolve_user,
        )
        feed = AuditFeed(feed_channel, character_limit=settings.character_limit)
        workflow = SubmissionWorkflow(
            store, roles, renderer=renderer, feed=feed, approval_channel=approval_channel
        )
        wiki = UnitStatusDirectory(settings.wiki_api_url, timeout=settings.wiki_timeout)
        orchestrator = NlpOrchestrator(
            build_model_tiers(settings),
            workflow,
            store,
            directory=directory,
            wiki=wiki,
            fallback=FallbackState(),
        )
        scheduler = RolloverScheduler(new_day_hour=settings.new_day_hour, tz=tz)
        return cls(
            store,
            workflow,
            renderer,
            feed=feed,
            orchestrator=orchestrator,
            wiki=wiki,
            scheduler=scheduler,
            max_search_results=settings.max_search_results,
        )

    # --- Lifecycle ---

    async def start(self) -> None:
        """Load today's log, bring the display up to date and start the rollover timer."""
        handles = await self._store.load_current_period()
        await self._renderer.resume(handles)
        await self._renderer.refresh(self._store.snapshot())
        if self._wiki is not None:
            await self._wiki.refresh()
        if self._scheduler is not None:
            self._scheduler.register_handler(self.start_new_day)
            self._scheduler.start()
        self._logger.info("bot_started", resumed_messages=len(handles))

    async def start_new_day(self) -> None:
        """Drop everything in flight and start the next operating day's log."""
        self._workflow.clear()
        if self._orchestrator is not None:
            self._orchestrator.reset()
        self._renderer.reset()
        handles = await self._store.load_current_period()
        await self._renderer.resume(handles)
        await self._renderer.refresh(self._store.snapshot())
        if self._wiki is not None:
            await self._wiki.refresh()
        period = self._store.period_date
        await self._feed.publish(
            AuditEvent(
                AuditAction.DAY_STARTED,
                description=period.isoformat() if period else "",
            )
        )

    # --- Helpers ---

    async def _run_deferred(
        self,
        interaction: Interaction,
        work: Awaitable[OutgoingMessage],
        update: bool = False,
    ) -> None:
        """Acknowledge now, do the slow work, then fill in the reply."""
        log = request_logger(__name__, interaction.id)
        defer = asyncio.ensure_future(interaction.defer(update=update))
        failed = True
        try:
            result = await work
            failed = False
        except TrainLogError as e:
            log.info("request_rejected", error_type=type(e).__name__, error=e.message)
            result = error_message(e)
        except Exception:
            log.exception("request_failed")
            result = OutgoingMessage(content=GENERIC_ERROR, ephemeral=True)
        try:
            await defer
        except Exception as e:
            log.error("defer_failed", error=str(e))
        if failed and update:
            # Leave the clicked message as it was
            await interaction.reply(result)
        else:
            await interaction.edit_reply(result)

    async def _submit_held(
        self, held_id: str, submission: Submission, held: Submission | None = None
    ) -> OutgoingMessage:
        """Submit something taken from the held table, putting ``held`` back on failure.

        ``held`` defaults to ``submission``; an index choice passes the
        original entry so any of the choices can be picked again.
        """
        try:
            return await self._workflow.submit(submission)
        except TrainLogError:
            self._workflow.replace_held(held_id, held or submission)
            raise

    # --- Commands ---

    @answers_errors
    async def log_allocation(
        self,
        interaction: Interaction,
        service_id: str,
        unit_set_id: str,
        sources: str | None = None,
        notes: str | None = None,
        withdrawn: bool = False,
        index: int | None = None,
    ) -> None:
        trn = normalize_service_id(service_id)
        units = unit_set_id.strip()
        if not trn or not units:
            raise ValidationError("Both a TRN and the units are required.")
        user = interaction.user
        add = AddTransaction(
            trn,
            units,
            AllocationDetails(
                sources=(sources or "").strip() or user.mention,
                notes=(notes or "").strip() or None,
                index=index,
                withdrawn=withdrawn,
            ),
        )
        request_logger(__name__, interaction.id).info(
            "log_allocation", user=user.name, service_id=trn, unit_set_id=units
        )
        confirmation = await self._workflow.prepare_allocation(user, add)
        if confirmation is not None:
            await interaction.reply(confirmation)
            return
        await self._run_deferred(
            interaction, self._workflow.submit(Submission(user=user, transactions=[add]))
        )

    @answers_errors
    async def remove_allocation(
        self, interaction: Interaction, service_id: str, unit_set_id: str
    ) -> None:
        trn = normalize_service_id(service_id)
        units = unit_set_id.strip()
        if self._store.get(trn, units) is None:
            raise ValidationError(f'"{units}" is not currently logged as {trn} today.')
        request_logger(__name__, interaction.id).info(
            "remove_allocation", user=interaction.user.name, service_id=trn, unit_set_id=units
        )
        await self._run_deferred(
            interaction,
            self._workflow.submit(
                Submission(user=interaction.user, transactions=[RemoveTransaction(trn, units)])
            ),
        )

    def _entry_field(self, name: str, details: AllocationDetails) -> EmbedField:
        return EmbedField(name=name, value=details_to_string(details))

    @answers_errors
    async def search_by_service(self, interaction: Interaction, service_id: str) -> None:
        trn = normalize_service_id(service_id)
        allocations = self._store.snapshot().get(trn)
        if not allocations:
            raise ValidationError(f'No entries found for "{trn}" in today\'s log.')
        fields = [
            self._entry_field(normalize_unit_set_display(unit), details)
            for unit, details in sorted_allocations(allocations)
        ]
        await interaction.reply(
            OutgoingMessage(embeds=[Embed(title=f"Logged entries for {trn}", fields=fields)])
        )

    @answers_errors
    async def search_by_unit(self, interaction: Interaction, query: str) -> None:
        needle = query.strip().lower()
        results = [
            (trn, unit, details)
            for trn, allocations in sorted(self._store.snapshot().items())
            for unit, details in sorted_allocations(allocations)
            if needle in unit.lower()
        ]
        if not results:
            raise ValidationError(f'No entries found matching "{query}".')
        embed = Embed(
            title=f'🔍 Search results for "{query}"',
            fields=[
                self._entry_field(f"{trn} - {normalize_unit_set_display(unit)}", details)
                for trn, unit, details in results[: self._max_search_results]
            ],
        )
        if len(results) > self._max_search_results:
            embed.footer = (
                f"Only showing first {self._max_search_results} results out of {len(results)}"
            )
        await interaction.reply(OutgoingMessage(embeds=[embed]))

    async def _ai_log(self, interaction: Interaction, prompt: str) -> None:
        if self._orchestrator is None or not self._orchestrator.available:
            await interaction.reply(
                OutgoingMessage(
                    content="AI logging is currently unavailable. Contact the bot developer if you believe this is an error.",
                    ephemeral=True,
                )
            )
            return
        request_logger(__name__, interaction.id).info("ai_log", user=interaction.user.name)
        await self._run_deferred(
            interaction, self._orchestrator.run_prompt(interaction.id, interaction.user, prompt)
        )

    @answers_errors
    async def ai_log(self, interaction: Interaction, prompt: str) -> None:
        await self._ai_log(interaction, prompt)

    @answers_errors
    async def ai_log_message(self, interaction: Interaction, message_content: str) -> None:
        """Context menu variant: the target message's text is the prompt."""
        await self._ai_log(interaction, message_content)

    # --- Components ---

    @answers_errors
    async def handle_button(self, interaction: Interaction, custom_id: str) -> None:
        user = interaction.user
        action, _, argument = custom_id.partition(":")

        if action in ("approve", "deny") or (action == "undo" and not argument):
            handle = interaction.message_id
            if handle is None:
                raise ExpiredStateError("This submission no longer exists.")
            if action == "deny":
                # Denying doesn't touch the log, so there is nothing to wait for
                await interaction.update(await self._workflow.deny(user, handle))
            elif action == "approve":
                await self._run_deferred(
                    interaction, self._workflow.approve(user, handle), update=True
                )
            else:
                await self._run_deferred(interaction, self._workflow.undo(user, handle), update=True)
            return

        if action == "undo":
            await self._run_deferred(interaction, self._workflow.undo(user, argument), update=True)
        elif action == "confirm-update":
            submission = self._workflow.take_held(argument)
            await self._run_deferred(
                interaction, self._submit_held(argument, submission), update=True
            )
        elif action == "index-choice":
            held_id, _, choice = argument.partition(":")
            try:
                index_choice = IndexChoice(choice)
            except ValueError:
                raise ValidationError("Unknown choice.") from None
            held = self._workflow.peek_held(held_id)
            submission = self._workflow.resolve_index_choice(held_id, index_choice)
            await self._run_deferred(
                interaction, self._submit_held(held_id, submission, held), update=True
            )
        elif action == "nlp-correction":
            self._workflow.peek_held(argument)
            if self._orchestrator is None:
                raise ExpiredStateError("Your submission has expired. Please try again.")
            await interaction.show_form(f"correction:{argument}", self._orchestrator.correction_form())
        elif action == "clarify-open":
            if self._orchestrator is None:
                raise ExpiredStateError("Sorry, this clarification form has expired or is invalid.")
            form = self._orchestrator.open_clarification(argument)
            await interaction.show_form(f"clarify:{argument}", form)
        else:
            self._logger.warning("unknown_button", custom_id=custom_id)

    @answers_errors
    async def handle_form_submit(
        self, interaction: Interaction, custom_id: str, values: dict[str, str | list[str]]
    ) -> None:
        action, _, argument = custom_id.partition(":")
        if self._orchestrator is None:
            raise ExpiredStateError("Sorry, this form has expired or is invalid.")
        if action == "clarify":
            await self._run_deferred(
                interaction,
                self._orchestrator.submit_clarification(interaction.id, argument, values),
            )
        elif action == "correction":
            correction = values.get("correction", "")
            if isinstance(correction, list):
                correction = "\n".join(correction)
            await self._run_deferred(
                interaction,
                self._orchestrator.submit_correction(interaction.id, argument, correction),
            )
        else:
            self._logger.warning("unknown_form", custom_id=custom_id)

    def autocomplete(self, field: str, value: str) -> list[str]:
        """Suggest values for a command option from today's log."""
        snapshot = self._store.snapshot()
        if field in ("trn", "service_id"):
            candidates = sorted(snapshot)
        elif field in ("units", "unit_set_id"):
            candidates = sorted({unit for allocations in snapshot.values() for unit in allocations})
        elif field == "sources":
            candidates = sorted(
                {d.sources for allocations in snapshot.values() for d in allocations.values()}
            )
        elif field == "notes":
            candidates = sorted(
                {
                    d.notes
                    for allocations in snapshot.values()
                    for d in allocations.values()
                    if d.notes
                }
            )
        else:
            return []
        needle = value.lower()
        return [c for c in candidates if needle in c.lower()][:MAX_AUTOCOMPLETE_RESULTS]

    @staticmethod
    def usage() -> str:
        return (
            "**About this bot** - I keep the log of which trains ran as which services on the "
            "Tyne and Wear Metro each day. Use `/log-allocation` to log a unit set on a TRN, or "
            "`/ai-log` to describe what you saw in your own words. Submissions from anyone who "
            "isn't a contributor are sent to the contributor team for approval before they "
            "appear in the log. Use `/search-by-service` and `/search-by-unit` to look up "
            "today's entries."
        )
