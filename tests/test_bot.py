"""Tests for the bot's handling of commands, clicks and forms."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from train_log.bot import GENERIC_ERROR, MAX_AUTOCOMPLETE_RESULTS, TrainLogBot
from train_log.clients.base import FinishReason, StructuredResult
from train_log.display.renderer import LogRenderer
from train_log.events import AuditAction, AuditFeed
from train_log.exceptions import ApplyError
from train_log.nlp import FallbackState, ModelTier, NlpOrchestrator
from train_log.storage import LogStore
from train_log.types import AddTransaction, AllocationDetails
from train_log.workflow import SubmissionWorkflow

ACCEPT = {
    "type": "accept",
    "transactions": [{"type": "add", "trn": "T102", "units": "4010+4020", "sources": "<@100>"}],
}
CLARIFY = {
    "type": "clarify",
    "title": "Which TRN?",
    "components": [{"type": "TextInput", "style": "Short", "id": "trn", "label": "TRN"}],
}


@pytest.fixture
def model():
    """A model tier answered by a scripted mock client."""
    client = MagicMock()
    client.generate_structured = AsyncMock()
    return ModelTier("Test model", client)


def script(model: ModelTier, *objects) -> None:
    model.client.generate_structured.side_effect = [
        StructuredResult(object=obj, finish_reason=FinishReason.STOP) for obj in objects
    ]


@pytest.fixture
def bot(store, roles, log_channel, approval_channel, feed_channel, model):
    renderer = LogRenderer(log_channel, store)
    feed = AuditFeed(feed_channel)
    workflow = SubmissionWorkflow(
        store, roles, renderer=renderer, feed=feed, approval_channel=approval_channel
    )
    orchestrator = NlpOrchestrator([model], workflow, store, fallback=FallbackState())
    return TrainLogBot(store, workflow, renderer, feed=feed, orchestrator=orchestrator)


async def log_as(bot, interaction_factory, user, trn="101", units="4073+4081", **kwargs):
    interaction = interaction_factory(user)
    await bot.log_allocation(interaction, trn, units, **kwargs)
    return interaction


class TestLogAllocation:
    """Tests for the manual logging command."""

    @pytest.mark.asyncio
    async def test_contributor_entry_applied(self, bot, store, log_channel, interaction_factory, carol):
        """Test a contributor's entry is deferred, applied and rendered."""
        interaction = await log_as(bot, interaction_factory, carol)

        assert interaction.deferred == [False]
        reply = interaction.edited_replies[0]
        assert reply.content.startswith("✅ The log has been updated:")
        assert store.get("T101", "4073+4081") == AllocationDetails(sources="<@200>")
        assert "T101" in log_channel.messages["log-1"].content

    @pytest.mark.asyncio
    async def test_missing_fields(self, bot, interaction_factory, carol):
        """Test blank input is rejected."""
        interaction = await log_as(bot, interaction_factory, carol, trn=" ", units="4073")

        assert interaction.replies[0].content.startswith("❌ ")
        assert interaction.deferred == []

    @pytest.mark.asyncio
    async def test_submit_approve_shows_in_green_section(
        self, bot, store, approval_channel, log_channel, interaction_factory, alice, carol
    ):
        """Test a regular user's entry reaches the log once a contributor approves it."""
        submitted = await log_as(bot, interaction_factory, alice, sources="@alice")

        assert "sent for approval" in submitted.edited_replies[0].content
        assert "🟩 T101 - 4073+4081 (sources: @alice)" in (
            approval_channel.messages["approval-1"].embeds[0].description
        )
        assert store.snapshot() == {}

        click = interaction_factory(carol, id="req-2", message_id="approval-1")
        await bot.handle_button(click, "approve")

        assert click.deferred == [True]
        assert click.edited_replies[0].embeds[0].title == "Submission approved"
        green = log_channel.messages["log-1"].content.split("### Yellow line")[0]
        assert "T101 - " in green and "-# @alice" in green

    @pytest.mark.asyncio
    async def test_regular_user_cannot_approve(self, bot, approval_channel, interaction_factory, alice, bob):
        """Test a rejected click leaves the prompt alone and answers privately."""
        await log_as(bot, interaction_factory, alice)
        click = interaction_factory(bob, id="req-2", message_id="approval-1")

        await bot.handle_button(click, "approve")

        assert click.edited_replies == []
        assert click.replies[0].content == "❌ You do not have permission to manage submissions."
        assert click.replies[0].ephemeral

    @pytest.mark.asyncio
    async def test_deny_updates_prompt(self, bot, interaction_factory, alice, carol):
        """Test denying replaces the prompt straight away."""
        await log_as(bot, interaction_factory, alice)
        click = interaction_factory(carol, id="req-2", message_id="approval-1")

        await bot.handle_button(click, "deny")

        assert click.updates[0].embeds[0].title == "Submission denied"

    @pytest.mark.asyncio
    async def test_undo_button(self, bot, store, interaction_factory, carol):
        """Test the undo button on a confirmation reverts the change."""
        logged = await log_as(bot, interaction_factory, carol)
        undo_id = logged.edited_replies[0].buttons[0].custom_id

        click = interaction_factory(carol, id="req-2")
        await bot.handle_button(click, undo_id)

        assert store.snapshot() == {}
        assert click.edited_replies[0].content.startswith("↩️ Undone by <@200>")

    @pytest.mark.asyncio
    async def test_identical_entry(self, bot, interaction_factory, carol):
        """Test re-logging an identical entry is refused."""
        await log_as(bot, interaction_factory, carol)

        again = await log_as(bot, interaction_factory, carol)

        assert again.replies[0].content == "❌ This entry is already in the log"

    @pytest.mark.asyncio
    async def test_confirm_update(self, bot, store, interaction_factory, carol):
        """Test changing an entry asks first and applies on confirmation."""
        await log_as(bot, interaction_factory, carol)
        asked = await log_as(bot, interaction_factory, carol, notes="late")
        button = asked.replies[0].buttons[0]
        assert button.custom_id.startswith("confirm-update:")

        click = interaction_factory(carol, id="req-3")
        await bot.handle_button(click, button.custom_id)

        assert store.get("T101", "4073+4081").notes == "late"
        assert click.deferred == [True]

        again = interaction_factory(carol, id="req-4")
        await bot.handle_button(again, button.custom_id)
        assert again.replies[0].content == "❌ Your submission has expired. Please try again."

    @pytest.mark.asyncio
    async def test_index_choice(self, bot, store, interaction_factory, carol):
        """Test choosing 'next index and withdraw' for a replacement set."""
        await log_as(bot, interaction_factory, carol)
        asked = await log_as(bot, interaction_factory, carol, units="4090")
        button = next(b for b in asked.replies[0].buttons if b.custom_id.endswith(":next-withdraw"))

        await bot.handle_button(interaction_factory(carol, id="req-3"), button.custom_id)

        allocations = store.snapshot()["T101"]
        assert allocations["4073+4081"].withdrawn
        assert allocations["4090"].index == 1

    @pytest.mark.asyncio
    async def test_index_choice_retry_after_failed_save(self, bot, store, interaction_factory, carol):
        """Test a choice whose save failed can be clicked again."""
        await log_as(bot, interaction_factory, carol)
        asked = await log_as(bot, interaction_factory, carol, units="4090")
        button = next(b for b in asked.replies[0].buttons if b.custom_id.endswith(":next"))

        failed = interaction_factory(carol, id="req-3")
        with patch.object(
            store, "apply_batch", AsyncMock(side_effect=ApplyError("Nothing was changed."))
        ):
            await bot.handle_button(failed, button.custom_id)
        assert failed.replies[0].content == "❌ Nothing was changed."
        assert "4090" not in store.snapshot()["T101"]

        retry = interaction_factory(carol, id="req-4")
        await bot.handle_button(retry, button.custom_id)

        assert retry.replies == []
        assert store.get("T101", "4090").index == 1


class TestRemoveAllocation:
    """Tests for the remove command."""

    @pytest.mark.asyncio
    async def test_remove(self, bot, store, interaction_factory, carol):
        """Test removing a logged entry."""
        await log_as(bot, interaction_factory, carol)
        interaction = interaction_factory(carol, id="req-2")

        await bot.remove_allocation(interaction, "T101", "4073+4081")

        assert store.snapshot() == {}
        assert "🟥 T101 - 4073+4081" in interaction.edited_replies[0].content

    @pytest.mark.asyncio
    async def test_remove_absent_key(self, bot, store, log_channel, interaction_factory, carol):
        """Test removing something that isn't logged changes and renders nothing."""
        interaction = interaction_factory(carol)

        with patch.object(store, "apply_batch", AsyncMock()) as apply_batch:
            await bot.remove_allocation(interaction, "101", "4099")

        apply_batch.assert_not_called()
        assert log_channel.sent == []
        assert interaction.replies[0].content == '❌ "4099" is not currently logged as T101 today.'


class TestSearch:
    """Tests for the search commands."""

    @pytest.mark.asyncio
    async def test_search_by_service(self, bot, interaction_factory, carol):
        """Test every unit set on a TRN is listed."""
        await log_as(bot, interaction_factory, carol, index=0)
        await log_as(bot, interaction_factory, carol, units="4090", index=1)
        interaction = interaction_factory(carol, id="req-3")

        await bot.search_by_service(interaction, "t101")

        embed = interaction.replies[0].embeds[0]
        assert embed.title == "Logged entries for T101"
        assert len(embed.fields) == 2
        assert embed.fields[0].value == "sources: <@200> | index: 0"

    @pytest.mark.asyncio
    async def test_search_by_service_not_found(self, bot, interaction_factory, carol):
        """Test an unknown TRN gets an error reply."""
        interaction = interaction_factory(carol)

        await bot.search_by_service(interaction, "T999")

        assert interaction.replies[0].content.startswith("❌ No entries found")

    @pytest.mark.asyncio
    async def test_search_by_unit_caps_results(self, bot, store, interaction_factory, carol):
        """Test unit searches show at most ten results with a footer."""
        await store.apply_batch(
            [
                AddTransaction(f"T{100 + i}", f"40{i:02d}", AllocationDetails(sources="@bob"))
                for i in range(1, 13)
            ]
        )
        interaction = interaction_factory(carol)

        await bot.search_by_unit(interaction, "40")

        embed = interaction.replies[0].embeds[0]
        assert len(embed.fields) == 10
        assert embed.footer == "Only showing first 10 results out of 12"


class TestAutocomplete:
    """Tests for option suggestions."""

    @pytest.mark.asyncio
    async def test_suggestions(self, bot, store):
        """Test suggestions come from today's log and are filtered."""
        await store.apply_batch(
            [
                AddTransaction("T101", "4073+4081", AllocationDetails(sources="@bob", notes="late")),
                AddTransaction("T121", "4040", AllocationDetails(sources="@carol")),
            ]
        )

        assert bot.autocomplete("trn", "12") == ["T121"]
        assert bot.autocomplete("units", "") == ["4040", "4073+4081"]
        assert bot.autocomplete("sources", "CAR") == ["@carol"]
        assert bot.autocomplete("notes", "") == ["late"]
        assert bot.autocomplete("colour", "") == []

    @pytest.mark.asyncio
    async def test_suggestions_capped(self, bot, store):
        """Test at most 25 suggestions are returned."""
        await store.apply_batch(
            [AddTransaction(f"X{i}", "4001", AllocationDetails(sources="@bob")) for i in range(30)]
        )

        assert len(bot.autocomplete("trn", "X")) == MAX_AUTOCOMPLETE_RESULTS


class TestAiLog:
    """Tests for AI logging through the bot."""

    @pytest.mark.asyncio
    async def test_confirm_ai_submission(self, bot, store, model, interaction_factory, carol):
        """Test an AI proposal is applied only after the user confirms."""
        script(model, ACCEPT)
        interaction = interaction_factory(carol)

        await bot.ai_log(interaction, "4010 and 4020 on 102")

        proposal = interaction.edited_replies[0]
        assert "Do these changes look correct?" in proposal.content
        assert store.snapshot() == {}

        click = interaction_factory(carol, id="req-2")
        await bot.handle_button(click, proposal.buttons[0].custom_id)

        assert store.get("T102", "4010+4020") == AllocationDetails(sources="<@100>")

    @pytest.mark.asyncio
    async def test_correction_form(self, bot, model, interaction_factory, carol):
        """Test the correction button opens a form whose answer resumes the conversation."""
        script(model, ACCEPT, {"type": "reject", "detail": "Never mind then."})
        interaction = interaction_factory(carol)
        await bot.ai_log_message(interaction, "4010 and 4020 on 102")
        correction_id = interaction.edited_replies[0].buttons[1].custom_id
        held_id = correction_id.split(":", 1)[1]

        click = interaction_factory(carol, id="req-2")
        await bot.handle_button(click, correction_id)

        custom_id, form = click.forms[0]
        assert custom_id == f"correction:{held_id}"
        assert form.components[0].id == "correction"

        submit = interaction_factory(carol, id="req-3")
        await bot.handle_form_submit(submit, custom_id, {"correction": "Actually it was 103"})

        assert submit.edited_replies[0].content.startswith("Never mind then.")

    @pytest.mark.asyncio
    async def test_clarification_form(self, bot, model, interaction_factory, carol):
        """Test the clarification button shows the model's form."""
        script(model, CLARIFY, ACCEPT)
        interaction = interaction_factory(carol)
        await bot.ai_log(interaction, "4010 this morning")
        open_id = interaction.edited_replies[0].buttons[0].custom_id

        click = interaction_factory(carol, id="req-2")
        await bot.handle_button(click, open_id)
        custom_id, form = click.forms[0]
        assert form.title == "Which TRN?"

        submit = interaction_factory(carol, id="req-3")
        await bot.handle_form_submit(submit, custom_id, {"trn": "T102"})

        assert "Do these changes look correct?" in submit.edited_replies[0].content

    @pytest.mark.asyncio
    async def test_unavailable(self, store, roles, log_channel, interaction_factory, carol):
        """Test AI logging without any model configured."""
        workflow = SubmissionWorkflow(store, roles)
        bot = TrainLogBot(store, workflow, LogRenderer(log_channel, store))
        interaction = interaction_factory(carol)

        await bot.ai_log(interaction, "anything")

        assert interaction.replies[0].content.startswith("AI logging is currently unavailable.")
        assert interaction.deferred == []

    @pytest.mark.asyncio
    async def test_unexpected_error(self, bot, model, interaction_factory, carol):
        """Test a bug is answered generically instead of escaping."""
        model.client.generate_structured.side_effect = KeyError("bug")
        interaction = interaction_factory(carol)

        await bot.ai_log(interaction, "anything")

        assert interaction.edited_replies[0].content == GENERIC_ERROR


class TestLifecycle:
    """Tests for startup and day rollover."""

    @pytest.mark.asyncio
    async def test_start_renders_log(self, bot, log_channel):
        """Test startup posts the log."""
        await bot.start()

        assert list(log_channel.messages) == ["log-1"]

    @pytest.mark.asyncio
    async def test_start_new_day(
        self, session_factory, roles, log_channel, approval_channel, feed_channel, interaction_factory, alice, carol
    ):
        """Test rollover forgets pending work and starts a fresh log and message."""
        now = [datetime(2025, 6, 2, 12, 0)]
        store = LogStore(session_factory, clock=lambda: now[0])
        renderer = LogRenderer(log_channel, store)
        feed = AuditFeed(feed_channel)
        workflow = SubmissionWorkflow(
            store, roles, renderer=renderer, feed=feed, approval_channel=approval_channel
        )
        bot = TrainLogBot(store, workflow, renderer, feed=feed)
        await bot.start()
        await log_as(bot, interaction_factory, carol)
        await log_as(bot, interaction_factory, alice, units="4090")

        now[0] = datetime(2025, 6, 3, 3, 0)
        await bot.start_new_day()

        assert store.snapshot() == {}
        assert workflow.pending == {}
        assert renderer.handles == ["log-2"]
        assert feed.recent_events[-1].action is AuditAction.DAY_STARTED
        assert feed_channel.sent[-1].content == "📅 New operating day started (2025-06-03)"

        click = interaction_factory(carol, id="req-9", message_id="approval-1")
        await bot.handle_button(click, "approve")
        assert click.replies[0].content == "❌ This submission no longer exists."

    def test_usage(self):
        """Test the help text mentions the main commands."""
        assert "/log-allocation" in TrainLogBot.usage()
