"""Submission and approval workflow.

Trusted users' batches are applied straight away; everyone else's are posted
to the approval channel and wait for a contributor. Every applied batch keeps
its inverse so it can be undone until the day rolls over.

Three tables back this, all in memory and all cleared at rollover:

- pending: approval prompt handle -> Submission awaiting a decision
- executed: approval prompt handle or undo key -> ExecutedSubmission
- held: opaque id -> Submission waiting for its author to confirm something
"""

import uuid
from dataclasses import replace
from enum import Enum

import structlog

from train_log.display.components import Button, ButtonStyle, Embed, EmbedField, OutgoingMessage
from train_log.display.renderer import LogRenderer
from train_log.display.surface import MessageChannel, RoleChecker
from train_log.events import AuditAction, AuditEvent, AuditFeed
from train_log.exceptions import (
    ApplyError,
    ExpiredStateError,
    PermissionDeniedError,
    ValidationError,
)
from train_log.storage.log_store import LogStore
from train_log.transactions import (
    describe_transactions,
    entry_to_string,
    invert_transactions,
    is_noop,
)
from train_log.types import (
    AddTransaction,
    AllocationDetails,
    Batch,
    ExecutedSubmission,
    NlpSubmission,
    RemoveTransaction,
    Submission,
    UnitSet,
    User,
)

logger = structlog.get_logger(__name__)

PENDING_COLOR = 0xFF9900
APPROVED_COLOR = 0x00FF00
DENIED_COLOR = 0xFF0000
UNDONE_COLOR = 0x808080

NO_LONGER_EXISTS = "This submission no longer exists."
EXPIRED = "Your submission has expired. Please try again."


class IndexChoice(str, Enum):
    """Ways to resolve a new unit set sharing an index with existing ones."""

    KEEP = "keep"
    RETRACT = "retract"
    NEXT = "next"
    NEXT_WITHDRAW = "next-withdraw"


INDEX_CHOICE_LABELS = {
    IndexChoice.KEEP: "Keep same index",
    IndexChoice.RETRACT: "Replace existing",
    IndexChoice.NEXT: "Use next index",
    IndexChoice.NEXT_WITHDRAW: "Use next index and withdraw existing",
}


def index_conflicts(
    add: AddTransaction, allocations: dict[UnitSet, AllocationDetails]
) -> dict[UnitSet, AllocationDetails]:
    """Other unit sets under the same TRN that share the new entry's index."""
    index = add.details.effective_index
    return {
        unit_set_id: details
        for unit_set_id, details in allocations.items()
        if unit_set_id != add.unit_set_id and details.effective_index == index
    }


def build_index_choice(
    add: AddTransaction,
    allocations: dict[UnitSet, AllocationDetails],
    choice: IndexChoice,
) -> Batch:
    """Build the batch for one way of resolving an index conflict.

    Args:
        add: The proposed entry.
        allocations: Everything currently logged under the entry's TRN.
        choice: How to resolve the conflict.
    """
    conflicts = index_conflicts(add, allocations)
    if choice is IndexChoice.KEEP:
        return [add]
    if choice is IndexChoice.RETRACT:
        removals: Batch = [RemoveTransaction(add.service_id, unit) for unit in sorted(conflicts)]
        return [*removals, add]

    others = [d.effective_index for unit, d in allocations.items() if unit != add.unit_set_id]
    next_index = max(others, default=add.details.effective_index - 1) + 1
    moved = AddTransaction(
        add.service_id, add.unit_set_id, replace(add.details, index=next_index)
    )
    if choice is IndexChoice.NEXT:
        return [moved]
    withdrawals: Batch = [
        AddTransaction(add.service_id, unit, replace(conflicts[unit], withdrawn=True))
        for unit in sorted(conflicts)
        if not conflicts[unit].withdrawn
    ]
    return [*withdrawals, moved]


def _differing_fields(old: AllocationDetails, new: AllocationDetails) -> list[str]:
    return [
        name
        for name in ("sources", "notes", "index", "withdrawn")
        if getattr(old, name) != getattr(new, name)
    ]


def _join_words(words: list[str]) -> str:
    if len(words) <= 1:
        return "".join(words)
    return f"{', '.join(words[:-1])} and {words[-1]}"


class SubmissionWorkflow:
    """Decides what happens to each proposed batch."""

    def __init__(
        self,
        store: LogStore,
        roles: RoleChecker,
        renderer: LogRenderer | None = None,
        feed: AuditFeed | None = None,
        approval_channel: MessageChannel | None = None,
    ):
        self._store = store
        self._roles = roles
        self._renderer = renderer
        self._feed = feed or AuditFeed()
        self._approval_channel = approval_channel

        self._pending: dict[str, Submission] = {}
        self._executed: dict[str, ExecutedSubmission] = {}
        self._held: dict[str, Submission] = {}

        self._logger = logger.bind(component="workflow")

    @property
    def pending(self) -> dict[str, Submission]:
        return dict(self._pending)

    @property
    def executed(self) -> dict[str, ExecutedSubmission]:
        return dict(self._executed)

    async def is_trusted(self, user: User) -> bool:
        return await self._roles.is_trusted(user)

    # --- Applying ---

    async def _render(self) -> None:
        """Bring the public log up to date; the change is already saved either way."""
        if self._renderer is None:
            return
        try:
            await self._renderer.refresh(self._store.snapshot())
        except Exception as e:
            self._logger.error("log_render_failed", error=str(e))

    async def submit(self, submission: Submission) -> OutgoingMessage:
        """Apply a submission now, or send it for approval.

        Raises:
            ValidationError: The batch would not change anything.
            PermissionDeniedError: The user is not trusted and there is
                nowhere to send the submission for approval.
            ApplyError: Saving failed; nothing changed.
        """
        user = submission.user
        trusted = await self._roles.is_trusted(user)
        snapshot = self._store.snapshot()
        if is_noop(submission.transactions, snapshot):
            raise ValidationError("These changes are already reflected in the log.")
        diff = describe_transactions(submission.transactions, snapshot)

        if trusted:
            undo_batch = invert_transactions(submission.transactions, snapshot)
            await self._store.apply_batch(submission.transactions)
            key = str(uuid.uuid4())
            self._executed[key] = ExecutedSubmission(
                user=user,
                transactions=submission.transactions,
                undo_transactions=undo_batch,
                submission_id=key,
            )
            self._logger.info(
                "submission_applied",
                user=user.name,
                transactions=len(submission.transactions),
                undo_key=key,
            )
            await self._render()
            await self._feed.publish(
                AuditEvent(
                    AuditAction.LOGGED,
                    actor_id=user.id,
                    actor_name=user.name,
                    description=diff,
                    reference=key,
                )
            )
            return OutgoingMessage(
                content=f"✅ The log has been updated:\n{diff}",
                buttons=[Button(f"undo:{key}", "Undo", ButtonStyle.DANGER, "↩️")],
                ephemeral=True,
            )

        if self._approval_channel is None:
            raise PermissionDeniedError("Only contributors can log trains right now.")

        handle = await self._approval_channel.send(self._approval_prompt(submission, diff))
        self._pending[handle] = submission
        self._logger.info(
            "submission_pending",
            user=user.name,
            handle=handle,
            transactions=len(submission.transactions),
        )
        await self._feed.publish(
            AuditEvent(
                AuditAction.SUBMITTED,
                actor_id=user.id,
                actor_name=user.name,
                description=diff,
                reference=handle,
            )
        )
        return OutgoingMessage(
            content="📋 Your submission has been sent for approval by contributors.",
            ephemeral=True,
        )

    def _submission_fields(self, submission: Submission) -> list[EmbedField]:
        fields = [EmbedField("Submitted by", submission.user.mention)]
        if isinstance(submission, NlpSubmission) and submission.summary:
            fields.append(EmbedField("Summary by AI", submission.summary))
        return fields

    def _approval_prompt(self, submission: Submission, diff: str) -> OutgoingMessage:
        return OutgoingMessage(
            embeds=[
                Embed(
                    title="Train log submission",
                    description=diff,
                    color=PENDING_COLOR,
                    fields=self._submission_fields(submission),
                )
            ],
            buttons=[
                Button("approve", "Approve", ButtonStyle.SUCCESS, "✅"),
                Button("deny", "Deny", ButtonStyle.DANGER, "❌"),
            ],
        )

    async def _require_trusted(self, user: User, action: str) -> None:
        if not await self._roles.is_trusted(user):
            raise PermissionDeniedError(f"You do not have permission to {action}.")

    async def approve(self, reviewer: User, handle: str) -> OutgoingMessage:
        """Apply a pending submission against the current log.

        Raises:
            ExpiredStateError: Nothing is pending for this prompt.
            PermissionDeniedError: The reviewer is not trusted.
            ApplyError: Saving failed; the submission stays pending.
        """
        if handle not in self._pending:
            raise ExpiredStateError(NO_LONGER_EXISTS)
        await self._require_trusted(reviewer, "manage submissions")

        # Taken before awaiting so a second click cannot decide it again
        submission = self._pending.pop(handle, None)
        if submission is None:
            raise ExpiredStateError(NO_LONGER_EXISTS)
        snapshot = self._store.snapshot()
        diff = describe_transactions(submission.transactions, snapshot)
        undo_batch = invert_transactions(submission.transactions, snapshot)
        if not is_noop(submission.transactions, snapshot):
            try:
                await self._store.apply_batch(submission.transactions)
            except ApplyError:
                self._pending[handle] = submission
                raise
        self._executed[handle] = ExecutedSubmission(
            user=reviewer,
            transactions=submission.transactions,
            undo_transactions=undo_batch,
            submission_id=handle,
        )
        self._logger.info(
            "submission_approved", handle=handle, reviewer=reviewer.name, user=submission.user.name
        )
        await self._render()
        await self._feed.publish(
            AuditEvent(
                AuditAction.APPROVED,
                actor_id=reviewer.id,
                actor_name=reviewer.name,
                submitter_id=submission.user.id,
                description=diff,
                reference=handle,
            )
        )
        return OutgoingMessage(
            embeds=[
                Embed(
                    title="Submission approved",
                    description=diff or None,
                    color=APPROVED_COLOR,
                    fields=[
                        *self._submission_fields(submission),
                        EmbedField("Approved by", reviewer.mention),
                    ],
                )
            ],
            buttons=[
                Button("approve", "Approved", ButtonStyle.SUCCESS, "✅", disabled=True),
                Button("undo", "Undo", ButtonStyle.DANGER, "↩️"),
            ],
        )

    async def deny(self, reviewer: User, handle: str) -> OutgoingMessage:
        """Discard a pending submission.

        Raises:
            ExpiredStateError: Nothing is pending for this prompt.
            PermissionDeniedError: The reviewer is not trusted.
        """
        if handle not in self._pending:
            raise ExpiredStateError(NO_LONGER_EXISTS)
        await self._require_trusted(reviewer, "manage submissions")

        submission = self._pending.pop(handle, None)
        if submission is None:
            raise ExpiredStateError(NO_LONGER_EXISTS)
        diff = describe_transactions(submission.transactions, self._store.snapshot())
        self._logger.info(
            "submission_denied", handle=handle, reviewer=reviewer.name, user=submission.user.name
        )
        await self._feed.publish(
            AuditEvent(
                AuditAction.DENIED,
                actor_id=reviewer.id,
                actor_name=reviewer.name,
                submitter_id=submission.user.id,
                description=diff,
                reference=handle,
            )
        )
        return OutgoingMessage(
            embeds=[
                Embed(
                    title="Submission denied",
                    description=diff or None,
                    color=DENIED_COLOR,
                    fields=[
                        *self._submission_fields(submission),
                        EmbedField("Denied by", reviewer.mention),
                    ],
                )
            ],
            buttons=[Button("deny", "Denied", ButtonStyle.DANGER, "❌", disabled=True)],
        )

    async def undo(self, reviewer: User, key: str) -> OutgoingMessage:
        """Re-apply the stored inverse of an executed submission.

        Raises:
            PermissionDeniedError: The reviewer is not trusted.
            ExpiredStateError: The submission was already undone or has expired.
            ApplyError: Saving failed; the submission can still be undone.
        """
        await self._require_trusted(reviewer, "undo submissions")
        if key not in self._executed:
            raise ExpiredStateError("This submission can no longer be undone.")

        executed = self._executed.pop(key)
        diff = describe_transactions(executed.undo_transactions, self._store.snapshot())
        try:
            await self._store.apply_batch(executed.undo_transactions)
        except ApplyError:
            self._executed[key] = executed
            raise
        self._logger.info("submission_undone", key=key, reviewer=reviewer.name)
        await self._render()
        await self._feed.publish(
            AuditEvent(
                AuditAction.UNDONE,
                actor_id=reviewer.id,
                actor_name=reviewer.name,
                submitter_id=executed.user.id,
                description=diff,
                reference=key,
            )
        )
        return OutgoingMessage(
            content=f"↩️ Undone by {reviewer.mention}",
            embeds=[Embed(title="Submission undone", description=diff or None, color=UNDONE_COLOR)],
            buttons=[Button("undo", "Undone", ButtonStyle.SECONDARY, "↩️", disabled=True)],
        )

    # --- Unconfirmed submissions ---

    def hold(self, submission: Submission) -> str:
        held_id = str(uuid.uuid4())
        self._held[held_id] = submission
        return held_id

    def peek_held(self, held_id: str) -> Submission:
        try:
            return self._held[held_id]
        except KeyError:
            raise ExpiredStateError(EXPIRED) from None

    def take_held(self, held_id: str) -> Submission:
        try:
            return self._held.pop(held_id)
        except KeyError:
            raise ExpiredStateError(EXPIRED) from None

    def replace_held(self, held_id: str, submission: Submission) -> None:
        self._held[held_id] = submission

    async def prepare_allocation(self, user: User, add: AddTransaction) -> OutgoingMessage | None:
        """Check a manually written entry against the log before submitting it.

        Returns:
            A confirmation prompt when the entry would overwrite a different
            entry or share its index with other unit sets, otherwise None.

        Raises:
            ValidationError: The exact entry is already logged.
        """
        existing = self._store.get(add.service_id, add.unit_set_id)
        if existing == add.details:
            raise ValidationError("This entry is already in the log")

        if existing is not None:
            held_id = self.hold(Submission(user=user, transactions=[add]))
            fields = _join_words(_differing_fields(existing, add.details))
            return OutgoingMessage(
                content=(
                    f"⚠️ An entry is already logged for {add.unit_set_id} on {add.service_id}, "
                    f"with a different {fields}. Do you want to update it?"
                ),
                embeds=[
                    Embed(
                        title="Existing entry",
                        description=entry_to_string(add.service_id, add.unit_set_id, existing),
                    )
                ],
                buttons=[Button(f"confirm-update:{held_id}", "Update", ButtonStyle.PRIMARY, "✏️")],
                ephemeral=True,
            )

        allocations = self._store.snapshot().get(add.service_id, {})
        conflicts = index_conflicts(add, allocations)
        if not conflicts:
            return None
        held_id = self.hold(Submission(user=user, transactions=[add]))
        listing = "\n".join(
            entry_to_string(add.service_id, unit, details)
            for unit, details in sorted(conflicts.items())
        )
        return OutgoingMessage(
            content=(
                f"⚠️ {add.service_id} already has a unit set logged with index "
                f"{add.details.effective_index}. How should the new entry be ordered?"
            ),
            embeds=[Embed(title="Entries with the same index", description=listing)],
            buttons=[
                Button(f"index-choice:{held_id}:{choice.value}", label, ButtonStyle.SECONDARY)
                for choice, label in INDEX_CHOICE_LABELS.items()
            ],
            ephemeral=True,
        )

    def resolve_index_choice(self, held_id: str, choice: IndexChoice) -> Submission:
        """Turn a held entry into the submission for the chosen ordering.

        The choice is built against the current log, not the log at the time
        the question was asked.
        """
        held = self.take_held(held_id)
        add = held.transactions[0]
        if not isinstance(add, AddTransaction):
            raise ExpiredStateError(EXPIRED)
        allocations = self._store.snapshot().get(add.service_id, {})
        return Submission(user=held.user, transactions=build_index_choice(add, allocations, choice))

    def clear(self) -> None:
        """Forget everything in flight; used when the day rolls over."""
        self._logger.info(
            "workflow_cleared",
            pending=len(self._pending),
            executed=len(self._executed),
            held=len(self._held),
        )
        self._pending.clear()
        self._executed.clear()
        self._held.clear()
