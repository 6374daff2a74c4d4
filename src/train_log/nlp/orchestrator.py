"""Turns free-text requests into proposed batches.

A request is a conversation with a model. Each round, the best available
tier is asked for a structured response, which either proposes changes,
asks the user to fill in a form, rejects the request, or asks for members
to be looked up. Proposed changes are never applied directly: they are held
until the user confirms them, and then go through the normal workflow.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from train_log.clients.base import FinishReason, StructuredResult
from train_log.config import request_logger
from train_log.display.components import (
    Button,
    ButtonStyle,
    Form,
    OutgoingMessage,
    TextInput,
)
from train_log.display.surface import UserDirectory
from train_log.exceptions import (
    ExpiredStateError,
    ExternalServiceError,
    MalformedResponseError,
    RateLimitError,
)
from train_log.nlp.fallback import FallbackState, ModelTier
from train_log.nlp.prompts import SYSTEM_PROMPT, format_initial_prompt
from train_log.nlp.schema import NLP_RESPONSE_SCHEMA
from train_log.nlp.validation import (
    AcceptResponse,
    ClarifyResponse,
    RejectResponse,
    UserLookupResponse,
    parse_response,
)
from train_log.nlp.wiki import UnitStatusDirectory
from train_log.storage.log_store import LogStore
from train_log.transactions import describe_transactions
from train_log.types import Conversation, NlpMessage, NlpSubmission, User
from train_log.workflow import SubmissionWorkflow

logger = structlog.get_logger(__name__)

MAX_USER_LOOKUPS = 3
CORRECTION_INPUT_ID = "correction"

UNAVAILABLE = "AI logging is currently unavailable. Contact the bot developer if you believe this is an error."
ALL_BUSY = "Sorry, all AI models are currently busy. Please try again later."
PROCESSING_ERROR = "Sorry, there was an error processing your request. Please try again later."
FORM_EXPIRED = "Sorry, this clarification form has expired or is invalid."

FINISH_REASON_MESSAGES = {
    FinishReason.CONTENT_FILTER: (
        "Sorry, but the AI refused to process your request due to content restrictions."
    ),
    FinishReason.TOOL_CALLS: (
        "Sorry, but for some reason the AI triggered tool calls instead of generating a proper response."
    ),
    FinishReason.ERROR: "Sorry, but there was an error while the AI was generating a response.",
}


@dataclass
class ClarificationSession:
    user: User
    messages: Conversation
    form: Form


class NlpOrchestrator:
    """Runs AI logging conversations against the configured model tiers."""

    def __init__(
        self,
        tiers: list[ModelTier],
        workflow: SubmissionWorkflow,
        store: LogStore,
        directory: UserDirectory | None = None,
        wiki: UnitStatusDirectory | None = None,
        fallback: FallbackState | None = None,
        clock: Callable[[], datetime] | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self._tiers = tiers
        self._workflow = workflow
        self._store = store
        self._directory = directory
        self._wiki = wiki
        self._fallback = fallback or FallbackState()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._system_prompt = system_prompt
        self._sessions: dict[str, ClarificationSession] = {}
        self._logger = logger.bind(component="nlp_orchestrator")

    @property
    def available(self) -> bool:
        return bool(self._tiers)

    @property
    def fallback(self) -> FallbackState:
        return self._fallback

    def reset(self) -> None:
        """Drop clarification sessions in flight (day rollover)."""
        self._sessions.clear()

    async def run_prompt(self, request_id: str, user: User, prompt: str) -> OutgoingMessage:
        """Start a conversation from a user's free-text request."""
        if not self.available:
            return OutgoingMessage(content=UNAVAILABLE, ephemeral=True)
        statuses = self._wiki.statuses if self._wiki is not None else {}
        messages = format_initial_prompt(prompt, user, self._store.snapshot(), statuses)
        return await self._run(request_id, user, messages)

    # --- Clarification ---

    def open_clarification(self, session_id: str) -> Form:
        session = self._sessions.get(session_id)
        if session is None:
            raise ExpiredStateError(FORM_EXPIRED)
        return session.form

    async def submit_clarification(
        self, request_id: str, session_id: str, answers: dict[str, str | list[str]]
    ) -> OutgoingMessage:
        """Continue a conversation with the user's answers to a clarification form."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise ExpiredStateError(FORM_EXPIRED)
        messages = [*session.messages, NlpMessage(role="user", content=json.dumps(answers))]
        return await self._run(request_id, session.user, messages)

    # --- Corrections ---

    @staticmethod
    def correction_form() -> Form:
        return Form(
            title="Correction to AI Submission",
            components=[
                TextInput(
                    id=CORRECTION_INPUT_ID,
                    label="Describe the correction you want to make",
                    style="paragraph",
                )
            ],
        )

    async def submit_correction(self, request_id: str, held_id: str, text: str) -> OutgoingMessage:
        """Continue the conversation behind a held AI submission with a correction."""
        held = self._workflow.take_held(held_id)
        if not isinstance(held, NlpSubmission):
            raise ExpiredStateError("Your submission has expired. Please try again.")
        messages = [*held.messages, NlpMessage(role="user", content=text)]
        return await self._run(request_id, held.user, messages)

    # --- Conversation loop ---

    async def _generate(
        self, request_id: str, messages: Conversation
    ) -> tuple[StructuredResult, ModelTier] | None:
        """Ask the best available tier, falling back on rate limits.

        Returns None when every tier is rate limited.
        """
        log = request_logger(__name__, request_id)
        payload = [message.to_dict() for message in messages]
        index = self._fallback.start_index(self._clock())
        while index < len(self._tiers):
            tier = self._tiers[index]
            log.info("attempting_model", model=tier.name, index=index)
            try:
                result = await tier.client.generate_structured(
                    self._system_prompt, payload, NLP_RESPONSE_SCHEMA
                )
            except RateLimitError as e:
                log.warning("model_rate_limited", model=tier.name)
                self._fallback.record_rate_limit(index, self._clock(), e.server_time)
                index += 1
                continue
            self._fallback.record_success(index)
            return result, tier
        log.warning("all_models_exhausted")
        return None

    async def _run(self, request_id: str, user: User, messages: Conversation) -> OutgoingMessage:
        log = request_logger(__name__, request_id, user=user.name)
        lookups = 0
        while True:
            try:
                generated = await self._generate(request_id, messages)
            except MalformedResponseError as e:
                log.warning("model_output_unparseable", error=e.message)
                return OutgoingMessage(
                    content="Sorry, but the AI generated an invalid response.", ephemeral=True
                )
            except ExternalServiceError as e:
                log.error("model_error", provider=e.provider, error=e.message)
                return OutgoingMessage(content=PROCESSING_ERROR, ephemeral=True)
            if generated is None:
                return OutgoingMessage(content=ALL_BUSY, ephemeral=True)

            result, tier = generated
            messages = [
                *messages,
                NlpMessage(role="assistant", content=json.dumps(result.object)),
            ]
            if result.finish_reason in FINISH_REASON_MESSAGES:
                log.warning("model_finished_abnormally", finish_reason=result.finish_reason.value)
                return _with_model(tier, FINISH_REASON_MESSAGES[result.finish_reason])

            log.info("model_response_received", model=tier.name)
            try:
                response = parse_response(result.object)
            except MalformedResponseError as e:
                return _with_model(tier, e.message)

            if not isinstance(response, UserLookupResponse):
                return self._respond(request_id, user, messages, response, tier)

            lookups += 1
            if lookups > MAX_USER_LOOKUPS:
                log.warning("user_lookup_limit_reached")
                return _with_model(tier, "Sorry, the AI could not work out who you meant.")
            users = await self._lookup_users(response.queries)
            log.info("users_looked_up", queries=len(response.queries), found=len(users))
            messages = [*messages, NlpMessage(role="user", content=json.dumps({"users": users}))]

    def _respond(
        self,
        request_id: str,
        user: User,
        messages: Conversation,
        response: AcceptResponse | ClarifyResponse | RejectResponse,
        tier: ModelTier,
    ) -> OutgoingMessage:
        log = request_logger(__name__, request_id, user=user.name)

        if isinstance(response, ClarifyResponse):
            self._sessions[request_id] = ClarificationSession(
                user=user,
                messages=messages,
                form=Form(title=response.title, components=response.components),
            )
            return _with_model(
                tier,
                "The AI has asked for clarification. Please click the button below to open the clarification form.",
                [
                    Button(
                        f"clarify-open:{request_id}",
                        "Open Clarification Form",
                        ButtonStyle.PRIMARY,
                        "📋",
                    )
                ],
            )

        if isinstance(response, RejectResponse):
            if response.detail:
                return _with_model(tier, response.detail)
            log.warning("reject_without_detail")
            return _with_model(tier, "Sorry, the AI rejected your query but did not provide a reason.")

        notes = f"\n**Notes by AI:** {response.notes}" if response.notes else ""
        if not response.transactions:
            log.warning("accept_without_valid_transactions", dropped=response.dropped)
            return _with_model(
                tier,
                f"The AI accepted your query but did not provide any valid changes to make.{notes}",
            )
        held_id = self._workflow.hold(
            NlpSubmission(
                user=user,
                transactions=response.transactions,
                messages=messages,
                summary=response.summary,
            )
        )
        log.info("ai_submission_held", held_id=held_id, transactions=len(response.transactions))
        diff = describe_transactions(response.transactions, self._store.snapshot())
        return _with_model(
            tier,
            f"**Do these changes look correct?**\n{diff}{notes}",
            [
                Button(f"confirm-update:{held_id}", "Confirm", ButtonStyle.PRIMARY, "✅"),
                Button(f"nlp-correction:{held_id}", "Make correction", ButtonStyle.SECONDARY, "✏️"),
            ],
        )

    async def _lookup_users(self, queries: list[str]) -> list[dict[str, str | None]]:
        if self._directory is None:
            return []
        found: dict[str, User] = {}
        for query in queries:
            for user in await self._directory.search(query):
                found.setdefault(user.id, user)
        return [
            {"id": user.id, "name": user.name, "display_name": user.display_name}
            for user in found.values()
        ]


def _with_model(tier: ModelTier, content: str, buttons: list[Button] | None = None) -> OutgoingMessage:
    return OutgoingMessage(
        content=f"{content}\n-# Model used: {tier.name}",
        buttons=buttons or [],
        ephemeral=True,
    )
