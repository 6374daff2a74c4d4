"""Parsing and re-checking of model output.

Providers do not always enforce the response schema, so every field is
checked again here. A broken transaction is dropped with a warning rather
than failing the whole response; anything that leaves nothing usable raises
``MalformedResponseError``.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from train_log.display.components import Dropdown, FormComponent, SelectOption, TextDisplay, TextInput
from train_log.exceptions import MalformedResponseError
from train_log.normalization import normalize_service_id
from train_log.types import AddTransaction, AllocationDetails, Batch, RemoveTransaction, Transaction

logger = structlog.get_logger(__name__)

MAX_FORM_COMPONENTS = 5


@dataclass
class AcceptResponse:
    transactions: Batch
    notes: str | None = None
    summary: str | None = None
    dropped: int = 0


@dataclass
class ClarifyResponse:
    title: str
    components: list[FormComponent] = field(default_factory=list)


@dataclass
class RejectResponse:
    detail: str | None = None


@dataclass
class UserLookupResponse:
    queries: list[str] = field(default_factory=list)


NlpResponse = AcceptResponse | ClarifyResponse | RejectResponse | UserLookupResponse


def _optional(obj: dict[str, Any], key: str, kind: type | tuple[type, ...]) -> bool:
    return obj.get(key) is None or isinstance(obj[key], kind)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_transaction(raw: Any) -> Transaction | None:
    """Parse one flattened transaction, or return None if it is malformed."""
    if not (
        isinstance(raw, dict)
        and isinstance(raw.get("trn"), str)
        and isinstance(raw.get("units"), str)
        and raw["trn"].strip()
        and raw["units"].strip()
    ):
        return None
    service_id = normalize_service_id(raw["trn"])
    unit_set_id = raw["units"].strip()
    if raw.get("type") == "remove":
        return RemoveTransaction(service_id, unit_set_id)
    if raw.get("type") != "add":
        return None
    index = raw.get("index")
    if not (
        isinstance(raw.get("sources"), str)
        and _optional(raw, "notes", str)
        and (index is None or _is_int(index))
        and _optional(raw, "withdrawn", bool)
    ):
        return None
    return AddTransaction(
        service_id,
        unit_set_id,
        AllocationDetails(
            sources=raw["sources"],
            notes=raw.get("notes") or None,
            index=index,
            withdrawn=bool(raw.get("withdrawn", False)),
        ),
    )


def _parse_accept(obj: dict[str, Any]) -> AcceptResponse:
    notes = obj.get("notes") if isinstance(obj.get("notes"), str) else None
    summary = obj.get("summary") if isinstance(obj.get("summary"), str) else None
    raw_transactions = obj.get("transactions")
    if not isinstance(raw_transactions, list):
        logger.warning("accept_without_transactions")
        return AcceptResponse(transactions=[], notes=notes, summary=summary)

    transactions: Batch = []
    dropped = 0
    for raw in raw_transactions:
        transaction = parse_transaction(raw)
        if transaction is None:
            logger.warning("malformed_transaction_dropped", transaction=raw)
            dropped += 1
            continue
        transactions.append(transaction)
    return AcceptResponse(transactions=transactions, notes=notes, summary=summary, dropped=dropped)


def parse_form_component(raw: Any) -> FormComponent | None:
    """Parse one clarification form component, or return None if it is malformed."""
    if not isinstance(raw, dict):
        return None
    kind = raw.get("type")
    if kind == "TextDisplay":
        if isinstance(raw.get("content"), str) and raw["content"]:
            return TextDisplay(content=raw["content"])
        return None
    if kind == "TextInput":
        if not (
            raw.get("style") in ("Short", "Paragraph")
            and isinstance(raw.get("id"), str)
            and isinstance(raw.get("label"), str)
            and _optional(raw, "placeholder", str)
            and _optional(raw, "value", str)
            and (raw.get("minLength") is None or _is_int(raw["minLength"]))
            and (raw.get("maxLength") is None or _is_int(raw["maxLength"]))
            and _optional(raw, "required", bool)
        ):
            return None
        return TextInput(
            id=raw["id"],
            label=raw["label"],
            style="paragraph" if raw["style"] == "Paragraph" else "short",
            placeholder=raw.get("placeholder"),
            value=raw.get("value"),
            min_length=raw.get("minLength"),
            max_length=raw.get("maxLength"),
            required=raw.get("required", True),
        )
    if kind == "DropdownInput":
        options = raw.get("options")
        if not (
            isinstance(raw.get("id"), str)
            and isinstance(raw.get("label"), str)
            and _optional(raw, "placeholder", str)
            and (raw.get("minValues") is None or _is_int(raw["minValues"]))
            and (raw.get("maxValues") is None or _is_int(raw["maxValues"]))
            and isinstance(options, list)
            and options
            and all(
                isinstance(option, dict)
                and isinstance(option.get("label"), str)
                and isinstance(option.get("value"), str)
                and _optional(option, "description", str)
                for option in options
            )
        ):
            return None
        min_values = raw.get("minValues", 1)
        return Dropdown(
            id=raw["id"],
            label=raw["label"],
            options=tuple(
                SelectOption(o["label"], o["value"], o.get("description")) for o in options
            ),
            placeholder=raw.get("placeholder"),
            min_values=min_values,
            max_values=raw.get("maxValues", 1),
            required=min_values != 0,
        )
    return None


def _parse_clarify(obj: dict[str, Any]) -> ClarifyResponse:
    title = obj.get("title")
    raw_components = obj.get("components")
    if not (isinstance(title, str) and title and isinstance(raw_components, list)):
        raise MalformedResponseError(
            "Sorry, the AI requested clarification but did not provide a valid form for you to complete.",
            details=obj,
        )
    components = [parse_form_component(raw) for raw in raw_components]
    if (
        not components
        or len(components) > MAX_FORM_COMPONENTS
        or any(component is None for component in components)
    ):
        raise MalformedResponseError(
            "Sorry, the AI requested clarification but did not provide a valid form for you to complete.",
            details=obj,
        )
    return ClarifyResponse(title=title, components=[c for c in components if c is not None])


def _parse_user_lookup(obj: dict[str, Any]) -> UserLookupResponse:
    queries = obj.get("queries")
    if not isinstance(queries, list):
        raise MalformedResponseError(
            "Sorry, the AI tried to look up users but did not say who.", details=obj
        )
    cleaned = [q.strip() for q in queries if isinstance(q, str) and q.strip()]
    if not cleaned:
        raise MalformedResponseError(
            "Sorry, the AI tried to look up users but did not say who.", details=obj
        )
    return UserLookupResponse(queries=cleaned)


def parse_response(obj: Any) -> NlpResponse:
    """Check a model's structured output and convert it into a typed response.

    Raises:
        MalformedResponseError: The output has no usable shape. The message
            is suitable for showing to the user.
    """
    if not isinstance(obj, dict) or not obj.get("type"):
        logger.warning("response_missing_type", response=obj)
        raise MalformedResponseError("Sorry, but the AI generated an invalid response.", details=obj)

    kind = obj["type"]
    if kind == "accept":
        return _parse_accept(obj)
    if kind == "clarify":
        return _parse_clarify(obj)
    if kind == "reject":
        detail = obj.get("detail")
        return RejectResponse(detail=detail if isinstance(detail, str) and detail else None)
    if kind == "user_lookup":
        return _parse_user_lookup(obj)

    logger.warning("response_unknown_type", response_type=kind)
    raise MalformedResponseError("Sorry, but the AI generated an invalid response.", details=obj)
