"""Core domain types for the daily allocation log."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, TypeAlias

TRN: TypeAlias = str
UnitSet: TypeAlias = str


@dataclass(frozen=True)
class User:
    """A chat platform user."""

    id: str
    name: str
    display_name: str | None = None

    @property
    def mention(self) -> str:
        return f"<@{self.id}>"


@dataclass(frozen=True)
class AllocationDetails:
    """What is known about one unit set running as one TRN."""

    sources: str
    notes: str | None = None
    index: int | None = None
    withdrawn: bool = False

    @property
    def effective_index(self) -> int:
        return self.index if self.index is not None else 0


# trn -> unit set -> details
DailyLog: TypeAlias = dict[TRN, dict[UnitSet, AllocationDetails]]


@dataclass(frozen=True)
class AddTransaction:
    """Upsert: overwrite whatever is logged for the key."""

    service_id: TRN
    unit_set_id: UnitSet
    details: AllocationDetails
    kind: Literal["add"] = field(default="add", init=False)

    @property
    def key(self) -> tuple[TRN, UnitSet]:
        return (self.service_id, self.unit_set_id)


@dataclass(frozen=True)
class RemoveTransaction:
    """Retract: delete the key if present."""

    service_id: TRN
    unit_set_id: UnitSet
    kind: Literal["remove"] = field(default="remove", init=False)

    @property
    def key(self) -> tuple[TRN, UnitSet]:
        return (self.service_id, self.unit_set_id)


Transaction: TypeAlias = AddTransaction | RemoveTransaction
Batch: TypeAlias = list[Transaction]


class Category(str, Enum):
    """Display groups of the public log."""

    GREEN = "green"
    YELLOW = "yellow"
    OTHER = "other"


@dataclass(frozen=True)
class NlpMessage:
    """One turn of an NLP conversation."""

    role: Literal["user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


# Always starts with a user message
Conversation: TypeAlias = list[NlpMessage]


@dataclass
class Submission:
    """A proposed batch from a user."""

    user: User
    transactions: Batch


@dataclass
class NlpSubmission(Submission):
    """A batch proposed by the AI on behalf of a user."""

    messages: Conversation = field(default_factory=list)
    summary: str | None = None


@dataclass
class ExecutedSubmission:
    """An applied batch that can still be undone."""

    user: User
    transactions: Batch
    undo_transactions: Batch
    submission_id: str
