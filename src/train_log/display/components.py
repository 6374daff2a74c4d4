"""Platform-neutral values describing what the bot sends.

The chat gateway adapter translates these into its own message, embed,
button and modal objects.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


class ButtonStyle(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    SUCCESS = "success"
    DANGER = "danger"


@dataclass(frozen=True)
class Button:
    custom_id: str
    label: str
    style: ButtonStyle = ButtonStyle.SECONDARY
    emoji: str | None = None
    disabled: bool = False


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass
class Embed:
    title: str | None = None
    description: str | None = None
    color: int | None = None
    fields: list[EmbedField] = field(default_factory=list)
    footer: str | None = None


@dataclass(frozen=True)
class Attachment:
    name: str
    content: bytes


@dataclass
class OutgoingMessage:
    """Content of a message or reply."""

    content: str = ""
    embeds: list[Embed] = field(default_factory=list)
    buttons: list[Button] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    ephemeral: bool = False


# --- Forms (modals) ---


@dataclass(frozen=True)
class TextDisplay:
    content: str
    kind: Literal["text_display"] = "text_display"


@dataclass(frozen=True)
class TextInput:
    id: str
    label: str
    style: Literal["short", "paragraph"] = "short"
    placeholder: str | None = None
    value: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    required: bool = True
    kind: Literal["text_input"] = "text_input"


@dataclass(frozen=True)
class SelectOption:
    label: str
    value: str
    description: str | None = None


@dataclass(frozen=True)
class Dropdown:
    id: str
    label: str
    options: tuple[SelectOption, ...]
    placeholder: str | None = None
    min_values: int = 1
    max_values: int = 1
    required: bool = True
    kind: Literal["dropdown"] = "dropdown"


FormComponent = TextDisplay | TextInput | Dropdown


@dataclass
class Form:
    """A modal with up to five components."""

    title: str
    components: list[FormComponent] = field(default_factory=list)
