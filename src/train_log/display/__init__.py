"""Outbound display: message values, platform protocols and the log renderer."""

from train_log.display.components import (
    Attachment,
    Button,
    ButtonStyle,
    Dropdown,
    Embed,
    EmbedField,
    Form,
    OutgoingMessage,
    SelectOption,
    TextDisplay,
    TextInput,
)
from train_log.display.renderer import LogRenderer
from train_log.display.surface import (
    Interaction,
    MessageChannel,
    RoleChecker,
    StaticRoleChecker,
    StaticUserDirectory,
    UserDirectory,
)

__all__ = [
    "Attachment",
    "Button",
    "ButtonStyle",
    "Dropdown",
    "Embed",
    "EmbedField",
    "Form",
    "Interaction",
    "LogRenderer",
    "MessageChannel",
    "OutgoingMessage",
    "RoleChecker",
    "SelectOption",
    "StaticRoleChecker",
    "StaticUserDirectory",
    "TextDisplay",
    "TextInput",
    "UserDirectory",
]
