"""JSON schema the models must answer with.

There are four response shapes, discriminated by ``type``:

- ``accept``: transactions to propose, optional notes for the user and an
  optional summary for reviewers
- ``clarify``: a form (title plus up to five components) for the user to fill in
- ``reject``: a reason the request cannot be handled
- ``user_lookup``: names to search for in the member directory before answering

Add entries are flattened (``trn``, ``units`` and the details side by side)
to keep the model's output compact.
"""

from typing import Any

ADD_ENTRY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"const": "add"},
        "trn": {"type": "string"},
        "units": {"type": "string"},
        "sources": {"type": "string"},
        "notes": {"type": "string"},
        "index": {"type": "integer"},
        "withdrawn": {"type": "boolean"},
    },
    "required": ["type", "trn", "units", "sources"],
    "additionalProperties": False,
}

REMOVE_ENTRY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"const": "remove"},
        "trn": {"type": "string"},
        "units": {"type": "string"},
    },
    "required": ["type", "trn", "units"],
    "additionalProperties": False,
}

TEXT_DISPLAY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"const": "TextDisplay"},
        "content": {"type": "string", "minLength": 1, "maxLength": 2000},
    },
    "required": ["type", "content"],
    "additionalProperties": False,
}

TEXT_INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"const": "TextInput"},
        "style": {"type": "string", "enum": ["Short", "Paragraph"]},
        "id": {"type": "string", "minLength": 1, "maxLength": 100},
        "label": {"type": "string", "minLength": 1, "maxLength": 45},
        "placeholder": {"type": "string", "maxLength": 1000},
        "value": {"type": "string", "maxLength": 4000},
        "minLength": {"type": "integer", "minimum": 0, "maximum": 4000},
        "maxLength": {"type": "integer", "minimum": 1, "maximum": 4000},
        "required": {"type": "boolean"},
    },
    "required": ["type", "style", "id", "label"],
    "additionalProperties": False,
}

DROPDOWN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"const": "DropdownInput"},
        "id": {"type": "string", "minLength": 1, "maxLength": 100},
        "label": {"type": "string", "minLength": 1, "maxLength": 45},
        "placeholder": {"type": "string", "maxLength": 100},
        "minValues": {"type": "integer", "minimum": 0, "maximum": 25},
        "maxValues": {"type": "integer", "minimum": 1, "maximum": 25},
        "options": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "label": {"type": "string", "minLength": 1, "maxLength": 100},
                    "value": {"type": "string", "minLength": 1, "maxLength": 100},
                    "description": {"type": "string", "maxLength": 100},
                },
                "required": ["label", "value"],
                "additionalProperties": False,
            },
            "minItems": 1,
            "maxItems": 25,
        },
    },
    "required": ["type", "id", "label", "options"],
    "additionalProperties": False,
}

ACCEPT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"const": "accept"},
        "transactions": {
            "type": "array",
            "items": {"oneOf": [ADD_ENTRY_SCHEMA, REMOVE_ENTRY_SCHEMA]},
            "minItems": 1,
        },
        "notes": {"type": "string"},
        "summary": {"type": "string"},
    },
    "required": ["type", "transactions"],
    "additionalProperties": False,
}

CLARIFY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"const": "clarify"},
        "title": {"type": "string", "minLength": 1, "maxLength": 45},
        "components": {
            "type": "array",
            "items": {"oneOf": [TEXT_DISPLAY_SCHEMA, TEXT_INPUT_SCHEMA, DROPDOWN_SCHEMA]},
            "minItems": 1,
            "maxItems": 5,
        },
    },
    "required": ["type", "title", "components"],
    "additionalProperties": False,
}

REJECT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"const": "reject"},
        "detail": {"type": "string"},
    },
    "required": ["type", "detail"],
    "additionalProperties": False,
}

USER_LOOKUP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"const": "user_lookup"},
        "queries": {
            "type": "array",
            "items": {"type": "string", "minLength": 1, "maxLength": 100},
            "minItems": 1,
            "maxItems": 10,
        },
    },
    "required": ["type", "queries"],
    "additionalProperties": False,
}

NLP_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "oneOf": [ACCEPT_SCHEMA, CLARIFY_SCHEMA, REJECT_SCHEMA, USER_LOOKUP_SCHEMA],
}
