"""Normalization of TRNs and unit descriptions.

Only ``normalize_service_id`` affects identity. Everything else here is
cosmetic and is applied when rendering, never to the keys of the log.
"""

import re
from collections.abc import Callable

from train_log.types import TRN, Category

# --- TRN ---

THREE_DIGIT_REGEX = re.compile(r"^[tT]?\d{3}$")
TRN_NUMBER_REGEX = re.compile(r"^[tT]?(\d{3})(?!\d)")

# Inclusive TRN ranges for each line
CATEGORY_RANGES: dict[Category, tuple[int, int]] = {
    Category.GREEN: (101, 112),
    Category.YELLOW: (121, 136),
}


def normalize_service_id(raw: str) -> TRN:
    """Turn "101", "t101" or "T101" into "T101"; leave anything else alone."""
    trn = raw.strip()
    if THREE_DIGIT_REGEX.match(trn):
        return f"T{trn[-3:]}"
    return trn


def categorize(service_id: TRN) -> Category:
    """Work out which section of the log a TRN belongs in."""
    match = TRN_NUMBER_REGEX.match(service_id)
    if not match:
        return Category.OTHER
    number = int(match.group(1))
    for category, (low, high) in CATEGORY_RANGES.items():
        if low <= number <= high:
            return category
    return Category.OTHER


# --- Unit descriptions ---

CLASS_555_EMOJI = "<:class555:1358573606665195558>"
METROCAR_EMOJI = "<:metrocar:1332544654847115354>"
UNKNOWN_DIGIT_EMOJI = ":question:"

_UNIT_CHAR = r"[\d?x]"
_METROCAR = rf"40{_UNIT_CHAR}{{2}}"

CLASS_555_FORMATTING_REGEX = re.compile(rf"(?<!\d)(?:555|5) ?({_UNIT_CHAR}{{3}})(?!\d)")
METROCAR_FORMATTING_REGEX = re.compile(
    rf"(?<!\d)(?:599|994|4) ?[0x?]({_UNIT_CHAR}{{2}})(?!\d)"
)

# "40xx 40xx"
METROCAR_COUPLING_SPACES = re.compile(rf"{_METROCAR}(?: {_METROCAR})+")
# "40xx + 40xx"
METROCAR_COUPLING_PADDED_PLUS = re.compile(
    rf"(?<![+\d]){_METROCAR}(?: \+ {_METROCAR})+(?![+\d])"
)
# "40xx and 40xx", "40xx & 40xx", "40xx - 40xx", "40xx-40xx", "40xx / 40xx",
# "40xx/40xx", "40xx \ 40xx", "40xx\40xx"
METROCAR_COUPLING_WORDS = re.compile(
    rf"(?<![+\d])({_METROCAR})(?: and | & | - |-| / |/| \\ |\\)(?={_METROCAR}(?![+\d]))"
)

CLASS_555_UNIT_REGEX = re.compile(rf"(?<!\d)555\d{_UNIT_CHAR}{{2}}(?![\dx])")
METROCAR_SET_REGEX = re.compile(rf"(?<![+\d]){_METROCAR}(?:\+{_METROCAR})*(?![+\d])")

# An emoji (and optional space) directly before a match means it is decorated already
_EMOJI_BEFORE = re.compile(r"<a?:\w+:\d+> ?$")

CUSTOM_EMOJI_REGEX = re.compile(r"<a?:(\w+):\d+>")
USER_MENTION_REGEX = re.compile(r"<@!?(\d+)>")


def _add_emoji(unit_emoji: str) -> Callable[[re.Match[str]], str]:
    def replace(match: re.Match[str]) -> str:
        unit = match.group(0)
        if _EMOJI_BEFORE.search(match.string, 0, match.start()):
            return unit
        if "x" in unit:
            return f"{UNKNOWN_DIGIT_EMOJI}{unit_emoji} {unit}"
        return f"{unit_emoji} {unit}"

    return replace


def normalize_unit_set_display(raw: str) -> str:
    """Tidy up a unit description for display.

    Canonicalizes class 555 and metrocar numbers, joins coupled metrocars
    with "+" and prefixes each unit (or coupled set) with its emoji.
    """
    text = CLASS_555_FORMATTING_REGEX.sub(r"555\1", raw)
    text = METROCAR_FORMATTING_REGEX.sub(r"40\1", text)
    text = METROCAR_COUPLING_SPACES.sub(lambda m: m.group(0).replace(" ", "+"), text)
    text = METROCAR_COUPLING_PADDED_PLUS.sub(lambda m: m.group(0).replace(" ", ""), text)
    text = METROCAR_COUPLING_WORDS.sub(r"\1+", text)
    text = CLASS_555_UNIT_REGEX.sub(_add_emoji(CLASS_555_EMOJI), text)
    text = METROCAR_SET_REGEX.sub(_add_emoji(METROCAR_EMOJI), text)
    return text


def strip_markup(text: str, resolve_user: Callable[[str], str | None] | None = None) -> str:
    """Replace chat markup with readable names for plain-text attachments.

    Args:
        text: Text containing custom emoji and mentions.
        resolve_user: Optional lookup from user id to a display tag.
    """

    def replace_mention(match: re.Match[str]) -> str:
        name = resolve_user(match.group(1)) if resolve_user else None
        return f"@{name}" if name else match.group(0)

    text = CUSTOM_EMOJI_REGEX.sub(r":\1:", text)
    return USER_MENTION_REGEX.sub(replace_mention, text)
