"""Structured tag prompts: characters, general tags and a free-text caption.

The engine consumes prompts written in a small XML-like dialect::

    <character_1>
    <n>Rin</n>
    <gender>1girl</gender>
    </character_1>

    <general_tags>
    <style>watercolor</style>
    </general_tags>

    <caption>a girl under cherry blossoms</caption>

Field values are copied verbatim. Angle brackets inside values are not escaped
and will corrupt block boundaries when decoded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields

DEFAULT_GENDER = "1girl"
PROMPT_START_MARKER = "<Prompt Start>"

DEFAULT_NEGATIVE_PROMPT = "low quality, blurry, distorted, deformed, ugly, bad anatomy"

DEFAULT_SYSTEM_PROMPT = (
    "You are the greatest anime artist in the entire universe. Your figures are always clear, "
    "especially in facial detail. Your compositions always adhere to the golden ratio. Your "
    "perspectives are perfectly chosen. The scenes in your works always fit the setting. Your "
    "lighting is particularly atmospheric.Now draw a picture based on the prompts below.You are "
    "an assistant designed to generate anime images based on xml format textual prompts."
)

# (attribute, tag) in emission order. The name is written as <n>.
CHARACTER_FIELDS: tuple[tuple[str, str], ...] = (
    ("name", "n"),
    ("gender", "gender"),
    ("appearance", "appearance"),
    ("clothing", "clothing"),
    ("expression", "expression"),
    ("action", "action"),
    ("position", "position"),
)
GENERAL_TAG_FIELDS: tuple[str, ...] = (
    "count",
    "artists",
    "style",
    "background",
    "lighting",
    "atmosphere",
    "objects",
    "other",
)

_PROMPT_START_RE = re.compile(r"<Prompt Start>[\s,]*", re.IGNORECASE)
_CHARACTER_BLOCK_RE = re.compile(r"<character[_ ](\d+)>([\s\S]*?)</character[_ ]\d+>", re.IGNORECASE)
_GENERAL_TAGS_BLOCK_RE = re.compile(r"<general[_ ]tags>([\s\S]*?)</general[_ ]tags>", re.IGNORECASE)
_CAPTION_BLOCK_RE = re.compile(r"<caption>([\s\S]*?)</caption>", re.IGNORECASE)


@dataclass
class Character:
    name: str = ""
    gender: str = ""
    appearance: str = ""
    clothing: str = ""
    expression: str = ""
    action: str = ""
    position: str = ""


@dataclass
class GeneralTags:
    count: str = ""
    artists: str = ""
    style: str = ""
    background: str = ""
    lighting: str = ""
    atmosphere: str = ""
    objects: str = ""
    other: str = ""

    def is_empty(self) -> bool:
        return not any(getattr(self, name).strip() for name in GENERAL_TAG_FIELDS)


@dataclass
class ParsedPrompt:
    characters: list[Character] = field(default_factory=list)
    general_tags: GeneralTags = field(default_factory=GeneralTags)
    caption: str = ""


def create_empty_character() -> Character:
    """A brand-new editable character, pre-filled with the default gender."""
    return Character(gender=DEFAULT_GENDER)


def encode(characters: list[Character], general_tags: GeneralTags | None = None, caption: str | None = None) -> str:
    text = ""
    for index, character in enumerate(characters, start=1):
        text += f"<character_{index}>\n"
        for attr, tag in CHARACTER_FIELDS:
            value = getattr(character, attr)
            if attr == "name":
                value = value.strip() or f"character_{index}"
            if value:
                text += f"<{tag}>{value}</{tag}>\n"
        text += f"</character_{index}>\n\n"

    tags = general_tags or GeneralTags()
    if not tags.is_empty():
        text += "<general_tags>\n"
        for name in GENERAL_TAG_FIELDS:
            value = getattr(tags, name)
            if value:
                text += f"<{name}>{value}</{name}>\n"
        text += "</general_tags>"

    if caption and caption.strip():
        text += f"\n\n<caption>{caption.strip()}</caption>"

    return text.strip()


def decode(text: str) -> ParsedPrompt:
    content = strip_preamble(text)

    characters: list[Character] = []
    for match in _CHARACTER_BLOCK_RE.finditer(content):
        block = match.group(2)
        characters.append(Character(**{attr: _parse_tag(block, tag) for attr, tag in CHARACTER_FIELDS}))

    general_match = _GENERAL_TAGS_BLOCK_RE.search(content)
    general_block = general_match.group(1).strip() if general_match else ""
    general_tags = GeneralTags(**{name: _parse_tag(general_block, name) for name in GENERAL_TAG_FIELDS})

    remainder = _CHARACTER_BLOCK_RE.sub("", content)
    remainder = _GENERAL_TAGS_BLOCK_RE.sub("", remainder)
    caption = _CAPTION_BLOCK_RE.sub(lambda m: m.group(1).strip(), remainder).strip()

    return ParsedPrompt(
        characters=characters or [create_empty_character()],
        general_tags=general_tags,
        caption=caption,
    )


def strip_preamble(text: str) -> str:
    """Drop an instructional header ending in ``<Prompt Start>``, if present."""
    match = _PROMPT_START_RE.search(text or "")
    if not match:
        return text or ""
    return text[match.end():]


def build_final_prompt(system_prompt: str, user_prompt: str) -> str:
    return f"{system_prompt}\n{PROMPT_START_MARKER},{user_prompt}"


def character_from_mapping(payload: dict) -> Character:
    known = {f.name for f in fields(Character)}
    return Character(**{key: str(value or "") for key, value in payload.items() if key in known})


def general_tags_from_mapping(payload: dict) -> GeneralTags:
    return GeneralTags(**{key: str(value or "") for key, value in payload.items() if key in GENERAL_TAG_FIELDS})


def _parse_tag(block: str, tag: str) -> str:
    match = re.search(rf"<{re.escape(tag)}>([\s\S]*?)</{re.escape(tag)}>", block)
    return match.group(1).strip() if match else ""
