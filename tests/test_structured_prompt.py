from __future__ import annotations

from comfy_studio.prompt.structured import (
    DEFAULT_SYSTEM_PROMPT,
    Character,
    GeneralTags,
    build_final_prompt,
    create_empty_character,
    decode,
    encode,
)


def test_encode_emits_non_empty_fields_in_order() -> None:
    characters = [Character(name="Rin", gender="1girl", appearance="long hair", action="waving")]
    text = encode(characters, GeneralTags(style="watercolor", lighting="soft"))
    assert text == (
        "<character_1>\n"
        "<n>Rin</n>\n"
        "<gender>1girl</gender>\n"
        "<appearance>long hair</appearance>\n"
        "<action>waving</action>\n"
        "</character_1>\n"
        "\n"
        "<general_tags>\n"
        "<style>watercolor</style>\n"
        "<lighting>soft</lighting>\n"
        "</general_tags>"
    )


def test_encode_defaults_blank_name_to_positional_label() -> None:
    text = encode([Character(gender="1boy"), Character(name="  ")])
    assert "<n>character_1</n>" in text
    assert "<n>character_2</n>" in text
    assert text.endswith("</character_2>")


def test_encode_omits_empty_general_tags() -> None:
    text = encode([Character(name="Rin")], GeneralTags())
    assert "general_tags" not in text


def test_encode_appends_caption() -> None:
    text = encode([Character(name="Rin")], None, "  under cherry blossoms  ")
    assert text.endswith("</character_1>\n\n\n\n<caption>under cherry blossoms</caption>")
    assert encode([], None, "just a caption") == "<caption>just a caption</caption>"


def test_decode_strips_prompt_start_preamble() -> None:
    parsed = decode("SYS TEXT<Prompt Start>, <character_1><n>Rin</n></character_1>")
    assert len(parsed.characters) == 1
    assert parsed.characters[0].name == "Rin"
    assert parsed.characters[0].gender == ""
    assert parsed.caption == ""


def test_decode_without_characters_yields_one_empty_character() -> None:
    parsed = decode("a quiet street at dusk")
    assert parsed.characters == [create_empty_character()]
    assert parsed.characters[0].gender == "1girl"
    assert parsed.general_tags.is_empty()
    assert parsed.caption == "a quiet street at dusk"


def test_decode_accepts_space_separated_and_mixed_case_blocks() -> None:
    text = (
        "<Character 1><n>Aki</n><clothing>red scarf</clothing></Character 1>"
        "<character_2><n>Yuki</n></character_2>"
        "<General Tags><background>snowy field</background></General Tags>"
    )
    parsed = decode(text)
    assert [c.name for c in parsed.characters] == ["Aki", "Yuki"]
    assert parsed.characters[0].clothing == "red scarf"
    assert parsed.general_tags.background == "snowy field"
    assert parsed.caption == ""


def test_decode_trims_field_values() -> None:
    parsed = decode("<character_1>\n<n>  Rin \n</n>\n</character_1>")
    assert parsed.characters[0].name == "Rin"


def test_round_trip_preserves_fields() -> None:
    characters = [
        Character(name="Rin", gender="1girl", appearance="silver hair", position="left"),
        Character(name="Kai", gender="1boy", expression="smiling", clothing="uniform"),
    ]
    tags = GeneralTags(count="2people", artists="someone", objects="umbrella", other="rain")
    parsed = decode(encode(characters, tags, "walking home together"))
    assert parsed.characters == characters
    assert parsed.general_tags == tags
    assert parsed.caption == "walking home together"


def test_round_trip_through_final_prompt() -> None:
    body = encode([Character(name="Rin", gender="1girl")])
    final = build_final_prompt(DEFAULT_SYSTEM_PROMPT, body)
    assert final == f"{DEFAULT_SYSTEM_PROMPT}\n<Prompt Start>,{body}"
    assert decode(final).characters[0].name == "Rin"
