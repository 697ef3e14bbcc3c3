import copy

import pytest

from sheet_export.character_values import compute_character_values
from sheet_export.field_mapping import (
    SCHEMAS,
    TemplateSchema,
    build_field_map,
    get_schema,
    select_schema,
)


@pytest.mark.parametrize(
    "name,expected",
    [
        ("templates/WotC Character Sheet 2024.pdf", TemplateSchema.CURRENT),
        ("sheet_2024_v2.PDF", TemplateSchema.CURRENT),
        ("C:\\Sheets\\Player-2024.pdf", TemplateSchema.CURRENT),
        ("MPMB Character Record Sheet.pdf", TemplateSchema.LEGACY),
        ("2024-archive/old sheet.pdf", TemplateSchema.LEGACY),
        ("", TemplateSchema.LEGACY),
        (None, TemplateSchema.LEGACY),
    ],
)
def test_select_schema(name, expected):
    assert select_schema(name) == expected


def test_schema_tables_share_no_field_names():
    legacy = set(get_schema(TemplateSchema.LEGACY).field_names)
    current = set(get_schema(TemplateSchema.CURRENT).field_names)
    assert legacy and current
    assert not legacy & current


def test_schema_tables_are_immutable():
    schema = SCHEMAS[TemplateSchema.LEGACY]
    with pytest.raises(TypeError):
        schema.text_fields["name"] = "Something Else"
    with pytest.raises(TypeError):
        SCHEMAS[TemplateSchema.CURRENT] = schema


def test_field_maps_differ_completely_between_schemas(tordek):
    legacy = build_field_map(tordek, "MPMB Sheet.pdf")
    current = build_field_map(tordek, "WotC Sheet 2024.pdf")

    assert legacy.schema == TemplateSchema.LEGACY
    assert current.schema == TemplateSchema.CURRENT
    assert not set(legacy.text_fields) & set(current.text_fields)
    assert not set(legacy.checkbox_fields) & set(current.checkbox_fields)


def test_build_field_map_is_pure_and_idempotent(tordek):
    snapshot = copy.deepcopy(tordek)
    first = build_field_map(tordek, "MPMB Sheet.pdf")
    second = build_field_map(tordek, "MPMB Sheet.pdf")

    assert first == second
    assert list(first.text_fields.items()) == list(second.text_fields.items())
    assert tordek == snapshot


def test_legacy_readouts(tordek):
    fields = build_field_map(tordek, "MPMB Sheet.pdf")
    text, boxes = fields.text_fields, fields.checkbox_fields

    assert text["PC Name"] == "Tordek"
    assert text["Str"] == "16"
    assert text["Str Mod"] == "+3"
    assert text["Con"] == "16"
    assert text["Con Mod"] == "+3"
    assert text["Str ST Mod"] == "+6"
    assert text["Ath"] == "+6"
    assert text["Inti"] == "+2"
    assert text["Ste"] == "+1"
    assert text["Passive Perception"] == "12"
    assert text["AC"] == "11"
    assert text["Proficiency Bonus"] == "+3"
    assert text["Initiative bonus"] == "+1"
    assert text["Race"] == "Hill Dwarf"
    assert text["Class and Levels"] == "Fighter 5 (Champion)"
    assert text["Speed"] == "25 ft"
    assert text["HP Max"] == "44"
    assert text["HP Temp"] == "0"
    assert text["HD1 Level"] == "5"
    assert text["HD1 Die"] == "d10"
    assert "HD2 Level" not in text
    assert text["Sex"] == "Male"
    assert text["Background_History"] == "Veteran of the goblin wars."

    assert boxes["Ath Prof"] is True
    assert boxes["Ste Prof"] is False
    assert boxes["Str ST Prof"] is True
    assert boxes["Dex ST Prof"] is False
    assert boxes["Proficiency Armor Heavy"] is True
    assert boxes["Proficiency Shields"] is True
    assert boxes["Proficiency Weapon Martial"] is True
    assert boxes["Proficiency Weapon Other"] is True
    assert text["Proficiency Weapon Other Description"] == "Battleaxe"


def test_current_readouts(tordek):
    fields = build_field_map(tordek, "WotC Sheet 2024.pdf")
    text, boxes = fields.text_fields, fields.checkbox_fields

    assert text["Text_1"] == "Tordek"
    assert text["Text_22"] == "16"
    assert text["Text_25"] == "+3"
    assert text["Text_34"] == "+6"
    assert text["Text_14"] == "11"
    assert text["Text_7"] == "+3"
    assert text["Text_13"] == "5d10"
    assert boxes["Checkbox_21"] is True
    assert boxes["Checkbox_28"] is False
    assert fields.hidden_checkboxes == ()
    assert fields.cleared_dropdowns == ()


def test_semantic_readouts_match_across_schemas(tordek):
    legacy = build_field_map(tordek, "MPMB Sheet.pdf").text_fields
    current = build_field_map(tordek, "WotC Sheet 2024.pdf").text_fields

    pairs = [
        ("Str Mod", "Text_25"),
        ("Str", "Text_22"),
        ("Ath", "Text_34"),
        ("AC", "Text_14"),
        ("Proficiency Bonus", "Text_7"),
        ("Initiative bonus", "Text_8"),
        ("PC Name", "Text_1"),
        ("Class and Levels", "Text_2"),
    ]
    for legacy_name, current_name in pairs:
        assert legacy[legacy_name] == current[current_name]


def test_legacy_patch_directives():
    fields = build_field_map({}, "MPMB Sheet.pdf")
    assert fields.editable_fields == ("AC", "Proficiency Bonus")
    assert fields.cleared_dropdowns == tuple(f"Attack.{i}.Mod" for i in range(1, 6))
    assert "Exhaustion Tracker" in fields.hidden_checkboxes


def test_multiclass_hit_dice_rows():
    character = {
        "progression": {
            "classes": [
                {"name": "Fighter", "levels": 2},
                {"name": "Wizard", "levels": 3},
                {"name": "", "levels": 1},
            ]
        }
    }
    text = build_field_map(character, "MPMB Sheet.pdf").text_fields
    assert text["HD1 Level"] == "6"
    assert text["HD1 Die"] == "d10"
    assert text["HD2 Level"] == "3"
    assert text["HD2 Die"] == "d6"
    assert "HD3 Level" not in text


def test_missing_data_defaults():
    text = build_field_map({}, "MPMB Sheet.pdf").text_fields
    assert text["PC Name"] == ""
    assert text["Speed"] == "30 ft"
    assert text["HP Current"] == ""
    assert text["Str Mod"] == "-5"
    assert "Proficiency Weapon Other Description" not in text


def test_precomputed_values_are_used(tordek):
    values = compute_character_values(tordek)
    assert build_field_map(tordek, "MPMB Sheet.pdf", values=values) == build_field_map(tordek, "MPMB Sheet.pdf")


def test_malformed_record_shapes_are_tolerated():
    character = {
        "proficiencies": {"armor": 5, "weapons": "Martial Weapons"},
        "progression": {"classes": {"name": "Fighter"}},
        "hitPoints": [44],
        "speed": "fast",
    }
    field_map = build_field_map(character, "MPMB Sheet.pdf")
    assert field_map.checkbox_fields["Proficiency Armor Light"] is False
    assert field_map.checkbox_fields["Proficiency Weapon Simple"] is False
    assert field_map.text_fields["HD1 Level"] == "1"
    assert field_map.text_fields["Speed"] == "30 ft"
    assert field_map == build_field_map(character, "MPMB Sheet.pdf", values=compute_character_values(character))
