"""
Mapping of derived character values onto literal template field names.

A character is first reduced to schema-independent *semantic readouts*
(``"modifier:strength" -> "+3"``). Each template schema is an immutable table
from semantic datum to the literal field name used by that template version,
so the same readout lands in ``Str Mod`` on the 2014 MPMB sheet and in
``Text_25`` on the 2024 WotC sheet. Tables are never edited in place; a new
template version gets a new :class:`TemplateSchema` member and its own table.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .character_values import (
    ABILITIES,
    ABILITY_ABBR,
    SKILL_ABILITY_MAP,
    CharacterValues,
    as_dict,
    as_int,
    as_list,
    class_hit_die,
    compute_character_values,
    format_modifier,
)

logger = logging.getLogger(__name__)


class TemplateSchema(str, Enum):
    LEGACY = "legacy"
    CURRENT = "current"


# Checked in order against the lower-cased template file name.
SCHEMA_MARKERS: Tuple[Tuple[str, TemplateSchema], ...] = (("2024", TemplateSchema.CURRENT),)


@dataclass(frozen=True)
class SheetSchema:
    """Field-name table plus the patch directives for one template version."""

    tag: TemplateSchema
    text_fields: Mapping[str, str]
    checkbox_fields: Mapping[str, str]
    # Calculated fields (AC, proficiency bonus) left hand-editable in the export.
    editable_fields: Tuple[str, ...] = ()
    # Dropdowns whose default option renders as a truncated placeholder.
    cleared_dropdowns: Tuple[str, ...] = ()
    # Cosmetic tracker checkboxes hidden like the template's own buttons.
    hidden_checkboxes: Tuple[str, ...] = ()

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(self.text_fields.values()) + tuple(self.checkbox_fields.values())


@dataclass(frozen=True)
class FieldMap:
    schema: TemplateSchema
    text_fields: Dict[str, str] = field(default_factory=dict)
    checkbox_fields: Dict[str, bool] = field(default_factory=dict)
    editable_fields: Tuple[str, ...] = ()
    cleared_dropdowns: Tuple[str, ...] = ()
    hidden_checkboxes: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# 2014 MPMB character sheet
# ---------------------------------------------------------------------------

_MPMB_SKILL_FIELDS = {
    "Acrobatics": "Acr",
    "Animal Handling": "Ani",
    "Arcana": "Arc",
    "Athletics": "Ath",
    "Deception": "Dec",
    "History": "His",
    "Insight": "Ins",
    "Intimidation": "Inti",
    "Investigation": "Inv",
    "Medicine": "Med",
    "Nature": "Nat",
    "Perception": "Perc",
    "Performance": "Perf",
    "Persuasion": "Pers",
    "Religion": "Rel",
    "Sleight of Hand": "Sle",
    "Stealth": "Ste",
    "Survival": "Sur",
}


def _mpmb_tables() -> Tuple[Dict[str, str], Dict[str, str]]:
    text = {
        "name": "PC Name",
        "player_name": "Player Name",
        "class_level": "Class and Levels",
        "character_level": "Character Level",
        "race": "Race",
        "background": "Background",
        "alignment": "Alignment",
    }
    for ability in ABILITIES:
        abbr = ABILITY_ABBR[ability]
        text[f"score:{ability}"] = abbr
        text[f"modifier:{ability}"] = f"{abbr} Mod"
    text["proficiency_bonus"] = "Proficiency Bonus"
    for ability in ABILITIES:
        text[f"save:{ability}"] = f"{ABILITY_ABBR[ability]} ST Mod"
    for skill, abbr in _MPMB_SKILL_FIELDS.items():
        text[f"skill:{skill}"] = abbr
    text.update(
        {
            "passive_perception": "Passive Perception",
            "initiative": "Initiative bonus",
            "speed": "Speed",
            "armor_class": "AC",
            "hp_max": "HP Max",
            "hp_current": "HP Current",
            "hp_temp": "HP Temp",
            "hd1_level": "HD1 Level",
            "hd1_die": "HD1 Die",
            "hd2_level": "HD2 Level",
            "hd2_die": "HD2 Die",
            "hd3_level": "HD3 Level",
            "hd3_die": "HD3 Die",
            "gender": "Sex",
            "age": "Age",
            "height": "Height",
            "weight": "Weight",
            "eyes": "Eyes",
            "skin": "Skin",
            "hair": "Hair",
            "deity": "Faith/Deity",
            "personality": "Personality Trait",
            "ideals": "Ideal",
            "bonds": "Bond",
            "flaws": "Flaw",
            "backstory": "Background_History",
            "features": "Class Features",
            "proficiencies": "MoreProficiencies",
            "weapon_other": "Proficiency Weapon Other Description",
        }
    )

    checkbox = {f"save_prof:{a}": f"{ABILITY_ABBR[a]} ST Prof" for a in ABILITIES}
    checkbox.update({f"skill_prof:{s}": f"{abbr} Prof" for s, abbr in _MPMB_SKILL_FIELDS.items()})
    checkbox.update(
        {
            "armor_prof:light": "Proficiency Armor Light",
            "armor_prof:medium": "Proficiency Armor Medium",
            "armor_prof:heavy": "Proficiency Armor Heavy",
            "armor_prof:shields": "Proficiency Shields",
            "weapon_prof:simple": "Proficiency Weapon Simple",
            "weapon_prof:martial": "Proficiency Weapon Martial",
            "weapon_prof:other": "Proficiency Weapon Other",
        }
    )
    return text, checkbox


# ---------------------------------------------------------------------------
# 2024 WotC character sheet (generic Text_N / Checkbox_N names, mapped by position)
# ---------------------------------------------------------------------------

_WOTC_2024_SKILL_FIELDS = {
    "Acrobatics": ("Text_31", "Checkbox_31"),
    "Animal Handling": ("Text_32", "Checkbox_19"),
    "Arcana": ("Text_33", "Checkbox_20"),
    "Athletics": ("Text_34", "Checkbox_21"),
    "Deception": ("Text_35", "Checkbox_22"),
    "History": ("Text_36", "Checkbox_23"),
    "Insight": ("Text_47", "Checkbox_30"),
    "Intimidation": ("Text_37", "Checkbox_14"),
    "Investigation": ("Text_38", "Checkbox_15"),
    "Medicine": ("Text_39", "Checkbox_16"),
    "Nature": ("Text_40", "Checkbox_17"),
    "Perception": ("Text_41", "Checkbox_18"),
    "Performance": ("Text_42", "Checkbox_24"),
    "Persuasion": ("Text_43", "Checkbox_25"),
    "Religion": ("Text_44", "Checkbox_26"),
    "Sleight of Hand": ("Text_45", "Checkbox_27"),
    "Stealth": ("Text_46", "Checkbox_28"),
    "Survival": ("Text_52", "Checkbox_29"),
}

_WOTC_2024_SAVE_FIELDS = {
    "strength": ("Text_54", "Checkbox_8"),
    "dexterity": ("Text_53", "Checkbox_9"),
    "constitution": ("Text_51", "Checkbox_10"),
    "intelligence": ("Text_48", "Checkbox_11"),
    "wisdom": ("Text_49", "Checkbox_12"),
    "charisma": ("Text_50", "Checkbox_13"),
}

_WOTC_2024_ABILITY_FIELDS = {
    # score, modifier
    "strength": ("Text_22", "Text_25"),
    "dexterity": ("Text_23", "Text_26"),
    "constitution": ("Text_24", "Text_27"),
    "intelligence": ("Text_15", "Text_30"),
    "wisdom": ("Text_20", "Text_28"),
    "charisma": ("Text_21", "Text_29"),
}


def _wotc_2024_tables() -> Tuple[Dict[str, str], Dict[str, str]]:
    text = {
        "name": "Text_1",
        "class_level": "Text_2",
        "race": "Text_3",
        "background": "Text_4",
        "player_name": "Text_5",
    }
    for ability, (score_field, mod_field) in _WOTC_2024_ABILITY_FIELDS.items():
        text[f"score:{ability}"] = score_field
        text[f"modifier:{ability}"] = mod_field
    text.update(
        {
            "armor_class": "Text_14",
            "proficiency_bonus": "Text_7",
            "initiative": "Text_8",
            "speed": "Text_9",
            "hp_max": "Text_10",
            "hp_current": "Text_11",
            "hp_temp": "Text_12",
            "hit_dice": "Text_13",
        }
    )
    for ability, (mod_field, _) in _WOTC_2024_SAVE_FIELDS.items():
        text[f"save:{ability}"] = mod_field
    for skill, (mod_field, _) in _WOTC_2024_SKILL_FIELDS.items():
        text[f"skill:{skill}"] = mod_field
    text.update(
        {
            "proficiencies": "Text_55",
            "features": "Text_57",
            "equipment": "Text_59",
            "backstory": "Text_60",
        }
    )

    checkbox = {f"save_prof:{a}": box for a, (_, box) in _WOTC_2024_SAVE_FIELDS.items()}
    checkbox.update({f"skill_prof:{s}": box for s, (_, box) in _WOTC_2024_SKILL_FIELDS.items()})
    return text, checkbox


def _freeze(
    tag: TemplateSchema,
    tables: Tuple[Dict[str, str], Dict[str, str]],
    editable_data: Tuple[str, ...] = ("armor_class", "proficiency_bonus"),
    **directives: Tuple[str, ...],
) -> SheetSchema:
    text, checkbox = tables
    return SheetSchema(
        tag=tag,
        text_fields=MappingProxyType(dict(text)),
        checkbox_fields=MappingProxyType(dict(checkbox)),
        editable_fields=tuple(text[d] for d in editable_data if d in text),
        **directives,
    )


SCHEMAS: Mapping[TemplateSchema, SheetSchema] = MappingProxyType(
    {
        TemplateSchema.LEGACY: _freeze(
            TemplateSchema.LEGACY,
            _mpmb_tables(),
            cleared_dropdowns=tuple(f"Attack.{i}.Mod" for i in range(1, 6)),
            hidden_checkboxes=("Inspiration Tracker", "Conditions Tracker", "Exhaustion Tracker"),
        ),
        TemplateSchema.CURRENT: _freeze(TemplateSchema.CURRENT, _wotc_2024_tables()),
    }
)


# ---------------------------------------------------------------------------
# Schema selection
# ---------------------------------------------------------------------------


def select_schema(template_name: Optional[Union[str, "os.PathLike[str]"]]) -> TemplateSchema:
    """Pick the schema from a version marker in the template's file name."""
    if not template_name:
        return TemplateSchema.LEGACY
    filename = os.path.basename(os.fspath(template_name).replace("\\", "/")).lower()
    for marker, tag in SCHEMA_MARKERS:
        if marker in filename:
            return tag
    return TemplateSchema.LEGACY


def get_schema(tag: Union[TemplateSchema, str]) -> SheetSchema:
    return SCHEMAS[TemplateSchema(tag)]


# ---------------------------------------------------------------------------
# Semantic readouts
# ---------------------------------------------------------------------------


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _hit_die_rows(character: Dict[str, Any], values: CharacterValues) -> Dict[str, str]:
    classes = [c for c in as_list(as_dict(character.get("progression")).get("classes")) if isinstance(c, dict)]
    rows = {"hd1_level": str(values.total_level)}
    if not classes:
        return rows
    rows["hd1_die"] = f"d{class_hit_die(classes[0])}"
    for index, cls in enumerate(classes[1:3], start=2):
        if not cls.get("name"):
            continue
        rows[f"hd{index}_level"] = str(as_int(cls.get("levels")))
        rows[f"hd{index}_die"] = f"d{class_hit_die(cls)}"
    return rows


def semantic_readouts(
    character: Dict[str, Any], values: CharacterValues
) -> Tuple[Dict[str, str], Dict[str, bool]]:
    """
    Schema-independent readouts keyed by semantic datum.

    Text values are already formatted for the sheet (signed modifiers, plain
    integer scores); checkbox values are plain booleans.
    """
    character = as_dict(character)
    hit_points = as_dict(character.get("hitPoints"))
    speed = as_dict(character.get("speed"))
    proficiencies = as_dict(character.get("proficiencies"))

    text: Dict[str, str] = {
        "name": _text(character.get("name")),
        "player_name": _text(character.get("playerName")),
        "class_level": values.class_level,
        "character_level": str(values.total_level),
        "race": values.race,
        "background": values.background,
        "alignment": _text(character.get("alignment")),
    }
    for ability in ABILITIES:
        text[f"score:{ability}"] = str(values.score(ability))
        text[f"modifier:{ability}"] = format_modifier(values.modifier(ability))
    text["proficiency_bonus"] = format_modifier(values.proficiency_bonus)
    for ability, save in values.saves.items():
        text[f"save:{ability}"] = format_modifier(save.modifier)
    for skill, check in values.skills.items():
        text[f"skill:{skill}"] = format_modifier(check.modifier)

    walk = speed.get("walk")
    text.update(
        {
            "passive_perception": str(values.passive_perception),
            "initiative": format_modifier(values.initiative),
            "speed": f"{walk} ft" if walk else "30 ft",
            "armor_class": str(values.armor_class),
            "hp_max": str(values.max_hp) if values.max_hp else "",
            "hp_current": _text(hit_points.get("current")),
            "hp_temp": _text(hit_points.get("temp")),
            "hit_dice": values.hit_dice,
        }
    )
    text.update(_hit_die_rows(character, values))
    text.update(
        {
            "gender": _text(character.get("gender")),
            "age": _text(character.get("age")),
            "height": _text(character.get("height")),
            "weight": _text(character.get("weight")),
            "eyes": _text(character.get("eyeColor")),
            "skin": _text(character.get("skinColor")),
            "hair": _text(character.get("hairColor")),
            "deity": _text(character.get("deity")),
            "personality": _text(character.get("personalityTraits")),
            "ideals": _text(character.get("ideals")),
            "bonds": _text(character.get("bonds")),
            "flaws": _text(character.get("flaws")),
            "backstory": _text(character.get("backstory")),
            "features": values.features,
            "proficiencies": values.proficiencies,
            "equipment": values.equipment,
        }
    )

    checkbox: Dict[str, bool] = {}
    for ability, save in values.saves.items():
        checkbox[f"save_prof:{ability}"] = save.proficient
    for skill in SKILL_ABILITY_MAP:
        checkbox[f"skill_prof:{skill}"] = values.skills[skill].proficient

    armor = [a.lower() for a in as_list(proficiencies.get("armor")) if isinstance(a, str)]
    checkbox["armor_prof:light"] = any("light" in a for a in armor)
    checkbox["armor_prof:medium"] = any("medium" in a for a in armor)
    checkbox["armor_prof:heavy"] = any("heavy" in a for a in armor)
    checkbox["armor_prof:shields"] = any("shield" in a for a in armor)

    weapons = [w for w in as_list(proficiencies.get("weapons")) if isinstance(w, str)]
    checkbox["weapon_prof:simple"] = any("simple" in w.lower() for w in weapons)
    checkbox["weapon_prof:martial"] = any("martial" in w.lower() for w in weapons)
    other = [w for w in weapons if "simple" not in w.lower() and "martial" not in w.lower()]
    checkbox["weapon_prof:other"] = bool(other)
    if other:
        text["weapon_other"] = ", ".join(other)

    return text, checkbox


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_field_map(
    character: Dict[str, Any],
    template_name: Optional[Union[str, "os.PathLike[str]"]] = None,
    values: Optional[CharacterValues] = None,
) -> FieldMap:
    """
    Build the field-name keyed dictionaries for one template.

    Args:
        character: Serialized character record.
        template_name: Template file name or path; selects the schema.
        values: Precomputed derived values, computed here when omitted.

    Returns:
        A :class:`FieldMap` holding only names the schema's table knows.
    """
    schema = get_schema(select_schema(template_name))
    values = values if values is not None else compute_character_values(character)
    text_readouts, checkbox_readouts = semantic_readouts(character, values)

    text_fields = {name: text_readouts[datum] for datum, name in schema.text_fields.items() if datum in text_readouts}
    checkbox_fields = {
        name: checkbox_readouts[datum] for datum, name in schema.checkbox_fields.items() if datum in checkbox_readouts
    }

    logger.debug(
        "Built %s field map: %d text, %d checkbox",
        schema.tag.value,
        len(text_fields),
        len(checkbox_fields),
    )
    return FieldMap(
        schema=schema.tag,
        text_fields=text_fields,
        checkbox_fields=checkbox_fields,
        editable_fields=schema.editable_fields,
        cleared_dropdowns=schema.cleared_dropdowns,
        hidden_checkboxes=schema.hidden_checkboxes,
    )
