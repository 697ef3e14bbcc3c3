"""
Derived game values for a character record.

Everything here is a pure function of the record: no I/O, no randomness and no
module-level caches. Missing or malformed data falls back to empty/zero values
so a half-built character still exports.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, NamedTuple, Set

ABILITIES = ("strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma")
ABILITY_ABBR = {
    "strength": "Str",
    "dexterity": "Dex",
    "constitution": "Con",
    "intelligence": "Int",
    "wisdom": "Wis",
    "charisma": "Cha",
}

SKILL_ABILITY_MAP = {
    "Acrobatics": "dexterity",
    "Animal Handling": "wisdom",
    "Arcana": "intelligence",
    "Athletics": "strength",
    "Deception": "charisma",
    "History": "intelligence",
    "Insight": "wisdom",
    "Intimidation": "charisma",
    "Investigation": "intelligence",
    "Medicine": "wisdom",
    "Nature": "intelligence",
    "Perception": "wisdom",
    "Performance": "charisma",
    "Persuasion": "charisma",
    "Religion": "intelligence",
    "Sleight of Hand": "dexterity",
    "Stealth": "dexterity",
    "Survival": "wisdom",
}

CLASS_HIT_DICE = {
    "barbarian": 12,
    "bard": 8,
    "cleric": 8,
    "druid": 8,
    "fighter": 10,
    "monk": 8,
    "paladin": 10,
    "ranger": 10,
    "rogue": 8,
    "sorcerer": 6,
    "warlock": 8,
    "wizard": 6,
}
DEFAULT_HIT_DIE = 8

OPTIONAL_PROFICIENCY_SOURCES = ("race", "class", "background")


class AbilityScore(NamedTuple):
    score: int
    modifier: int


class CheckValue(NamedTuple):
    modifier: int
    proficient: bool


@dataclass(frozen=True)
class CharacterValues:
    """Single-pass result of :func:`compute_character_values`."""

    abilities: Dict[str, AbilityScore]
    proficiency_bonus: int
    total_level: int
    max_hp: int
    saves: Dict[str, CheckValue]
    skills: Dict[str, CheckValue]
    passive_perception: int
    armor_class: int
    initiative: int
    class_level: str = ""
    race: str = ""
    background: str = ""
    hit_dice: str = ""
    features: str = ""
    proficiencies: str = ""
    equipment: str = ""
    skill_proficiencies: FrozenSet[str] = frozenset()

    def score(self, ability: str) -> int:
        return self.abilities[ability].score

    def modifier(self, ability: str) -> int:
        return self.abilities[ability].modifier


# ---------------------------------------------------------------------------
# Defensive accessors
# ---------------------------------------------------------------------------


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool) or value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _classes(character: Dict[str, Any]) -> List[Dict[str, Any]]:
    progression = as_dict(character.get("progression"))
    return [c for c in as_list(progression.get("classes")) if isinstance(c, dict)]


def _lowered(values: Any) -> List[str]:
    return [v.lower() for v in as_list(values) if isinstance(v, str)]


# ---------------------------------------------------------------------------
# Core rules
# ---------------------------------------------------------------------------


def ability_modifier(score: int) -> int:
    return (score - 10) // 2


def format_modifier(modifier: int) -> str:
    """Signed modifier text: ``+2``, ``-1``, ``+0``."""
    return f"+{modifier}" if modifier >= 0 else str(modifier)


def final_ability_score(character: Dict[str, Any], ability: str) -> int:
    """Base score plus every bonus entry for the ability; all sources stack."""
    base = as_int(as_dict(character.get("abilityScores")).get(ability))
    bonuses = as_list(as_dict(character.get("abilityBonuses")).get(ability))
    return base + sum(as_int(as_dict(b).get("value")) for b in bonuses)


def total_level(character: Dict[str, Any]) -> int:
    return sum(as_int(c.get("levels")) for c in _classes(character)) or 1


def proficiency_bonus_for_level(level: int) -> int:
    return (level - 1) // 4 + 2


def proficiency_bonus(character: Dict[str, Any]) -> int:
    return proficiency_bonus_for_level(total_level(character))


def class_hit_die(cls: Dict[str, Any]) -> int:
    explicit = as_int(cls.get("hitDice"))
    if explicit:
        return explicit
    return CLASS_HIT_DICE.get(_as_text(cls.get("name")).lower(), DEFAULT_HIT_DIE)


def fallback_max_hp(character: Dict[str, Any], con_modifier: int) -> int:
    """
    Max HP rebuilt from class progression.

    The first level overall gets the full hit die; every later level gets the
    fixed average (half the die plus one). CON applies to every level.
    """
    hp = 0
    first_level = True
    for cls in _classes(character):
        hit_die = class_hit_die(cls)
        for _ in range(max(as_int(cls.get("levels")), 0)):
            if first_level:
                hp += hit_die + con_modifier
                first_level = False
            else:
                hp += hit_die // 2 + 1 + con_modifier
    return max(hp, 1)


def collect_skill_proficiencies(character: Dict[str, Any]) -> Set[str]:
    """Lower-cased union of explicit skills and every optional selection."""
    skills = set(_lowered(as_dict(character.get("proficiencies")).get("skills")))

    optional = as_dict(as_dict(character.get("optionalProficiencies")).get("skills"))
    skills.update(_lowered(optional.get("selected")))
    for source in OPTIONAL_PROFICIENCY_SOURCES:
        skills.update(_lowered(as_dict(optional.get(source)).get("selected")))
    return skills


def _is_save_proficient(ability: str, save_proficiencies: List[str]) -> bool:
    return ability in save_proficiencies or ABILITY_ABBR[ability].lower() in save_proficiencies


# ---------------------------------------------------------------------------
# Text blocks
# ---------------------------------------------------------------------------


def format_class_level(character: Dict[str, Any]) -> str:
    entries = []
    for cls in _classes(character):
        name = _as_text(cls.get("name"))
        if not name:
            continue
        levels = as_int(cls.get("levels"))
        if levels:
            name += f" {levels}"
        subclass = _as_text(cls.get("subclass"))
        if subclass:
            name += f" ({subclass})"
        entries.append(name)
    return " / ".join(entries)


def format_hit_dice(character: Dict[str, Any]) -> str:
    return " / ".join(
        f"{as_int(cls.get('levels'))}d{class_hit_die(cls)}"
        for cls in _classes(character)
        if cls.get("name") and as_int(cls.get("levels"))
    )


def format_race(character: Dict[str, Any]) -> str:
    race = character.get("race")
    if isinstance(race, str):
        return race
    race = as_dict(race)
    return " ".join(p for p in (_as_text(race.get("subrace")), _as_text(race.get("name"))) if p)


def format_background(character: Dict[str, Any]) -> str:
    background = character.get("background")
    if isinstance(background, str):
        return background
    return _as_text(as_dict(background).get("name"))


def format_proficiencies(character: Dict[str, Any]) -> str:
    proficiencies = as_dict(character.get("proficiencies"))
    sections = []
    for label, key in (("Armor", "armor"), ("Weapons", "weapons"), ("Tools", "tools"), ("Languages", "languages")):
        entries = [_as_text(v) for v in as_list(proficiencies.get(key)) if v]
        if entries:
            sections.append(f"{label}: {', '.join(entries)}")
    return "\n".join(sections)


def format_features(character: Dict[str, Any]) -> str:
    features = as_dict(character.get("features"))
    parts = []

    darkvision = as_int(features.get("darkvision"))
    if darkvision:
        parts.append(f"Darkvision {darkvision} ft.")

    resistances = [_as_text(r) for r in as_list(features.get("resistances")) if r]
    if resistances:
        parts.append(f"Resistances: {', '.join(resistances)}")

    for name, data in as_dict(features.get("traits")).items():
        description = _as_text(data.get("description")) if isinstance(data, dict) else _as_text(data)
        parts.append(f"{name}: {description}" if description else name)

    for feat in as_list(character.get("feats")):
        name = feat if isinstance(feat, str) else _as_text(as_dict(feat).get("name"))
        if name:
            parts.append(name)
    return "\n".join(parts)


def format_equipment(character: Dict[str, Any]) -> str:
    lines = []
    for item in as_list(as_dict(character.get("inventory")).get("items")):
        item = as_dict(item)
        quantity = as_int(item.get("quantity"))
        suffix = f" (x{quantity})" if quantity > 1 else ""
        lines.append(f"{_as_text(item.get('name')) or 'Unknown'}{suffix}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def compute_character_values(character: Dict[str, Any]) -> CharacterValues:
    """
    Compute every derived value the sheet needs in one pass.

    Args:
        character: Serialized character record. Never mutated.

    Returns:
        A frozen :class:`CharacterValues`.
    """
    character = as_dict(character)

    abilities = {}
    for ability in ABILITIES:
        score = final_ability_score(character, ability)
        abilities[ability] = AbilityScore(score, ability_modifier(score))

    level = total_level(character)
    prof_bonus = proficiency_bonus_for_level(level)

    save_proficiencies = _lowered(as_dict(character.get("proficiencies")).get("savingThrows"))
    saves = {}
    for ability in ABILITIES:
        proficient = _is_save_proficient(ability, save_proficiencies)
        saves[ability] = CheckValue(abilities[ability].modifier + (prof_bonus if proficient else 0), proficient)

    skill_proficiencies = collect_skill_proficiencies(character)
    skills = {}
    for skill, ability in SKILL_ABILITY_MAP.items():
        proficient = skill.lower() in skill_proficiencies
        skills[skill] = CheckValue(abilities[ability].modifier + (prof_bonus if proficient else 0), proficient)

    wisdom_mod = abilities["wisdom"].modifier
    passive_perception = 10 + wisdom_mod + (prof_bonus if "perception" in skill_proficiencies else 0)

    max_hp = as_int(as_dict(character.get("hitPoints")).get("max"))
    if max_hp == 0:
        max_hp = fallback_max_hp(character, abilities["constitution"].modifier)

    dex_mod = abilities["dexterity"].modifier
    return CharacterValues(
        abilities=abilities,
        proficiency_bonus=prof_bonus,
        total_level=level,
        max_hp=max_hp,
        saves=saves,
        skills=skills,
        passive_perception=passive_perception,
        armor_class=10 + dex_mod,
        initiative=dex_mod,
        class_level=format_class_level(character),
        race=format_race(character),
        background=format_background(character),
        hit_dice=format_hit_dice(character),
        features=format_features(character),
        proficiencies=format_proficiencies(character),
        equipment=format_equipment(character),
        skill_proficiencies=frozenset(skill_proficiencies),
    )
