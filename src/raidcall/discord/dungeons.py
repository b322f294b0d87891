"""Dungeon catalog and class list used by the run and headcount commands.

Each dungeon declares the key types raiders can report for it; those types
become key buttons on the public panel and reaction types in the ledger.
"""

from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True)
class Dungeon:
    key: str
    label: str
    key_types: tuple[str, ...] = ()
    color: int = 0x95A5A6
    exalted: bool = False


DUNGEONS: dict[str, Dungeon] = {
    d.key: d
    for d in (
        Dungeon(
            "ORYX_3",
            "Oryx's Sanctuary",
            ("WC_INC", "SHIELD_RUNE", "SWORD_RUNE", "HELM_RUNE"),
            0x8E44AD,
            exalted=True,
        ),
        Dungeon("SHATTERS", "The Shatters", ("SHATTERS_KEY",), 0x2C3E50, exalted=True),
        Dungeon("LOST_HALLS", "Lost Halls", ("LH_KEY", "VIAL"), 0x7F8C8D, exalted=True),
        Dungeon("MOONLIGHT_VILLAGE", "Moonlight Village", ("MV_KEY",), 0x34495E, exalted=True),
        Dungeon("FUNGAL_CAVERN", "Fungal Cavern", ("FUNGAL_KEY",), 0x27AE60, exalted=True),
        Dungeon("NEST", "The Nest", ("NEST_KEY",), 0xF39C12, exalted=True),
        Dungeon("TOMB", "Tomb of the Ancients", ("TOMB_KEY",), 0xD4AC0D),
        Dungeon("CULT", "Cultist Hideout", ("CULT_KEY",), 0xC0392B),
        Dungeon("VOID", "The Void", ("VOID_KEY",), 0x1B2631),
        Dungeon("PUB_HALLS", "Public Halls"),
    )
}

# Organizer callouts announced as progression pings, keyed by dungeon then
# by the short id carried in the button custom id.
PROGRESSION_CALLOUTS: dict[str, dict[str, str]] = {
    "ORYX_3": {
        "realm": "Realm Closed",
        "mini": "Miniboss",
        "third": "Third Room - Join Sanctuary now!",
    },
}

_ABBREVIATIONS = frozenset({"WC", "LH", "MV"})

CLASSES: tuple[str, ...] = (
    "Archer",
    "Assassin",
    "Bard",
    "Druid",
    "Huntress",
    "Kensei",
    "Knight",
    "Mystic",
    "Necromancer",
    "Ninja",
    "Paladin",
    "Priest",
    "Rogue",
    "Samurai",
    "Sorcerer",
    "Summoner",
    "Trickster",
    "Warrior",
    "Wizard",
)


def get_dungeon(key: str) -> Dungeon | None:
    return DUNGEONS.get(key)


def dungeon_label(key: str) -> str:
    dungeon = DUNGEONS.get(key)
    return dungeon.label if dungeon else format_key_label(key)


def format_key_label(key_type: str) -> str:
    """``SHIELD_RUNE`` -> ``Shield Rune``; abbreviations stay upper-case."""
    return " ".join(
        word if word in _ABBREVIATIONS else word.capitalize() for word in key_type.split("_")
    )


def search_dungeons(query: str, limit: int = 25) -> list[Dungeon]:
    """Autocomplete search. Prefix matches beat substring matches; exalted
    dungeons rank above the rest; ties fall back to label order."""
    q = query.strip().lower()
    if not q:
        return sorted(DUNGEONS.values(), key=lambda d: (not d.exalted, d.label))[:limit]

    scored: list[tuple[int, str, Dungeon]] = []
    for dungeon in DUNGEONS.values():
        label = dungeon.label.lower()
        code = dungeon.key.lower()
        score = 0
        if label.startswith(q):
            score += 3
        elif q in label:
            score += 2
        if code.startswith(q):
            score += 2
        elif q in code:
            score += 1
        if score == 0:
            continue
        if dungeon.exalted:
            score += 100
        scored.append((-score, dungeon.label, dungeon))
    scored.sort(key=lambda item: (item[0], item[1]))
    return [dungeon for _, _, dungeon in scored[:limit]]
