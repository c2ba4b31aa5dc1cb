"""
Story Chain - Character Presets

Read-only character presets that keep a character's look, voice and props
consistent across every scene of a story.

Presets are configuration data (config/characters.yaml), loaded once and
handed to the script generator as an immutable mapping keyed by normalized
character name.

Usage:
    from pipeline.characters import load_character_presets, resolve_character

    presets = load_character_presets(Path("config/characters.yaml"))
    preset = resolve_character("Wizard", presets)
    print(preset.description)
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

import yaml

from core.logging import get_logger

logger = get_logger(__name__)

CharacterPresets = Mapping[str, "CharacterPreset"]


@dataclass(frozen=True)
class CharacterPreset:
    """Static bundle describing one recurring character."""

    name: str
    description: str
    voice: str = ""
    mannerisms: str = ""
    equipment: str = ""
    aliases: tuple[str, ...] = field(default_factory=tuple)
    is_preset: bool = True

    @property
    def consistency_notes(self) -> str:
        """Voice, mannerisms and props as one sentence fragment."""
        parts = []
        if self.voice:
            parts.append(f"voice: {self.voice}")
        if self.mannerisms:
            parts.append(f"mannerisms: {self.mannerisms}")
        if self.equipment:
            parts.append(f"equipment: {self.equipment}")
        return "; ".join(parts)


def normalize_character_name(name: str) -> str:
    """Lower-case, trim, and collapse whitespace/hyphens to underscores."""
    return re.sub(r"[\s\-]+", "_", name.strip().lower())


def load_character_presets(path: Path) -> CharacterPresets:
    """
    Load character presets from a YAML file.

    Expected layout:

        wizard:
          description: ...
          voice: ...
          mannerisms: ...
          equipment: ...
          aliases: [mage, sorcerer]

    Args:
        path: YAML file with one mapping per character

    Returns:
        Read-only mapping of normalized name -> CharacterPreset.
        Empty when the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Character presets not found: {path}, using free-text characters only")
        return MappingProxyType({})

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    presets: dict[str, CharacterPreset] = {}
    for key, data in raw.items():
        data = data or {}
        name = normalize_character_name(str(key))
        presets[name] = CharacterPreset(
            name=name,
            description=str(data.get("description", "")).strip(),
            voice=str(data.get("voice", "")).strip(),
            mannerisms=str(data.get("mannerisms", "")).strip(),
            equipment=str(data.get("equipment", "")).strip(),
            aliases=tuple(normalize_character_name(a) for a in data.get("aliases", [])),
        )

    logger.info(f"Loaded {len(presets)} character presets from {path}")
    return MappingProxyType(presets)


def find_preset(character: str, presets: CharacterPresets) -> Optional[CharacterPreset]:
    """Look up a preset by normalized name or alias."""
    key = normalize_character_name(character)

    if key in presets:
        return presets[key]

    for preset in presets.values():
        if key in preset.aliases:
            return preset

    return None


def resolve_character(character: str, presets: CharacterPresets) -> CharacterPreset:
    """
    Get the preset for a character, or a free-text profile when none matches.

    Free-text characters get a generic consistency description built from
    the name itself so downstream scripts always carry one.
    """
    preset = find_preset(character, presets)
    if preset:
        return preset

    name = character.strip()
    return CharacterPreset(
        name=name,
        description=f"The {name}, with the same distinctive appearance and costume in every shot",
        is_preset=False,
    )
