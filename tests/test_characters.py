"""
Tests for character presets.
"""

import pytest
from pathlib import Path

from pipeline.characters import (
    find_preset,
    load_character_presets,
    normalize_character_name,
    resolve_character,
)

PRESETS_FILE = Path(__file__).parent.parent / "config" / "characters.yaml"


@pytest.fixture
def presets():
    return load_character_presets(PRESETS_FILE)


def test_normalize_character_name():
    """Test names are lower-cased with spaces and hyphens collapsed."""
    assert normalize_character_name("  Wise Wizard ") == "wise_wizard"
    assert normalize_character_name("storm-trooper") == "storm_trooper"


def test_presets_loaded(presets):
    """Test the bundled presets file loads every character."""
    assert {"stormtrooper", "wizard", "pirate", "robot", "astronaut", "knight"} <= set(presets)
    assert presets["wizard"].description.startswith("An elderly wizard")


def test_presets_read_only(presets):
    """Test the loaded mapping rejects writes."""
    with pytest.raises(TypeError):
        presets["dragon"] = presets["wizard"]


def test_find_by_alias(presets):
    """Test alias lookup and a miss."""
    assert find_preset("Sorcerer", presets).name == "wizard"
    assert find_preset("dragon", presets) is None


def test_resolve_free_text(presets):
    """Test an unknown character gets a generic consistency profile."""
    preset = resolve_character("Friendly Dragon", presets)

    assert preset.is_preset is False
    assert "Friendly Dragon" in preset.description


def test_missing_file(tmp_path):
    """Test a missing presets file yields an empty mapping."""
    assert len(load_character_presets(tmp_path / "missing.yaml")) == 0


def test_custom_file(tmp_path):
    """Test loading a user-supplied presets file with aliases."""
    path = tmp_path / "characters.yaml"
    path.write_text(
        "Space Cat:\n  description: An orange tabby in a tiny spacesuit\n  aliases: [astro cat]\n",
        encoding="utf-8",
    )

    presets = load_character_presets(path)

    assert presets["space_cat"].description == "An orange tabby in a tiny spacesuit"
    assert find_preset("astro cat", presets).name == "space_cat"
    assert presets["space_cat"].consistency_notes == ""


def test_consistency_notes(presets):
    """Test voice, mannerisms and equipment are joined for the script writer."""
    notes = presets["wizard"].consistency_notes

    assert notes.startswith("voice: ")
    assert "mannerisms: " in notes
    assert "equipment: gnarled oak staff" in notes
