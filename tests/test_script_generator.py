"""
Tests for scene script generation.

Uses mocks to test without calling actual APIs.
"""

import json
import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from core.constants import CONTINUOUS_ACTION_MARKER, DEFAULT_ENVIRONMENT, DURATION_MARKER
from core.errors import ValidationError
from pipeline.characters import load_character_presets
from pipeline.script_generator import (
    ScriptGenerator,
    build_template_scripts,
    enforce_consistency,
    parse_scripts_response,
    select_environment,
)

PRESETS_FILE = Path(__file__).parent.parent / "config" / "characters.yaml"

WIZARD_DESCRIPTION = (
    "An elderly wizard with a long flowing silver beard, a tall pointed "
    "midnight-blue hat and matching star-embroidered robes"
)


@pytest.fixture
def presets():
    return load_character_presets(PRESETS_FILE)


def make_llm(responses=None, configured=True):
    llm = MagicMock()
    llm.is_configured.return_value = configured
    llm.chat = AsyncMock(side_effect=responses or [])
    return llm


# ============================================================================
# Parsing Tests
# ============================================================================

def test_parse_plain_array():
    """Test parsing a bare JSON array of three scripts."""
    scripts = parse_scripts_response(json.dumps(["one", "two", "three"]))
    assert scripts == ["one", "two", "three"]


def test_parse_fenced_object():
    """Test parsing a fenced object with a scenes key."""
    response = '```json\n{"scenes": ["a", "b", "c"]}\n```'
    assert parse_scripts_response(response) == ["a", "b", "c"]


def test_parse_wrong_count():
    """Test a reply with the wrong number of scenes is rejected."""
    assert parse_scripts_response(json.dumps(["a", "b"])) is None


def test_parse_blank_entry():
    """Test a reply with a blank scene is rejected."""
    assert parse_scripts_response(json.dumps(["a", "  ", "c"])) is None


def test_parse_not_json():
    """Test prose and empty replies are rejected."""
    assert parse_scripts_response("Scene 1: the wizard walks in") is None
    assert parse_scripts_response("") is None


# ============================================================================
# Template Tests
# ============================================================================

def test_select_environment_keywords():
    """Test story keywords pick the template setting."""
    assert select_environment("The wizard discovers modern technology") == "sleek modern technology lab"
    assert select_environment("A trip to outer SPACE") == "futuristic space station"
    assert select_environment("an ordinary afternoon") == DEFAULT_ENVIRONMENT


def test_template_scripts_carry_description(presets):
    """Test template scenes repeat the preset description."""
    scripts = build_template_scripts(presets["wizard"], "discovers modern technology")

    assert len(scripts) == 3
    for script in scripts:
        assert WIZARD_DESCRIPTION in script
        assert "sleek modern technology lab" in script


def test_enforce_consistency_adds_markers(presets):
    """Test missing description and clip markers are added."""
    script = enforce_consistency("The wizard waves his staff.", presets["wizard"])

    assert script.startswith(WIZARD_DESCRIPTION)
    assert DURATION_MARKER in script
    assert CONTINUOUS_ACTION_MARKER in script


def test_enforce_consistency_keeps_existing(presets):
    """Test a script that already complies is unchanged."""
    original = f"{WIZARD_DESCRIPTION} casts a continuous spell for 8 seconds."
    assert enforce_consistency(original, presets["wizard"]) == original


# ============================================================================
# Generator Tests
# ============================================================================

@pytest.mark.asyncio
async def test_generate_requires_inputs(presets):
    """Test blank character or prompt is a validation error."""
    generator = ScriptGenerator(make_llm(), presets)

    with pytest.raises(ValidationError):
        await generator.generate("", "a story")
    with pytest.raises(ValidationError):
        await generator.generate("wizard", "   ")


@pytest.mark.asyncio
async def test_generate_fallback_when_unconfigured(presets):
    """Test template scripts are used when no API key is set."""
    llm = make_llm(configured=False)
    generator = ScriptGenerator(llm, presets)

    scripts = await generator.generate("wizard", "discovers modern technology")

    assert len(scripts) == 3
    assert all(WIZARD_DESCRIPTION in s for s in scripts)
    llm.chat.assert_not_called()


@pytest.mark.asyncio
async def test_generate_fallback_on_service_error(presets):
    """Test template scripts are used when the service fails."""
    llm = make_llm(responses=RuntimeError("boom"))
    generator = ScriptGenerator(llm, presets)

    scripts = await generator.generate("Wizard", "discovers modern technology")

    assert len(scripts) == 3
    assert all(WIZARD_DESCRIPTION in s for s in scripts)


@pytest.mark.asyncio
async def test_generate_uses_llm_reply(presets):
    """Test a clean LLM reply is used with the description enforced."""
    reply = json.dumps([
        "Scene 1: the wizard finds a laptop.",
        "Scene 2: the wizard types a spell.",
        "Scene 3: the wizard video-calls a dragon.",
    ])
    llm = make_llm(responses=[reply])
    generator = ScriptGenerator(llm, presets)

    scripts = await generator.generate("wizard", "discovers modern technology")

    assert len(scripts) == 3
    assert "finds a laptop" in scripts[0]
    assert all(s.startswith(WIZARD_DESCRIPTION) for s in scripts)
    assert llm.chat.await_count == 1

    system_prompt = llm.chat.call_args.args[0][0]["content"]
    assert WIZARD_DESCRIPTION in system_prompt


@pytest.mark.asyncio
async def test_generate_requests_extraction(presets):
    """Test an unparseable reply triggers a zero-temperature extraction request."""
    prose = "Scene 1: arrival. Scene 2: trouble. Scene 3: triumph."
    extracted = json.dumps(["arrival", "trouble", "triumph"])
    llm = make_llm(responses=[prose, extracted])
    generator = ScriptGenerator(llm, presets)

    scripts = await generator.generate("pirate", "finds a treasure map")

    assert llm.chat.await_count == 2
    assert llm.chat.call_args.kwargs["temperature"] == 0.0
    assert prose in llm.chat.call_args.args[0][1]["content"]
    assert "arrival" in scripts[0]
    assert "triumph" in scripts[2]


@pytest.mark.asyncio
async def test_generate_free_text_character(presets):
    """Test a free-text character still gets three consistent scenes."""
    generator = ScriptGenerator(make_llm(configured=False), presets)

    scripts = await generator.generate("giant purple octopus", "learns to cook")

    assert len(scripts) == 3
    assert all("giant purple octopus" in s for s in scripts)
    assert all("busy restaurant kitchen" in s for s in scripts)
