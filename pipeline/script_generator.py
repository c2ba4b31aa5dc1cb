"""
Story Chain - Scene Script Generator

Turn a character and a story prompt into exactly three scene scripts for
8-second video clips.

Fallback chain:
    1. Ask the script writer for a JSON array of three scenes
    2. If the reply does not parse, ask it to reformat its own output
    3. If anything fails, build deterministic template scenes from the
       character preset and keywords in the story prompt

The generator never raises for an upstream failure; callers always get a
usable triple.
"""

import json
from typing import Optional

from core.constants import (
    BANNED_NEGATIONS,
    CONTINUOUS_ACTION_MARKER,
    DEFAULT_ENVIRONMENT,
    DURATION_MARKER,
    ENVIRONMENT_KEYWORDS,
    SCENE_COUNT,
    SCENE_DURATION_SEC,
)
from core.errors import ScriptGenerationError, ValidationError
from core.llm import LLMClient, strip_code_fences
from core.logging import get_logger
from pipeline.characters import CharacterPreset, CharacterPresets, resolve_character

logger = get_logger(__name__)

_BANNED_WORDS = ", ".join(BANNED_NEGATIONS)


# ============================================================================
# Prompts
# ============================================================================

SCRIPT_SYSTEM_PROMPT = f"""You are a script writer for short-form AI-generated video.
Turn a character and a story prompt into exactly {SCENE_COUNT} scene descriptions, each for one {SCENE_DURATION_SEC}-second video clip.

Rules:
- Each scene is one paragraph and lasts exactly {SCENE_DURATION_SEC} seconds
- Each scene states: Subject, Context, Action, Camera, Style, Ambiance, Audio
- The same character appears in every scene; repeat this exact description word for word in each scene: "{{description}}"
- Character details to keep consistent: {{consistency}}
- Audio is continuous for the whole clip: ambient sound plus any dialogue, never silence
- Describe only what is present; avoid negation words ({_BANNED_WORDS})
- Dialogue format: {{name}} says: "line of dialogue" (spoken aloud, shown without subtitles)
- The three scenes form one story: setup, complication, resolution

Respond with a JSON array of exactly {SCENE_COUNT} strings and nothing else."""

SCRIPT_USER_PROMPT = """Character: {character}
Story prompt: {story_prompt}

Write the {count} scene scripts now."""

EXTRACTION_PROMPT = f"""Reformat the following text into a JSON array of exactly {SCENE_COUNT} strings, one complete scene description per string.
Keep the wording of each scene. Output only the JSON array.

Text:
{{text}}"""


# ============================================================================
# Parsing
# ============================================================================

def parse_scripts_response(response: str) -> Optional[list[str]]:
    """
    Parse a JSON array of scene scripts.

    Returns:
        List of exactly SCENE_COUNT non-empty strings, or None if the
        response does not satisfy that shape.
    """
    if not response:
        return None

    try:
        data = json.loads(strip_code_fences(response))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse scripts JSON: {e}")
        return None

    if isinstance(data, dict):
        data = data.get("scenes") or data.get("scripts")

    if not isinstance(data, list) or len(data) != SCENE_COUNT:
        logger.warning(f"Expected {SCENE_COUNT} scripts, got {len(data) if isinstance(data, list) else 0}")
        return None

    scripts = [s.strip() for s in data if isinstance(s, str)]
    if len(scripts) != SCENE_COUNT or not all(scripts):
        return None

    return scripts


def select_environment(story_prompt: str) -> str:
    """Pick a setting for template scenes from keywords in the prompt."""
    prompt_lower = story_prompt.lower()

    for keywords, environment in ENVIRONMENT_KEYWORDS:
        if any(keyword in prompt_lower for keyword in keywords):
            return environment

    return DEFAULT_ENVIRONMENT


def enforce_consistency(script: str, preset: CharacterPreset) -> str:
    """
    Ensure a script carries the canonical description and the clip markers.

    The description is prepended when it is not already present verbatim;
    duration and continuous-action markers are appended when absent.
    """
    script = script.strip()

    if preset.description and preset.description not in script:
        script = f"{preset.description}. {script}"

    script_lower = script.lower()
    if f"{SCENE_DURATION_SEC} second" not in script_lower and f"{SCENE_DURATION_SEC}-second" not in script_lower:
        script = f"{script} {DURATION_MARKER}"

    if "continuous" not in script_lower:
        script = f"{script} {CONTINUOUS_ACTION_MARKER}"

    return script


# ============================================================================
# Templates
# ============================================================================

def build_template_scripts(preset: CharacterPreset, story_prompt: str) -> list[str]:
    """Deterministic three-scene story used when the script writer fails."""
    environment = select_environment(story_prompt)
    story = story_prompt.strip().rstrip(".")
    who = preset.name.replace("_", " ")

    audio = f"{who} speaks in a {preset.voice}" if preset.voice else f"{who} speaks clearly"
    mannerisms = f" Mannerisms: {preset.mannerisms}." if preset.mannerisms else ""
    equipment = f" Carrying {preset.equipment}." if preset.equipment else ""

    return [
        (
            f"Scene 1: Subject: {preset.description}. Context: a {environment}, establishing the story: {story}. "
            f"Action: {who} arrives and looks around with curiosity.{mannerisms}{equipment} "
            f"Camera: slow dolly-in from a wide shot to a medium shot. Style: cinematic, warm natural lighting. "
            f"Ambiance: lively background sounds of the {environment}. Audio: {audio}, introducing the situation."
        ),
        (
            f"Scene 2: Subject: {preset.description}. Context: deeper inside the {environment}, the story develops: {story}. "
            f"Action: {who} faces an unexpected challenge and reacts expressively.{mannerisms} "
            f"Camera: handheld medium close-up following the action. Style: cinematic, dynamic contrast lighting. "
            f"Ambiance: rising tension in the surrounding sounds. Audio: {audio}, reacting to the challenge."
        ),
        (
            f"Scene 3: Subject: {preset.description}. Context: the {environment} at golden hour, the story resolves: {story}. "
            f"Action: {who} triumphs and celebrates the outcome.{equipment} "
            f"Camera: slow crane up into a wide closing shot. Style: cinematic finale, soft backlight. "
            f"Ambiance: calm, satisfying ambient sound. Audio: {audio}, delivering a closing line."
        ),
    ]


# ============================================================================
# Generator
# ============================================================================

class ScriptGenerator:
    """
    Scene script writer backed by a completion service.

    Character presets are injected as read-only configuration data.
    """

    def __init__(self, llm: LLMClient, presets: CharacterPresets):
        self.llm = llm
        self.presets = presets

    async def generate(self, character: str, story_prompt: str) -> list[str]:
        """
        Generate exactly three scene scripts.

        Args:
            character: Preset name or free-text character
            story_prompt: What happens in the story

        Returns:
            List of SCENE_COUNT scene scripts, in story order
        """
        if not character or not character.strip() or not story_prompt or not story_prompt.strip():
            raise ValidationError("Character and prompt are required")

        preset = resolve_character(character, self.presets)
        logger.info(f"Generating scripts for character: {character}, prompt: {story_prompt[:80]}")

        scripts = None
        if self.llm.is_configured():
            try:
                scripts = await self._generate_with_llm(preset, character, story_prompt)
            except Exception as e:
                logger.warning(f"Script generation failed: {e}")
        else:
            logger.warning("Script writer not configured")

        if scripts is None:
            logger.info("Using fallback template scripts")
            scripts = build_template_scripts(preset, story_prompt)

        scripts = [enforce_consistency(script, preset) for script in scripts]

        if len(scripts) != SCENE_COUNT or not all(scripts):
            raise ScriptGenerationError(f"Expected {SCENE_COUNT} scripts, got {len(scripts)}")

        return scripts

    async def _generate_with_llm(
        self,
        preset: CharacterPreset,
        character: str,
        story_prompt: str,
    ) -> Optional[list[str]]:
        """Ask for scripts, then for a clean reformat if the first reply does not parse."""
        system_prompt = SCRIPT_SYSTEM_PROMPT.format(
            description=preset.description,
            consistency=preset.consistency_notes or "appearance and costume",
            name=preset.name.replace("_", " ").title(),
        )
        user_prompt = SCRIPT_USER_PROMPT.format(
            character=character,
            story_prompt=story_prompt,
            count=SCENE_COUNT,
        )

        response = await self.llm.chat([
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ])

        scripts = parse_scripts_response(response)
        if scripts:
            return scripts

        logger.warning("Script reply was not a clean JSON array, requesting extraction")
        extracted = await self.llm.chat(
            [
                {"role": "system", "content": "You convert text into strict JSON. Output JSON only."},
                {"role": "user", "content": EXTRACTION_PROMPT.format(text=response)},
            ],
            temperature=0.0,
        )

        return parse_scripts_response(extracted)
