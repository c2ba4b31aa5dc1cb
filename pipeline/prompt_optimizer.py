"""
Story Chain - Prompt Optimizer

Rewrite scene prompts against a fixed video-prompt style guide using an
OpenRouter (OpenAI-compatible) completion model.

System prompt modes:
    default: the style guide
    replace: the caller's text alone
    append:  the style guide, a blank line, then the caller's text

Blank caller text under replace/append, or an unknown mode, falls back to
the guide alone.
"""

import asyncio
from pathlib import Path
from typing import Any, Optional, Union

from core.constants import (
    DEFAULT_OPTIMIZER_MODEL,
    IMAGE_PROMPT_ORIGINAL,
    OPENROUTER_MODELS,
    OPTIMIZE_DELAY_SEC,
    SCENE_DURATION_SEC,
    SystemPromptMode,
)
from core.errors import PromptOptimizationError, ValidationError
from core.llm import LLMClient
from core.logging import get_logger
from core.models import ModelInfo, OptimizationResult, SuggestionResult

logger = get_logger(__name__)


OPTIMIZE_PROMPT = f"""Original Prompt: "{{prompt}}"
{{character_line}}
{{context_line}}

Please optimize this prompt using the style guide to create a professional, detailed prompt that will generate high-quality {SCENE_DURATION_SEC}-second video content."""

OPTIMIZE_IMAGE_SUFFIX = (
    "\n\nPlease also analyze the provided reference image and incorporate "
    "relevant visual details into the optimized prompt."
)

SUGGEST_PROMPT = """Analyze this prompt and provide optimization suggestions:

"{prompt}"

What specific improvements would make this prompt more effective for video generation?"""

SUGGEST_IMAGE_SUFFIX = (
    "\n\nPlease also analyze the provided reference image and suggest how visual "
    "elements from the image could enhance the prompt for better video generation."
)

IMAGE_ONLY_PROMPT = f"""Please analyze this image and create a professional video generation prompt based on what you see. Use the style guide to structure your response with all the appropriate components (Subject, Context, Action, Style, Camera, Mood, etc.).

The prompt should be optimized for generating a {SCENE_DURATION_SEC}-second video that captures the essence of what's shown in the image."""


def build_model_catalogue() -> list[ModelInfo]:
    """Static catalogue of selectable completion models."""
    return [
        ModelInfo(id=model_id, name=name, description=description, supports_vision=vision)
        for model_id, name, description, vision in OPENROUTER_MODELS
    ]


def _user_message(text: str, image: Optional[str]) -> dict[str, Any]:
    """Plain text message, or a text + image_url pair when an image is attached."""
    if image:
        return {
            "role": "user",
            "content": [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": image}},
            ],
        }
    return {"role": "user", "content": text}


class PromptOptimizer:
    """
    Style-guide driven prompt rewriter.

    The guide is read from disk the first time it is needed and then reused
    for the lifetime of the optimizer.
    """

    def __init__(
        self,
        llm: LLMClient,
        guide_path: Path,
        models: Optional[list[ModelInfo]] = None,
        delay_sec: float = OPTIMIZE_DELAY_SEC,
    ):
        self.llm = llm
        self.guide_path = Path(guide_path)
        self.models = models if models is not None else build_model_catalogue()
        self.delay_sec = delay_sec
        self._style_guide: Optional[str] = None

    # ------------------------------------------------------------------
    # Catalogue and guide
    # ------------------------------------------------------------------

    def list_models(self) -> list[ModelInfo]:
        return list(self.models)

    def is_vision_model(self, model_id: str) -> bool:
        """Check if a catalogue model accepts image input."""
        return any(m.id == model_id and m.supports_vision for m in self.models)

    @property
    def style_guide(self) -> str:
        """The style guide text, loaded on first access."""
        if self._style_guide is None:
            try:
                self._style_guide = self.guide_path.read_text(encoding="utf-8")
            except OSError as e:
                logger.error(f"Failed to load style guide: {e}")
                raise PromptOptimizationError("Failed to load prompt style guide") from e
            logger.info(f"Loaded prompt style guide from {self.guide_path}")
        return self._style_guide

    def get_original_system_prompt(self) -> str:
        return self.style_guide

    def build_system_prompt(
        self,
        mode: Union[SystemPromptMode, str] = SystemPromptMode.DEFAULT,
        custom_system_prompt: Optional[str] = None,
    ) -> str:
        """
        Resolve the system content for a request.

        Args:
            mode: default, replace or append (anything else means default)
            custom_system_prompt: Caller-supplied instructions

        Returns:
            System prompt text
        """
        try:
            mode = SystemPromptMode(mode)
        except ValueError:
            logger.warning(f"Unknown system prompt mode '{mode}', using default")
            mode = SystemPromptMode.DEFAULT

        custom = (custom_system_prompt or "").strip()

        if mode == SystemPromptMode.REPLACE and custom:
            logger.debug("Using custom system prompt (replace mode)")
            return custom

        if mode == SystemPromptMode.APPEND and custom:
            logger.debug("Using style guide with appended instructions")
            return f"{self.style_guide}\n\n{custom}"

        return self.style_guide

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _complete(self, messages: list[dict[str, Any]], model: str) -> str:
        if not self.llm.is_configured():
            raise PromptOptimizationError("OpenRouter API key not configured")

        try:
            return await self.llm.chat(messages, model=model)
        except Exception as e:
            raise PromptOptimizationError(f"OpenRouter API error: {e}") from e

    async def optimize(
        self,
        prompt: str,
        character: str = "",
        context: str = "",
        model: str = DEFAULT_OPTIMIZER_MODEL,
        image: Optional[str] = None,
        custom_system_prompt: Optional[str] = None,
        mode: Union[SystemPromptMode, str] = SystemPromptMode.DEFAULT,
    ) -> OptimizationResult:
        """
        Optimize a single prompt.

        Args:
            prompt: Prompt to rewrite
            character: Main character, if any
            context: Extra context (e.g. scene position)
            model: Catalogue model id
            image: Reference image URL or data URI; used only with vision models
            custom_system_prompt: Caller instructions for replace/append modes
            mode: System prompt mode

        Returns:
            OptimizationResult
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt is required")

        system_prompt = self.build_system_prompt(mode, custom_system_prompt)

        user_prompt = OPTIMIZE_PROMPT.format(
            prompt=prompt,
            character_line=f"Character: {character}" if character else "",
            context_line=f"Context: {context}" if context else "",
        )

        use_image = bool(image) and self.is_vision_model(model)
        if image and not use_image:
            logger.info(f"Model {model} has no vision support, ignoring image")
        if use_image:
            user_prompt += OPTIMIZE_IMAGE_SUFFIX

        messages = [
            {"role": "system", "content": system_prompt},
            _user_message(user_prompt, image if use_image else None),
        ]

        optimized = await self._complete(messages, model)
        logger.info("Prompt optimized successfully")

        return OptimizationResult(original=prompt, optimized=optimized, character=character)

    async def suggest(
        self,
        prompt: str,
        model: str = DEFAULT_OPTIMIZER_MODEL,
        image: Optional[str] = None,
        custom_system_prompt: Optional[str] = None,
        mode: Union[SystemPromptMode, str] = SystemPromptMode.DEFAULT,
    ) -> SuggestionResult:
        """Advisory suggestions for a prompt; the prompt is not rewritten."""
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt is required")

        system_prompt = self.build_system_prompt(mode, custom_system_prompt)
        user_prompt = SUGGEST_PROMPT.format(prompt=prompt)

        use_image = bool(image) and self.is_vision_model(model)
        if use_image:
            user_prompt += SUGGEST_IMAGE_SUFFIX

        messages = [
            {"role": "system", "content": system_prompt},
            _user_message(user_prompt, image if use_image else None),
        ]

        suggestions = await self._complete(messages, model)
        return SuggestionResult(prompt=prompt, suggestions=suggestions)

    async def generate_from_image(
        self,
        model: str,
        image: Optional[str],
        custom_system_prompt: Optional[str] = None,
        mode: Union[SystemPromptMode, str] = SystemPromptMode.DEFAULT,
    ) -> OptimizationResult:
        """
        Write a video prompt from a reference image alone.

        Raises:
            ValidationError: No image, or the model has no vision support
        """
        if not image:
            raise ValidationError("Image data is required")

        if not self.is_vision_model(model):
            raise ValidationError("Selected model does not support vision capabilities")

        system_prompt = self.build_system_prompt(mode, custom_system_prompt)
        messages = [
            {"role": "system", "content": system_prompt},
            _user_message(IMAGE_ONLY_PROMPT, image),
        ]

        generated = await self._complete(messages, model)
        logger.info("Prompt generated from image successfully")

        return OptimizationResult(original=IMAGE_PROMPT_ORIGINAL, optimized=generated, character="")

    async def optimize_many(
        self,
        prompts: list[str],
        character: str = "",
        model: str = DEFAULT_OPTIMIZER_MODEL,
    ) -> list[OptimizationResult]:
        """
        Optimize scene prompts strictly in order.

        A failed item keeps its original text and records the error; the
        remaining prompts are still processed.

        Returns:
            One OptimizationResult per input prompt, same order
        """
        results: list[OptimizationResult] = []
        total = len(prompts)

        for i, prompt in enumerate(prompts):
            context = f"Scene {i + 1} of {total} in a cohesive story sequence"
            logger.info(f"Optimizing scene {i + 1}/{total}...")

            try:
                result = await self.optimize(prompt, character, context, model)
            except Exception as e:
                logger.error(f"Failed to optimize scene {i + 1}: {e}")
                result = OptimizationResult(
                    original=prompt,
                    optimized=prompt,
                    character=character,
                    error=str(e),
                )

            results.append(result)

            if i < total - 1 and self.delay_sec > 0:
                await asyncio.sleep(self.delay_sec)

        return results
