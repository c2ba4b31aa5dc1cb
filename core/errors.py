"""
Story Chain - Errors

Exception hierarchy shared by the pipeline stages and the API layer.
"""

from typing import Any, Optional


class StoryChainError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(StoryChainError):
    """Caller input is missing or inconsistent; raised before any network call."""


class ScriptGenerationError(StoryChainError):
    """Scene scripts could not satisfy the three-scene contract."""


class PromptOptimizationError(StoryChainError):
    """The prompt optimization service failed or is not configured."""


class VideoGenerationError(StoryChainError):
    """A single scene clip failed to generate or download."""

    def __init__(
        self,
        scene_index: int,
        message: str,
        validation_details: Optional[list[dict[str, Any]]] = None,
    ):
        self.scene_index = scene_index
        self.validation_details = validation_details or []
        super().__init__(f"Failed to generate video {scene_index + 1}: {message}")


class ConcatenationError(StoryChainError):
    """The encoder failed to join the scene clips."""

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)
