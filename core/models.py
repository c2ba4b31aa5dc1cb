"""
Story Chain - Pydantic Models

Data models for configuration and for every entity passed between stages.
"""

import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from core.constants import VIDEO_ASPECT_RATIO, RunStage


def _now_iso() -> str:
    return datetime.now().isoformat()


def new_run_id() -> str:
    """Opaque identifier for one pipeline run."""
    return uuid.uuid4().hex[:12]


# ============================================================================
# Configuration
# ============================================================================


class LLMConfig(BaseModel):
    """Configuration for an OpenAI-compatible completion endpoint."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout: int = 60
    default_headers: dict[str, str] = Field(default_factory=dict)


class VideoConfig(BaseModel):
    """Configuration for the video generation service."""

    api_key: str = ""
    model: str = "fal-ai/veo3"
    aspect_ratio: str = VIDEO_ASPECT_RATIO
    download_timeout: int = 120


class PathsConfig(BaseModel):
    """Local storage locations."""

    temp_dir: Path = Path("temp")
    output_dir: Path = Path("output")
    characters_file: Path = Path("config/characters.yaml")
    guide_file: Path = Path("prompts/veo3_guide.md")
    history_file: Path = Path("data/prompt_history.json")
    saved_prompts_file: Path = Path("data/saved_prompts.json")


# ============================================================================
# Prompt Optimization
# ============================================================================


class ModelInfo(BaseModel):
    """Entry in the static completion-model catalogue."""

    id: str
    name: str
    description: str
    supports_vision: bool = Field(default=False, serialization_alias="supportsVision")


class OptimizationResult(BaseModel):
    """Outcome of optimizing one prompt. Shape is persisted by clients."""

    original: str
    optimized: str
    character: str = ""
    timestamp: str = Field(default_factory=_now_iso)
    error: Optional[str] = None


class SuggestionResult(BaseModel):
    """Advisory text for a prompt; the prompt itself is unchanged."""

    prompt: str
    suggestions: str
    timestamp: str = Field(default_factory=_now_iso)


# ============================================================================
# Video
# ============================================================================


class CostEstimate(BaseModel):
    """Projected spend for a batch of clips."""

    number_of_videos: int = Field(serialization_alias="numberOfVideos")
    seconds_per_video: int = Field(serialization_alias="secondsPerVideo")
    cost_per_second: float = Field(serialization_alias="costPerSecond")
    cost_per_video: float = Field(serialization_alias="costPerVideo")
    total_cost: float = Field(serialization_alias="totalCost")
    currency: str = "USD"
    prompts_only: bool = Field(default=False, serialization_alias="promptsOnly")
    warning: str = ""


class VideoStreamInfo(BaseModel):
    width: int = 0
    height: int = 0
    fps: float = 0.0
    codec: str = ""


class AudioStreamInfo(BaseModel):
    codec: str = ""
    sample_rate: int = Field(default=0, serialization_alias="sampleRate")
    channels: int = 0


class VideoInfo(BaseModel):
    """Container and stream metadata reported by ffprobe."""

    duration: float = 0.0
    size: int = 0
    bitrate: int = 0
    video: Optional[VideoStreamInfo] = None
    audio: Optional[AudioStreamInfo] = None


# ============================================================================
# Pipeline Runs
# ============================================================================


class RunEvent(BaseModel):
    """A single status update for a pipeline run."""

    run_id: str
    stage: RunStage
    scene_index: Optional[int] = None
    total_scenes: int = 0
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=_now_iso)


class PipelineResult(BaseModel):
    """Outcome of a complete story run."""

    run_id: str
    character: str
    scripts: list[str]
    clip_paths: list[Path] = Field(default_factory=list)
    video_path: Path
    cost: CostEstimate
    optimization: list[OptimizationResult] = Field(default_factory=list)
