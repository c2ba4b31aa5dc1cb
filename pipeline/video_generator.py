"""
Story Chain - Scene Video Generator

Generate one 8-second clip per scene script via the fal.ai video endpoint.

Workflow: subscribe (submit + poll until done) -> download video -> temp file

Clips are generated strictly in scene order. The batch is fail-fast: a
partial clip set is useless without concatenation, so the first failure
aborts the remaining scenes.

Environment Variables:
    FAL_KEY: fal.ai API key
    STORY_VIDEO_MODEL: Endpoint override (default: fal-ai/veo3)
    TEMP_DIR: Where scene clips are written
"""

import time
from pathlib import Path
from typing import Any, Callable, Optional

import fal_client
import httpx
from rich.markup import escape

from core.constants import (
    COST_CURRENCY,
    COST_PER_SECOND_USD,
    COST_PER_VIDEO_USD,
    COST_WARNING,
    SCENE_DURATION_SEC,
    RunStage,
)
from core.errors import VideoGenerationError
from core.logging import get_logger
from core.models import CostEstimate, RunEvent, VideoConfig, new_run_id

logger = get_logger(__name__)

EventCallback = Callable[[RunEvent], None]


# ============================================================================
# Cost
# ============================================================================

def estimate_cost(number_of_videos: int, prompts_only: bool = False) -> CostEstimate:
    """
    Estimate spend for a batch of clips.

    Pricing is per generated second; a prompts-only run generates no video
    and costs nothing.
    """
    total = 0.0 if prompts_only else number_of_videos * COST_PER_VIDEO_USD

    return CostEstimate(
        number_of_videos=number_of_videos,
        seconds_per_video=SCENE_DURATION_SEC,
        cost_per_second=COST_PER_SECOND_USD,
        cost_per_video=COST_PER_VIDEO_USD,
        total_cost=total,
        currency=COST_CURRENCY,
        prompts_only=prompts_only,
        warning="" if prompts_only else COST_WARNING,
    )


# ============================================================================
# Error Details
# ============================================================================

def extract_validation_details(error: Exception) -> list[dict[str, str]]:
    """
    Pull per-field validation messages out of a service error.

    The service reports request validation failures as
    {"detail": [{"loc": [...], "msg": "...", "type": "..."}]}, either on an
    attached HTTP response or as the exception payload.
    """
    candidates: list[Any] = []

    response = getattr(error, "response", None)
    if isinstance(response, httpx.Response):
        try:
            candidates.append(response.json())
        except ValueError:
            logger.debug("Service error response is not JSON")

    candidates.extend(error.args)

    for candidate in candidates:
        if isinstance(candidate, dict):
            candidate = candidate.get("detail")
        if not isinstance(candidate, list) or not candidate:
            continue
        if not all(isinstance(item, dict) for item in candidate):
            continue

        return [
            {
                "field": ".".join(str(p) for p in item.get("loc", []) if p != "body"),
                "message": str(item.get("msg", "")),
                "type": str(item.get("type", "")),
            }
            for item in candidate
        ]

    return []


# ============================================================================
# Generator
# ============================================================================

class VideoGenerator:
    """Clip generator for scene scripts."""

    def __init__(self, config: VideoConfig, temp_dir: Path):
        self.config = config
        self.temp_dir = Path(temp_dir)
        self._client: Optional[fal_client.AsyncClient] = None

    @property
    def client(self) -> fal_client.AsyncClient:
        """Get or create the fal.ai client."""
        if self._client is None:
            self._client = fal_client.AsyncClient(key=self.config.api_key or None)
        return self._client

    def is_available(self) -> bool:
        return bool(self.config.api_key)

    def clip_path(self, index: int, run_id: str) -> Path:
        """Temp path for scene `index` (0-based) of a run."""
        timestamp = int(time.time() * 1000)
        return self.temp_dir / f"scene_{index + 1}_{run_id}_{timestamp}.mp4"

    async def generate(
        self,
        scene_script: str,
        character: str,
        index: int,
        run_id: Optional[str] = None,
    ) -> Path:
        """
        Generate and download the clip for one scene.

        Args:
            scene_script: Prompt for the scene
            character: Main character (logged for traceability)
            index: 0-based scene index
            run_id: Owning run; a fresh id is used when omitted

        Returns:
            Path to the downloaded clip

        Raises:
            VideoGenerationError: carrying the scene index and any
                per-field validation detail from the service
        """
        run_id = run_id or new_run_id()
        output_path = self.clip_path(index, run_id)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Generating video {index + 1} for {character}: {scene_script[:100]}...")

        try:
            result = await self.client.subscribe(
                self.config.model,
                arguments={
                    "prompt": scene_script,
                    "aspect_ratio": self.config.aspect_ratio,
                },
            )

            video_url = ((result or {}).get("video") or {}).get("url")
            if not video_url:
                raise VideoGenerationError(index, "No video data received from video generation API")

            logger.info(f"Video {index + 1} generated, downloading...")
            await self._download_video(video_url, output_path)

        except VideoGenerationError:
            raise
        except Exception as e:
            details = extract_validation_details(e)
            for detail in details:
                logger.error(escape(f"  Validation error on {detail['field'] or 'request'}: {detail['message']}"))
            logger.error(escape(f"Error generating video {index + 1}: {e}"))
            raise VideoGenerationError(index, str(e), details) from e

        logger.info(f"Video {index + 1} saved to: {output_path}")
        return output_path

    async def _download_video(self, url: str, output_path: Path) -> None:
        """Download video from URL."""
        async with httpx.AsyncClient(timeout=self.config.download_timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            output_path.write_bytes(response.content)

    async def generate_all(
        self,
        scripts: list[str],
        character: str,
        run_id: Optional[str] = None,
        on_event: Optional[EventCallback] = None,
    ) -> list[Path]:
        """
        Generate clips for all scenes, in order, stopping at the first failure.

        Returns:
            Clip paths, index-aligned with `scripts`
        """
        run_id = run_id or new_run_id()
        total = len(scripts)
        estimate = estimate_cost(total)

        logger.info(f"Starting video generation for {total} scenes (run {run_id})")
        logger.info(f"Total estimated cost: ${estimate.total_cost:.2f}")

        paths: list[Path] = []
        for i, script in enumerate(scripts):
            _emit(on_event, RunEvent(
                run_id=run_id,
                stage=RunStage.SCENE_GENERATING,
                scene_index=i,
                total_scenes=total,
                message=f"Scene {i + 1} generating",
            ))

            try:
                path = await self.generate(script, character, i, run_id)
            except VideoGenerationError:
                logger.error(f"Failed to generate video {i + 1}, aborting remaining scenes")
                raise

            paths.append(path)
            progress = (i + 1) / total * 100
            logger.info(f"Progress: {progress:.1f}% ({i + 1}/{total} videos completed)")

            _emit(on_event, RunEvent(
                run_id=run_id,
                stage=RunStage.SCENE_COMPLETE,
                scene_index=i,
                total_scenes=total,
                message=f"Scene {i + 1} complete",
                data={"path": str(path)},
            ))

        logger.info("All videos generated successfully")
        return paths


def _emit(on_event: Optional[EventCallback], event: RunEvent) -> None:
    if on_event is not None:
        on_event(event)
