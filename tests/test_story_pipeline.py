"""
Tests for the story pipeline and run registry.

Every stage is mocked; no service or encoder is called.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from core.constants import TERMINAL_STAGES, RunStage
from core.errors import ConcatenationError, StoryChainError, ValidationError, VideoGenerationError
from core.models import OptimizationResult, RunEvent
from pipeline.story_pipeline import RunRegistry, StoryPipeline

SCRIPTS = ["scene one", "scene two", "scene three"]


def make_pipeline(tmp_path, clips_error=None, concat_error=None, valid=True):
    script_generator = MagicMock()
    script_generator.generate = AsyncMock(return_value=list(SCRIPTS))

    clips = [tmp_path / f"scene_{i + 1}.mp4" for i in range(3)]
    video_generator = MagicMock()
    video_generator.is_available.return_value = True
    video_generator.generate_all = AsyncMock(side_effect=clips_error, return_value=clips)

    concatenator = MagicMock()
    concatenator.is_available.return_value = True
    concatenator.ffmpeg_bin = "ffmpeg"
    concatenator.validate_files.return_value = valid
    concatenator.concatenate = AsyncMock(
        side_effect=concat_error,
        return_value=tmp_path / "wizard_story_1.mp4",
    )
    concatenator.cleanup = AsyncMock()

    optimizer = MagicMock()
    optimizer.optimize_many = AsyncMock(return_value=[
        OptimizationResult(original=s, optimized=f"better {s}") for s in SCRIPTS
    ])

    pipeline = StoryPipeline(script_generator, video_generator, concatenator, optimizer)
    return pipeline, clips


# ============================================================================
# Pipeline Tests
# ============================================================================

@pytest.mark.asyncio
async def test_run_success(tmp_path):
    """Test a full run emits stages in order and cleans up clips."""
    pipeline, clips = make_pipeline(tmp_path)
    events = []

    result = await pipeline.run("wizard", "discovers technology", run_id="run1", on_event=events.append)

    assert result.run_id == "run1"
    assert result.scripts == SCRIPTS
    assert result.video_path == tmp_path / "wizard_story_1.mp4"
    assert result.cost.total_cost == 12.0

    pipeline.concatenator.concatenate.assert_awaited_once_with(clips, "wizard", "run1")
    pipeline.concatenator.cleanup.assert_awaited_once_with(clips)

    stages = [e.stage for e in events]
    assert stages == [
        RunStage.STARTED,
        RunStage.SCRIPTS_READY,
        RunStage.CONCATENATING,
        RunStage.CONCATENATION_COMPLETE,
        RunStage.COMPLETE,
    ]
    assert all(e.run_id == "run1" for e in events)


@pytest.mark.asyncio
async def test_run_with_supplied_scripts_skips_generation(tmp_path):
    """Test supplied scripts skip generation and keep clips when asked."""
    pipeline, _ = make_pipeline(tmp_path)

    result = await pipeline.run("wizard", scripts=["a", "b", "c"], cleanup=False)

    pipeline.script_generator.generate.assert_not_called()
    assert result.scripts == ["a", "b", "c"]
    assert len(result.clip_paths) == 3
    pipeline.concatenator.cleanup.assert_not_called()


@pytest.mark.asyncio
async def test_run_rejects_blank_scripts(tmp_path):
    """Test blank supplied scripts fail before any video request."""
    pipeline, _ = make_pipeline(tmp_path)
    events = []

    with pytest.raises(ValidationError):
        await pipeline.run("wizard", scripts=["a", "  "], on_event=events.append)

    assert events[-1].stage == RunStage.FAILED
    pipeline.video_generator.generate_all.assert_not_called()


@pytest.mark.asyncio
async def test_run_with_optimization(tmp_path):
    """Test optimized scripts are the ones sent to video generation."""
    pipeline, _ = make_pipeline(tmp_path)
    events = []

    result = await pipeline.run("wizard", "story", optimize=True, on_event=events.append)

    assert result.scripts == [f"better {s}" for s in SCRIPTS]
    assert RunStage.SCRIPTS_OPTIMIZED in [e.stage for e in events]
    assert pipeline.video_generator.generate_all.call_args.args[0] == result.scripts


@pytest.mark.asyncio
async def test_run_stops_on_video_failure(tmp_path):
    """Test a failed scene stops the run before concatenation."""
    pipeline, _ = make_pipeline(tmp_path, clips_error=VideoGenerationError(1, "quota exceeded"))
    events = []

    with pytest.raises(VideoGenerationError):
        await pipeline.run("wizard", "story", on_event=events.append)

    pipeline.concatenator.concatenate.assert_not_called()
    assert events[-1].stage == RunStage.FAILED
    assert "Failed to generate video 2" in events[-1].message


@pytest.mark.asyncio
async def test_run_keeps_clips_when_concatenation_fails(tmp_path):
    """Test clips are kept when concatenation fails."""
    pipeline, _ = make_pipeline(tmp_path, concat_error=ConcatenationError("encoder failed", stderr="boom"))

    with pytest.raises(ConcatenationError):
        await pipeline.run("wizard", "story")

    pipeline.concatenator.cleanup.assert_not_called()


@pytest.mark.asyncio
async def test_run_invalid_clips(tmp_path):
    """Test clips that fail validation are not concatenated."""
    pipeline, _ = make_pipeline(tmp_path, valid=False)

    with pytest.raises(Exception, match="failed validation"):
        await pipeline.run("wizard", "story")

    pipeline.concatenator.concatenate.assert_not_called()


@pytest.mark.asyncio
async def test_run_requires_video_key_before_spending(tmp_path):
    """Test a missing fal.ai key fails the run before any clip is generated."""
    pipeline, _ = make_pipeline(tmp_path)
    pipeline.video_generator.is_available.return_value = False
    events = []

    with pytest.raises(StoryChainError, match="FAL_KEY"):
        await pipeline.run("wizard", "story", on_event=events.append)

    pipeline.video_generator.generate_all.assert_not_called()
    assert events[-1].stage == RunStage.FAILED


@pytest.mark.asyncio
async def test_run_requires_ffmpeg_before_spending(tmp_path):
    """Test a missing FFmpeg fails the run before any clip is generated."""
    pipeline, _ = make_pipeline(tmp_path)
    pipeline.concatenator.is_available.return_value = False

    with pytest.raises(ConcatenationError, match="ffmpeg not found"):
        await pipeline.run("wizard", "story")

    pipeline.video_generator.generate_all.assert_not_called()


# ============================================================================
# Registry Tests
# ============================================================================

def test_registry_status():
    """Test run status reports the latest event."""
    registry = RunRegistry()
    run_id = registry.create()

    assert registry.exists(run_id)
    assert registry.status(run_id) is None

    registry.publish(RunEvent(run_id=run_id, stage=RunStage.STARTED))
    registry.publish(RunEvent(run_id=run_id, stage=RunStage.SCRIPTS_READY))

    assert registry.status(run_id).stage == RunStage.SCRIPTS_READY
    assert len(registry.events(run_id)) == 2
    assert not registry.exists("unknown")


@pytest.mark.asyncio
async def test_registry_stream_replays_and_follows():
    """Test a subscriber gets past events then live ones until a terminal stage."""
    registry = RunRegistry()
    run_id = registry.create()
    registry.publish(RunEvent(run_id=run_id, stage=RunStage.STARTED))

    async def consume():
        return [event.stage async for event in registry.stream(run_id)]

    task = asyncio.create_task(consume())
    await asyncio.sleep(0)

    registry.publish(RunEvent(run_id=run_id, stage=RunStage.SCENE_GENERATING, scene_index=0))
    registry.publish(RunEvent(run_id=run_id, stage=RunStage.FAILED, message="boom"))

    stages = await asyncio.wait_for(task, timeout=1)

    assert stages == [RunStage.STARTED, RunStage.SCENE_GENERATING, RunStage.FAILED]


def finish_run(registry, stage=RunStage.COMPLETE):
    run_id = registry.create()
    registry.publish(RunEvent(run_id=run_id, stage=RunStage.STARTED))
    registry.publish(RunEvent(run_id=run_id, stage=stage))
    return run_id


def test_registry_keeps_only_recent_finished_runs():
    """Test thousands of finished runs are capped at the newest ones."""
    registry = RunRegistry(max_finished=100)

    run_ids = [finish_run(registry) for _ in range(5000)]

    assert len(registry._events) == 100
    assert not registry.exists(run_ids[0])
    assert registry.exists(run_ids[-1])
    assert registry.status(run_ids[-1]).stage in TERMINAL_STAGES


def test_registry_keeps_unfinished_runs():
    """Test runs still in progress are never evicted."""
    registry = RunRegistry(max_finished=1)
    active = registry.create()
    registry.publish(RunEvent(run_id=active, stage=RunStage.STARTED))

    for _ in range(3):
        finish_run(registry, RunStage.FAILED)

    assert registry.exists(active)
    assert len(registry._events) == 2


@pytest.mark.asyncio
async def test_registry_evicts_after_live_stream_replays():
    """Test a watched finished run survives eviction until its stream ends."""
    registry = RunRegistry(max_finished=2)
    watched = registry.create()
    registry.publish(RunEvent(run_id=watched, stage=RunStage.STARTED))

    async def consume():
        return [event.stage async for event in registry.stream(watched)]

    task = asyncio.create_task(consume())
    await asyncio.sleep(0)

    registry.publish(RunEvent(run_id=watched, stage=RunStage.COMPLETE))
    newer = [finish_run(registry) for _ in range(3)]

    assert registry.exists(watched)
    assert not registry.exists(newer[0])

    stages = await asyncio.wait_for(task, timeout=1)

    assert stages == [RunStage.STARTED, RunStage.COMPLETE]
    assert not registry.exists(watched)
    assert registry.exists(newer[-1])
