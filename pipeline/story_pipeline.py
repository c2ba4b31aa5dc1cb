"""
Story Chain - Story Pipeline

Sequence the stages of one story run:

    character + prompt
        -> 3 scene scripts
        -> (optional) optimized scripts
        -> 3 scene clips (sequential, fail-fast)
        -> 1 concatenated video

Each run gets an opaque run id that names its temp clips and tags every
status event. Events go to an `on_event` callback; `RunRegistry` fans them
out to subscribers (the API's event stream).

Usage:
    python -m pipeline.story_pipeline run wizard "discovers modern technology"
    python -m pipeline.story_pipeline scripts pirate "finds a treasure map"
    python -m pipeline.story_pipeline cost --count 3
"""

import asyncio
import json
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import typer
from rich.table import Table

from core.config import (
    ensure_directories,
    get_llm_config,
    get_optimizer_config,
    get_paths_config,
    get_server_port,
    get_video_config,
    load_config,
)
from core.constants import DEFAULT_OPTIMIZER_MODEL, MAX_FINISHED_RUNS, TERMINAL_STAGES, RunStage
from core.errors import ConcatenationError, StoryChainError, ValidationError
from core.llm import LLMClient
from core.logging import get_console, get_logger
from core.models import PipelineResult, RunEvent, new_run_id
from pipeline.characters import load_character_presets
from pipeline.prompt_optimizer import PromptOptimizer
from pipeline.script_generator import ScriptGenerator
from pipeline.video_concatenator import VideoConcatenator
from pipeline.video_generator import EventCallback, VideoGenerator, estimate_cost

logger = get_logger(__name__)
console = get_console()

app = typer.Typer(
    name="story-chain",
    help="Character story video generator",
    add_completion=False,
)


# ============================================================================
# Run Registry
# ============================================================================

class RunRegistry:
    """
    In-memory event log per run with fan-out to subscribers.

    Subscribers receive every event already published for the run, then new
    events as they arrive, until a terminal stage.

    Only the `max_finished` most recent finished runs are retained. A finished
    run with a subscriber still attached is never evicted.
    """

    def __init__(self, max_finished: int = MAX_FINISHED_RUNS):
        self.max_finished = max_finished
        self._events: dict[str, list[RunEvent]] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def create(self, run_id: Optional[str] = None) -> str:
        run_id = run_id or new_run_id()
        self._events.setdefault(run_id, [])
        self._subscribers.setdefault(run_id, [])
        return run_id

    def exists(self, run_id: str) -> bool:
        return run_id in self._events

    def publish(self, event: RunEvent) -> None:
        self._events.setdefault(event.run_id, []).append(event)
        for queue in self._subscribers.get(event.run_id, []):
            queue.put_nowait(event)

        if event.stage in TERMINAL_STAGES:
            self._evict_finished()

    def _evict_finished(self) -> None:
        """Forget the oldest finished, unwatched runs beyond `max_finished`."""
        finished = [
            run_id
            for run_id, events in self._events.items()
            if events and events[-1].stage in TERMINAL_STAGES and not self._subscribers.get(run_id)
        ]

        for run_id in finished[:max(0, len(finished) - self.max_finished)]:
            del self._events[run_id]
            self._subscribers.pop(run_id, None)
            logger.debug(f"Evicted finished run {run_id}")

    def status(self, run_id: str) -> Optional[RunEvent]:
        """Most recent event for a run."""
        events = self._events.get(run_id)
        return events[-1] if events else None

    def events(self, run_id: str) -> list[RunEvent]:
        return list(self._events.get(run_id, []))

    async def stream(self, run_id: str) -> AsyncIterator[RunEvent]:
        """Yield past and future events for a run until it finishes."""
        queue: asyncio.Queue = asyncio.Queue()
        for event in self._events.get(run_id, []):
            queue.put_nowait(event)
        self._subscribers.setdefault(run_id, []).append(queue)

        try:
            while True:
                event = await queue.get()
                yield event
                if event.stage in TERMINAL_STAGES:
                    break
        finally:
            self._subscribers[run_id].remove(queue)
            self._evict_finished()


# ============================================================================
# Pipeline
# ============================================================================

class StoryPipeline:
    """Script -> (optimize) -> clips -> final video."""

    def __init__(
        self,
        script_generator: ScriptGenerator,
        video_generator: VideoGenerator,
        concatenator: VideoConcatenator,
        optimizer: Optional[PromptOptimizer] = None,
    ):
        self.script_generator = script_generator
        self.video_generator = video_generator
        self.concatenator = concatenator
        self.optimizer = optimizer

    async def run(
        self,
        character: str,
        prompt: str = "",
        *,
        scripts: Optional[list[str]] = None,
        optimize: bool = False,
        model: str = DEFAULT_OPTIMIZER_MODEL,
        cleanup: bool = True,
        run_id: Optional[str] = None,
        on_event: Optional[EventCallback] = None,
    ) -> PipelineResult:
        """
        Execute one story run.

        Args:
            character: Preset name or free-text character
            prompt: Story prompt; required unless `scripts` is given
            scripts: Pre-written scene scripts, skipping script generation
            optimize: Rewrite scripts with the prompt optimizer first
            model: Optimizer model id
            cleanup: Delete temp clips after a successful concatenation
            run_id: Explicit run id (generated when omitted)
            on_event: Callback receiving each RunEvent

        Returns:
            PipelineResult

        Raises:
            StoryChainError: The first failing stage's error, after a
                `failed` event has been emitted
        """
        run_id = run_id or new_run_id()

        def emit(stage: RunStage, message: str = "", **data: Any) -> None:
            if on_event is not None:
                on_event(RunEvent(
                    run_id=run_id,
                    stage=stage,
                    total_scenes=len(scripts or []),
                    message=message,
                    data=data,
                ))

        emit(RunStage.STARTED, f"Run started for {character}")

        try:
            if not character or not character.strip():
                raise ValidationError("Character is required")

            if scripts is None:
                scripts = await self.script_generator.generate(character, prompt)
            elif not scripts or not all(isinstance(s, str) and s.strip() for s in scripts):
                raise ValidationError("Valid scripts array is required")

            scripts = list(scripts)
            emit(RunStage.SCRIPTS_READY, f"{len(scripts)} scene scripts ready", scripts=scripts)

            optimization = []
            if optimize:
                if self.optimizer is None:
                    raise ValidationError("Prompt optimizer is not configured")
                optimization = await self.optimizer.optimize_many(scripts, character, model)
                scripts = [result.optimized for result in optimization]
                failed = sum(1 for result in optimization if result.error)
                emit(RunStage.SCRIPTS_OPTIMIZED, f"Scripts optimized ({failed} kept original)")

            if not self.video_generator.is_available():
                raise StoryChainError("fal.ai API key not configured (set FAL_KEY)")
            if not self.concatenator.is_available():
                raise ConcatenationError(f"Video concatenation failed: {self.concatenator.ffmpeg_bin} not found")

            clips = await self.video_generator.generate_all(scripts, character, run_id, on_event)
            if len(clips) != len(scripts):
                raise StoryChainError(f"Expected {len(scripts)} clips, got {len(clips)}")

            if not self.concatenator.validate_files(clips):
                raise StoryChainError("Generated clips failed validation")

            emit(RunStage.CONCATENATING, f"Concatenating {len(clips)} clips")
            video_path = await self.concatenator.concatenate(clips, character, run_id)
            emit(RunStage.CONCATENATION_COMPLETE, "Concatenation complete", path=str(video_path))

            if cleanup:
                await self.concatenator.cleanup(clips)

            result = PipelineResult(
                run_id=run_id,
                character=character,
                scripts=scripts,
                clip_paths=[] if cleanup else clips,
                video_path=video_path,
                cost=estimate_cost(len(clips)),
                optimization=optimization,
            )

        except Exception as e:
            logger.error(f"Run {run_id} failed: {e}")
            emit(RunStage.FAILED, str(e))
            raise

        emit(RunStage.COMPLETE, "Video generation completed successfully", path=str(video_path))
        return result


# ============================================================================
# Factories
# ============================================================================

def create_script_generator(config: Optional[dict] = None) -> ScriptGenerator:
    config = config if config is not None else load_config()
    paths = get_paths_config(config)
    return ScriptGenerator(
        LLMClient.from_config(get_llm_config(config)),
        load_character_presets(paths.characters_file),
    )


def create_prompt_optimizer(config: Optional[dict] = None) -> PromptOptimizer:
    config = config if config is not None else load_config()
    paths = get_paths_config(config)
    return PromptOptimizer(
        LLMClient.from_config(get_optimizer_config(config)),
        paths.guide_file,
    )


def create_video_generator(config: Optional[dict] = None) -> VideoGenerator:
    config = config if config is not None else load_config()
    return VideoGenerator(get_video_config(config), get_paths_config(config).temp_dir)


def create_concatenator(config: Optional[dict] = None) -> VideoConcatenator:
    config = config if config is not None else load_config()
    return VideoConcatenator(get_paths_config(config).output_dir)


def create_pipeline(config: Optional[dict] = None) -> StoryPipeline:
    """Build a pipeline with every stage wired from configuration."""
    config = config if config is not None else load_config()
    return StoryPipeline(
        script_generator=create_script_generator(config),
        video_generator=create_video_generator(config),
        concatenator=create_concatenator(config),
        optimizer=create_prompt_optimizer(config),
    )


# ============================================================================
# CLI Commands
# ============================================================================

def _print_event(event: RunEvent) -> None:
    color = "red" if event.stage == RunStage.FAILED else "cyan"
    console.print(f"  [{color}]{event.stage.value}[/{color}] {event.message}", markup=True, highlight=False)


@app.command()
def run(
    character: str = typer.Argument(..., help="Character preset or free text"),
    prompt: str = typer.Argument(..., help="Story prompt"),
    optimize: bool = typer.Option(False, "--optimize", help="Optimize scripts before generating video"),
    model: str = typer.Option(DEFAULT_OPTIMIZER_MODEL, "--model", "-m", help="Optimizer model"),
    keep_clips: bool = typer.Option(False, "--keep-clips", help="Keep temp scene clips"),
) -> None:
    """
    Generate a complete story video.
    """
    console.print("[bold cyan]=== Story Chain ===[/bold cyan]\n")

    estimate = estimate_cost(3)
    console.print(f"Character: {character}")
    console.print(f"Prompt: {prompt}")
    console.print(f"Estimated cost: ${estimate.total_cost:.2f} {estimate.currency}\n")

    ensure_directories()
    pipeline = create_pipeline()

    try:
        result = asyncio.run(pipeline.run(
            character,
            prompt,
            optimize=optimize,
            model=model,
            cleanup=not keep_clips,
            on_event=_print_event,
        ))
    except StoryChainError as e:
        console.print(f"\n[red]Failed: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[green]Success![/green] {result.video_path}")


@app.command()
def scripts(
    character: str = typer.Argument(..., help="Character preset or free text"),
    prompt: str = typer.Argument(..., help="Story prompt"),
) -> None:
    """
    Generate the three scene scripts only (no video cost).
    """
    generator = create_script_generator()
    result = asyncio.run(generator.generate(character, prompt))

    for i, script in enumerate(result, start=1):
        console.print(f"\n[bold]Scene {i}[/bold]")
        console.print(script, markup=False)


@app.command()
def optimize(
    prompt: str = typer.Argument(..., help="Prompt to optimize"),
    character: str = typer.Option("", "--character", "-c", help="Main character"),
    model: str = typer.Option(DEFAULT_OPTIMIZER_MODEL, "--model", "-m", help="Optimizer model"),
) -> None:
    """
    Optimize a single prompt against the style guide.
    """
    optimizer = create_prompt_optimizer()

    try:
        result = asyncio.run(optimizer.optimize(prompt, character=character, model=model))
    except StoryChainError as e:
        console.print(f"[red]Failed: {e}[/red]")
        raise typer.Exit(1)

    console.print(result.optimized, markup=False)


@app.command()
def concat(
    clips: list[Path] = typer.Argument(..., help="Clips in playback order"),
    character: str = typer.Option("story", "--character", "-c", help="Name used in the output file"),
) -> None:
    """
    Concatenate existing clips into one video.
    """
    concatenator = create_concatenator()

    if not concatenator.is_available():
        console.print("[red]FFmpeg not found. Please install FFmpeg.[/red]")
        raise typer.Exit(1)

    if not concatenator.validate_files(clips):
        console.print("[red]One or more clips are missing or empty[/red]")
        raise typer.Exit(1)

    try:
        output = asyncio.run(concatenator.concatenate(clips, character))
    except StoryChainError as e:
        console.print(f"[red]{e}[/red]", markup=False)
        raise typer.Exit(1)

    console.print(f"[green]Output:[/green] {output}")


@app.command()
def probe(
    path: Path = typer.Argument(..., help="Video file"),
) -> None:
    """
    Show video metadata.
    """
    info = asyncio.run(create_concatenator().probe(path))
    console.print_json(json.dumps(info.model_dump(by_alias=True)))


@app.command()
def cost(
    count: int = typer.Option(3, "--count", "-n", help="Number of clips"),
    prompts_only: bool = typer.Option(False, "--prompts-only", help="Scripts only, no video"),
) -> None:
    """
    Show the cost estimate for a run.
    """
    estimate = estimate_cost(count, prompts_only=prompts_only)
    console.print(f"Clips: {estimate.number_of_videos} x {estimate.seconds_per_video}s")
    console.print(f"Rate: ${estimate.cost_per_second:.2f}/second (${estimate.cost_per_video:.2f}/clip)")
    console.print(f"[bold]Total: ${estimate.total_cost:.2f} {estimate.currency}[/bold]")


@app.command()
def models() -> None:
    """
    List prompt optimizer models.
    """
    table = Table(title="Optimizer Models")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Vision")

    for model in create_prompt_optimizer().list_models():
        table.add_row(model.id, model.name, "yes" if model.supports_vision else "no")

    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default: PORT or 3000)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
) -> None:
    """
    Start the HTTP API.
    """
    import uvicorn

    uvicorn.run("app.main:app", host=host, port=port or get_server_port(), reload=reload)


# ============================================================================
# Entry Point
# ============================================================================

def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
