"""
Story Chain - FastAPI Application

REST API for script generation, prompt optimization and story video runs.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field

from core.config import ensure_directories, get_paths_config, load_config
from core.constants import DEFAULT_OPTIMIZER_MODEL, SystemPromptMode
from core.errors import StoryChainError, ValidationError
from core.logging import get_logger
from pipeline.prompt_history import PromptHistory, SavedPrompts
from pipeline.prompt_optimizer import PromptOptimizer
from pipeline.script_generator import ScriptGenerator
from pipeline.story_pipeline import (
    RunRegistry,
    StoryPipeline,
    create_pipeline,
    create_prompt_optimizer,
    create_script_generator,
)
from pipeline.video_generator import estimate_cost

logger = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_directories(get_paths_config(get_config()))
    logger.info(f"Story Chain API v{VERSION} ready")
    yield
    await get_script_generator().llm.close()
    await get_prompt_optimizer().llm.close()
    logger.info("Story Chain API stopped")


app = FastAPI(
    title="Story Chain API",
    description="Turn a character and a story prompt into a short video",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Dependencies
# ============================================================================


@lru_cache(maxsize=None)
def get_config() -> dict:
    return load_config()


@lru_cache(maxsize=None)
def get_script_generator() -> ScriptGenerator:
    return create_script_generator(get_config())


@lru_cache(maxsize=None)
def get_prompt_optimizer() -> PromptOptimizer:
    return create_prompt_optimizer(get_config())


@lru_cache(maxsize=None)
def get_pipeline() -> StoryPipeline:
    return create_pipeline(get_config())


@lru_cache(maxsize=None)
def get_prompt_history() -> PromptHistory:
    return PromptHistory(get_paths_config(get_config()).history_file)


@lru_cache(maxsize=None)
def get_saved_prompts() -> SavedPrompts:
    return SavedPrompts(get_paths_config(get_config()).saved_prompts_file)


_run_registry = RunRegistry()


def get_run_registry() -> RunRegistry:
    return _run_registry


app.mount(
    "/output",
    StaticFiles(directory=get_paths_config(get_config()).output_dir, check_dir=False),
    name="output",
)


# ============================================================================
# Error Handling
# ============================================================================


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StoryChainError)
async def pipeline_error_handler(request: Request, exc: StoryChainError):
    logger.error(f"{request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# ============================================================================
# Request Models
# ============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ScriptsRequest(_CamelModel):
    character: str = ""
    prompt: str = ""
    prompts_only: bool = Field(default=False, alias="promptsOnly")


class VideosRequest(_CamelModel):
    scripts: list[str] = Field(default_factory=list)
    character: str = ""
    cleanup: bool = True


class RunRequest(_CamelModel):
    character: str = ""
    prompt: str = ""
    scripts: Optional[list[str]] = None
    optimize: bool = False
    model: str = DEFAULT_OPTIMIZER_MODEL
    cleanup: bool = True


class OptimizeRequest(_CamelModel):
    prompt: str = ""
    character: str = ""
    context: str = ""
    model: str = DEFAULT_OPTIMIZER_MODEL
    image_data: Optional[str] = Field(default=None, alias="imageData")
    custom_system_prompt: Optional[str] = Field(default=None, alias="customSystemPrompt")
    system_prompt_mode: str = Field(default=SystemPromptMode.DEFAULT.value, alias="systemPromptMode")


class OptimizeScenesRequest(_CamelModel):
    prompts: list[str] = Field(default_factory=list)
    character: str = ""
    model: str = DEFAULT_OPTIMIZER_MODEL


class SuggestionsRequest(_CamelModel):
    prompt: str = ""
    model: str = DEFAULT_OPTIMIZER_MODEL
    image_data: Optional[str] = Field(default=None, alias="imageData")
    custom_system_prompt: Optional[str] = Field(default=None, alias="customSystemPrompt")
    system_prompt_mode: str = Field(default=SystemPromptMode.DEFAULT.value, alias="systemPromptMode")


class ImagePromptRequest(_CamelModel):
    model: str = DEFAULT_OPTIMIZER_MODEL
    image_data: Optional[str] = Field(default=None, alias="imageData")
    custom_system_prompt: Optional[str] = Field(default=None, alias="customSystemPrompt")
    system_prompt_mode: str = Field(default=SystemPromptMode.DEFAULT.value, alias="systemPromptMode")


class SavedPromptRequest(_CamelModel):
    prompt: str


# ============================================================================
# Endpoints
# ============================================================================


@app.get("/", response_class=JSONResponse)
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Story Chain API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/api/health",
    }


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "OK", "timestamp": datetime.now().isoformat(), "version": VERSION}


@app.post("/api/generate-scripts")
async def generate_scripts(
    request: ScriptsRequest,
    generator: ScriptGenerator = Depends(get_script_generator),
):
    """Generate three scene scripts and the cost of turning them into video."""
    if not request.character.strip() or not request.prompt.strip():
        raise ValidationError("Character and prompt are required")

    scripts = await generator.generate(request.character, request.prompt)
    estimate = estimate_cost(len(scripts), prompts_only=request.prompts_only)

    return {
        "success": True,
        "scripts": scripts,
        "promptsOnly": request.prompts_only,
        "estimatedCost": estimate.total_cost,
        "cost": estimate.model_dump(by_alias=True),
    }


@app.post("/api/generate-videos")
async def generate_videos(
    request: VideosRequest,
    pipeline: StoryPipeline = Depends(get_pipeline),
    registry: RunRegistry = Depends(get_run_registry),
):
    """Generate one clip per script and concatenate them (blocking)."""
    if not request.scripts:
        raise ValidationError("Valid scripts array is required")

    run_id = registry.create()
    logger.info(f"Generating {len(request.scripts)} videos for character: {request.character} (run {run_id})")

    result = await pipeline.run(
        request.character,
        scripts=request.scripts,
        cleanup=request.cleanup,
        run_id=run_id,
        on_event=registry.publish,
    )

    return {
        "success": True,
        "runId": result.run_id,
        "videoPath": f"/output/{result.video_path.name}",
        "filePath": str(result.video_path),
        "cost": result.cost.model_dump(by_alias=True),
        "message": "Video generation completed successfully",
    }


async def _run_in_background(
    pipeline: StoryPipeline,
    registry: RunRegistry,
    run_id: str,
    request: RunRequest,
) -> None:
    """Background task for a full run; failures are reported as events."""
    try:
        await pipeline.run(
            request.character,
            request.prompt,
            scripts=request.scripts,
            optimize=request.optimize,
            model=request.model,
            cleanup=request.cleanup,
            run_id=run_id,
            on_event=registry.publish,
        )
    except StoryChainError as e:
        logger.error(f"Background run {run_id} failed: {e}")


@app.post("/api/runs")
async def start_run(
    request: RunRequest,
    background_tasks: BackgroundTasks,
    pipeline: StoryPipeline = Depends(get_pipeline),
    registry: RunRegistry = Depends(get_run_registry),
):
    """Start a run in the background; follow it via /api/runs/{run_id}/events."""
    if not request.character.strip():
        raise ValidationError("Character is required")
    if request.scripts is None and not request.prompt.strip():
        raise ValidationError("Prompt or scripts are required")

    run_id = registry.create()
    background_tasks.add_task(_run_in_background, pipeline, registry, run_id, request)

    return {"runId": run_id, "status": "started"}


@app.get("/api/runs/{run_id}")
async def get_run(run_id: str, registry: RunRegistry = Depends(get_run_registry)):
    """Latest status of a run."""
    if not registry.exists(run_id):
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")

    last = registry.status(run_id)
    return {
        "runId": run_id,
        "status": last.model_dump(mode="json") if last else None,
        "events": len(registry.events(run_id)),
    }


@app.get("/api/runs/{run_id}/events")
async def stream_run_events(run_id: str, registry: RunRegistry = Depends(get_run_registry)):
    """Server-sent event stream of a run's status updates."""
    if not registry.exists(run_id):
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")

    async def event_source():
        async for event in registry.stream(run_id):
            yield f"event: {event.stage.value}\ndata: {event.model_dump_json()}\n\n"

    return StreamingResponse(event_source(), media_type="text/event-stream")


@app.get("/api/openrouter-models")
async def list_models(optimizer: PromptOptimizer = Depends(get_prompt_optimizer)):
    """Static catalogue of optimizer models."""
    return {
        "success": True,
        "models": [m.model_dump(by_alias=True) for m in optimizer.list_models()],
    }


@app.get("/api/original-system-prompt")
async def original_system_prompt(optimizer: PromptOptimizer = Depends(get_prompt_optimizer)):
    """The default style guide text."""
    return {"success": True, "systemPrompt": optimizer.get_original_system_prompt()}


@app.post("/api/optimize-prompt")
async def optimize_prompt(
    request: OptimizeRequest,
    optimizer: PromptOptimizer = Depends(get_prompt_optimizer),
    history: PromptHistory = Depends(get_prompt_history),
):
    """Optimize one prompt and record it in the history."""
    result = await optimizer.optimize(
        request.prompt,
        character=request.character,
        context=request.context,
        model=request.model,
        image=request.image_data,
        custom_system_prompt=request.custom_system_prompt,
        mode=request.system_prompt_mode,
    )
    history.add(result)

    return {"success": True, "result": result.model_dump(exclude_none=True)}


@app.post("/api/optimize-scene-prompts")
async def optimize_scene_prompts(
    request: OptimizeScenesRequest,
    optimizer: PromptOptimizer = Depends(get_prompt_optimizer),
):
    """Optimize scene prompts in order; failed items keep their original text."""
    if not request.prompts:
        raise ValidationError("Prompts array is required")

    results = await optimizer.optimize_many(request.prompts, request.character, request.model)
    failed = sum(1 for r in results if r.error)

    return {
        "success": True,
        "results": [r.model_dump(exclude_none=True) for r in results],
        "summary": {
            "total": len(results),
            "succeeded": len(results) - failed,
            "failed": failed,
        },
    }


@app.post("/api/prompt-suggestions")
async def prompt_suggestions(
    request: SuggestionsRequest,
    optimizer: PromptOptimizer = Depends(get_prompt_optimizer),
):
    """Advisory suggestions for a prompt."""
    result = await optimizer.suggest(
        request.prompt,
        model=request.model,
        image=request.image_data,
        custom_system_prompt=request.custom_system_prompt,
        mode=request.system_prompt_mode,
    )
    return {"success": True, "result": result.model_dump()}


@app.post("/api/generate-from-image")
async def generate_from_image(
    request: ImagePromptRequest,
    optimizer: PromptOptimizer = Depends(get_prompt_optimizer),
    history: PromptHistory = Depends(get_prompt_history),
):
    """Write a video prompt from a reference image."""
    result = await optimizer.generate_from_image(
        request.model,
        request.image_data,
        custom_system_prompt=request.custom_system_prompt,
        mode=request.system_prompt_mode,
    )
    history.add(result)

    return {"success": True, "result": result.model_dump(exclude_none=True)}


@app.get("/api/prompt-history")
async def get_history(history: PromptHistory = Depends(get_prompt_history)):
    items = history.items()
    return {
        "success": True,
        "history": [item.model_dump(exclude_none=True) for item in items],
        "count": len(items),
    }


@app.delete("/api/prompt-history")
async def clear_history(history: PromptHistory = Depends(get_prompt_history)):
    history.clear()
    return {"success": True}


@app.get("/api/saved-prompts")
async def list_saved_prompts(saved: SavedPrompts = Depends(get_saved_prompts)):
    return {"success": True, "prompts": saved.all()}


@app.put("/api/saved-prompts/{name}")
async def put_saved_prompt(
    name: str,
    request: SavedPromptRequest,
    saved: SavedPrompts = Depends(get_saved_prompts),
):
    if not request.prompt.strip():
        raise ValidationError("Prompt is required")

    saved.put(name, request.prompt)
    return {"success": True, "name": name}


@app.delete("/api/saved-prompts/{name}")
async def delete_saved_prompt(name: str, saved: SavedPrompts = Depends(get_saved_prompts)):
    if not saved.delete(name):
        raise HTTPException(status_code=404, detail=f"Saved prompt not found: {name}")
    return {"success": True}


# ============================================================================
# Entry Point
# ============================================================================


if __name__ == "__main__":
    import uvicorn

    from core.config import get_server_port

    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=get_server_port(get_config()),
        reload=True,
    )
