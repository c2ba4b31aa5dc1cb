"""
Story Chain - Configuration

Load configuration from YAML files and environment variables.
Environment variables always take precedence over the file.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml

from core.constants import VIDEO_ASPECT_RATIO
from core.logging import get_logger
from core.models import LLMConfig, PathsConfig, VideoConfig

logger = get_logger(__name__)

# Default paths
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
LOGS_DIR = PROJECT_ROOT / "logs"

# Default config file
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.yaml"

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def load_config(config_path: Optional[Path] = None) -> dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file (default: config/settings.yaml)

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return _default_config()

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded config from {config_path}")
    return config


def _default_config() -> dict[str, Any]:
    """Return default configuration."""
    return {
        "llm": {
            "base_url": "https://api.openai.com/v1",
            "model": "gpt-4o",
            "temperature": 0.7,
            "max_tokens": 1000,
        },
        "optimizer": {
            "base_url": OPENROUTER_BASE_URL,
            "temperature": 0.7,
            "max_tokens": 4000,
        },
        "video": {
            "model": "fal-ai/veo3",
            "aspect_ratio": VIDEO_ASPECT_RATIO,
        },
        "paths": {},
        "server": {"port": 3000},
    }


def get_llm_config(config: Optional[dict[str, Any]] = None) -> LLMConfig:
    """
    Get script-generation LLM configuration.

    Env vars:
        OPENAI_API_KEY
        STORY_LLM_BASE_URL
        STORY_LLM_MODEL
    """
    if config is None:
        config = load_config()

    llm_config = config.get("llm", {})

    return LLMConfig(
        base_url=os.environ.get("STORY_LLM_BASE_URL", llm_config.get("base_url", "https://api.openai.com/v1")),
        api_key=os.environ.get("OPENAI_API_KEY", llm_config.get("api_key", "")),
        model=os.environ.get("STORY_LLM_MODEL", llm_config.get("model", "gpt-4o")),
        temperature=float(llm_config.get("temperature", 0.7)),
        max_tokens=int(llm_config.get("max_tokens", 1000)),
        timeout=int(llm_config.get("timeout", 60)),
    )


def get_optimizer_config(config: Optional[dict[str, Any]] = None) -> LLMConfig:
    """
    Get prompt-optimizer (OpenRouter) configuration.

    Env vars:
        OPENROUTER_API_KEY
        OPENROUTER_BASE_URL
    """
    if config is None:
        config = load_config()

    opt_config = config.get("optimizer", {})

    return LLMConfig(
        base_url=os.environ.get("OPENROUTER_BASE_URL", opt_config.get("base_url", OPENROUTER_BASE_URL)),
        api_key=os.environ.get("OPENROUTER_API_KEY", opt_config.get("api_key", "")),
        model=opt_config.get("model", "anthropic/claude-3.5-sonnet"),
        temperature=float(opt_config.get("temperature", 0.7)),
        max_tokens=int(opt_config.get("max_tokens", 4000)),
        timeout=int(opt_config.get("timeout", 120)),
        default_headers={
            "HTTP-Referer": opt_config.get("referer", "https://story-chain.local"),
            "X-Title": opt_config.get("title", "Story Chain Prompt Optimizer"),
        },
    )


def get_video_config(config: Optional[dict[str, Any]] = None) -> VideoConfig:
    """
    Get video generation configuration.

    Env vars:
        FAL_KEY
        STORY_VIDEO_MODEL
    """
    if config is None:
        config = load_config()

    video_config = config.get("video", {})

    return VideoConfig(
        api_key=os.environ.get("FAL_KEY", video_config.get("api_key", "")),
        model=os.environ.get("STORY_VIDEO_MODEL", video_config.get("model", "fal-ai/veo3")),
        aspect_ratio=video_config.get("aspect_ratio", VIDEO_ASPECT_RATIO),
        download_timeout=int(video_config.get("download_timeout", 120)),
    )


def get_paths_config(config: Optional[dict[str, Any]] = None) -> PathsConfig:
    """
    Get local storage paths. Relative paths resolve against the project root.

    Env vars:
        TEMP_DIR
        OUTPUT_DIR
        STORY_CHARACTERS_FILE
        STORY_GUIDE_FILE
        STORY_HISTORY_FILE
        STORY_SAVED_PROMPTS_FILE
    """
    if config is None:
        config = load_config()

    paths = config.get("paths", {})

    def resolve(env_var: str, key: str, default: str) -> Path:
        path = Path(os.environ.get(env_var, paths.get(key, default)))
        return path if path.is_absolute() else PROJECT_ROOT / path

    return PathsConfig(
        temp_dir=resolve("TEMP_DIR", "temp_dir", "temp"),
        output_dir=resolve("OUTPUT_DIR", "output_dir", "output"),
        characters_file=resolve("STORY_CHARACTERS_FILE", "characters_file", "config/characters.yaml"),
        guide_file=resolve("STORY_GUIDE_FILE", "guide_file", "prompts/veo3_guide.md"),
        history_file=resolve("STORY_HISTORY_FILE", "history_file", "data/prompt_history.json"),
        saved_prompts_file=resolve("STORY_SAVED_PROMPTS_FILE", "saved_prompts_file", "data/saved_prompts.json"),
    )


def get_server_port(config: Optional[dict[str, Any]] = None) -> int:
    """Get HTTP port (env: PORT)."""
    if config is None:
        config = load_config()

    return int(os.environ.get("PORT", config.get("server", {}).get("port", 3000)))


def ensure_directories(paths: Optional[PathsConfig] = None) -> None:
    """Ensure all required directories exist."""
    if paths is None:
        paths = get_paths_config()

    for directory in [paths.temp_dir, paths.output_dir, LOGS_DIR, paths.history_file.parent]:
        directory.mkdir(parents=True, exist_ok=True)
