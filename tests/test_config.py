"""
Tests for configuration loading, logging setup and the LLM client wrapper.
"""

import logging
import pytest
from unittest.mock import AsyncMock, MagicMock

from core.config import (
    PROJECT_ROOT,
    get_optimizer_config,
    get_paths_config,
    get_server_port,
    get_video_config,
    load_config,
)
from core.llm import LLMClient, strip_code_fences
from core.logging import get_logger, resolve_log_level


def test_missing_config_uses_defaults(tmp_path):
    """Test a missing settings file falls back to built-in defaults."""
    config = load_config(tmp_path / "missing.yaml")

    assert config["server"]["port"] == 3000
    assert config["video"]["model"] == "fal-ai/veo3"
    assert get_video_config(config).aspect_ratio == "16:9"


def test_env_overrides(monkeypatch):
    """Test environment variables win over file values."""
    monkeypatch.setenv("FAL_KEY", "fal-test")
    monkeypatch.setenv("OPENROUTER_API_KEY", "or-test")
    monkeypatch.setenv("PORT", "8080")

    config = {"video": {"model": "fal-ai/veo3"}, "optimizer": {}, "server": {"port": 3000}}

    assert get_video_config(config).api_key == "fal-test"
    assert get_server_port(config) == 8080

    optimizer = get_optimizer_config(config)
    assert optimizer.api_key == "or-test"
    assert optimizer.base_url == "https://openrouter.ai/api/v1"
    assert "HTTP-Referer" in optimizer.default_headers


def test_paths_resolve_against_project_root(monkeypatch, tmp_path):
    """Test relative paths resolve under the project root and absolute ones are kept."""
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path / "videos"))

    paths = get_paths_config({"paths": {"temp_dir": "scratch"}})

    assert paths.temp_dir == PROJECT_ROOT / "scratch"
    assert paths.output_dir == tmp_path / "videos"


def test_resolve_log_level(monkeypatch):
    """Test log level names map to logging levels with INFO as fallback."""
    assert resolve_log_level("debug") == logging.DEBUG
    assert resolve_log_level("nonsense") == logging.INFO

    monkeypatch.setenv("STORY_LOG_LEVEL", "WARNING")
    assert resolve_log_level() == logging.WARNING


def test_get_logger_uses_env_level_and_file(monkeypatch, tmp_path):
    """Test a new logger honours STORY_LOG_LEVEL and STORY_LOG_FILE."""
    log_file = tmp_path / "story.log"
    monkeypatch.setenv("STORY_LOG_LEVEL", "ERROR")
    monkeypatch.setenv("STORY_LOG_FILE", str(log_file))

    logger = get_logger("tests.story_chain.env_logger")
    logger.error("clip failed")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.ERROR
    assert "clip failed" in log_file.read_text(encoding="utf-8")


def test_strip_code_fences():
    """Test markdown fences are removed from LLM replies."""
    assert strip_code_fences('```json\n["a"]\n```') == '["a"]'
    assert strip_code_fences('  ["a"]  ') == '["a"]'


@pytest.mark.asyncio
async def test_unconfigured_client_returns_empty():
    """Test an unconfigured client answers with an empty string."""
    client = LLMClient(api_key="")

    assert client.is_configured() is False
    assert await client.chat([{"role": "user", "content": "hi"}]) == ""


@pytest.mark.asyncio
async def test_close_releases_client():
    """Test close() closes the underlying client and allows a fresh one later."""
    client = LLMClient(api_key="sk-test")
    inner = MagicMock()
    inner.close = AsyncMock()
    client._client = inner

    await client.close()

    inner.close.assert_awaited_once()
    assert client._client is None
