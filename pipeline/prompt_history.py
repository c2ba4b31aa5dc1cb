"""
Story Chain - Prompt History

Bounded, newest-first history of optimization results and a dictionary of
named prompts, both persisted as JSON files.
"""

import json
from pathlib import Path
from typing import Optional

from core.constants import HISTORY_LIMIT
from core.logging import get_logger
from core.models import OptimizationResult

logger = get_logger(__name__)


class PromptHistory:
    """Most-recent-first list of optimization results; oldest entries are evicted."""

    def __init__(self, path: Optional[Path] = None, limit: int = HISTORY_LIMIT):
        self.path = Path(path) if path else None
        self.limit = limit
        self._items: list[OptimizationResult] = []
        self.load()

    def load(self) -> None:
        if self.path is None or not self.path.exists():
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            self._items = [OptimizationResult.model_validate(item) for item in raw][: self.limit]
        except (OSError, ValueError) as e:
            logger.error(f"Error loading prompt history: {e}")
            self._items = []

    def save(self) -> None:
        if self.path is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump([item.model_dump() for item in self._items], f, indent=2, ensure_ascii=False)

    def add(self, result: OptimizationResult) -> None:
        self._items.insert(0, result)
        del self._items[self.limit:]
        self.save()

    def items(self) -> list[OptimizationResult]:
        return list(self._items)

    def clear(self) -> None:
        self._items = []
        self.save()

    def __len__(self) -> int:
        return len(self._items)


class SavedPrompts:
    """Named prompts the user wants to reuse."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._prompts: dict[str, str] = {}
        if self.path is not None and self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    self._prompts = {str(k): str(v) for k, v in json.load(f).items()}
            except (OSError, ValueError, AttributeError) as e:
                logger.error(f"Error loading saved prompts: {e}")

    def _save(self) -> None:
        if self.path is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._prompts, f, indent=2, ensure_ascii=False)

    def all(self) -> dict[str, str]:
        return dict(self._prompts)

    def get(self, name: str) -> Optional[str]:
        return self._prompts.get(name)

    def put(self, name: str, prompt: str) -> None:
        self._prompts[name] = prompt
        self._save()

    def delete(self, name: str) -> bool:
        if name not in self._prompts:
            return False
        del self._prompts[name]
        self._save()
        return True
