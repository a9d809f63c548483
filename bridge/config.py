from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError

from .schemas import Settings


def load_environment() -> None:
    """Pick up a local .env before anything reads os.environ."""
    env_path = Path.cwd() / ".env"
    if env_path.is_file():
        load_dotenv(dotenv_path=str(env_path), override=False)


def data_dir() -> Path:
    return Path(os.environ.get("BRIDGE_DATA_DIR", "data")).resolve()


class SettingsRepository:
    """Persist the user-facing settings as a small JSON document."""

    def __init__(self, settings_file: Path) -> None:
        self.settings_file = settings_file

    def load(self) -> Settings:
        if not self.settings_file.exists():
            return Settings()
        try:
            with open(self.settings_file, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning(f"settings_unreadable | path={self.settings_file} | error={exc}")
            return Settings()
        if not isinstance(raw, dict):
            return Settings()
        # Stored keys win, anything missing falls back to the defaults.
        merged: Dict[str, Any] = {**Settings().model_dump(), **raw}
        try:
            return Settings.model_validate(merged)
        except ValidationError as exc:
            logger.warning(f"settings_invalid | path={self.settings_file} | error={exc}")
            return Settings()

    def save(self, settings: Settings) -> None:
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, "w", encoding="utf-8") as f:
                json.dump(settings.model_dump(), f, indent=2)
        except OSError as exc:
            logger.error(f"settings_write_failed | path={self.settings_file} | error={exc}")

    def update(self, **changes: Any) -> Settings:
        current = self.load()
        updated = current.model_copy(
            update={k: v for k, v in changes.items() if v is not None}
        )
        self.save(updated)
        return updated
