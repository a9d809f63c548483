from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger


class ChatLogRepository:
    """Persist the committed chat log so it survives a restart."""

    def __init__(self, log_file: Path) -> None:
        self.log_file = log_file

    def read_entries(self) -> List[Dict[str, Any]]:
        if not self.log_file.exists():
            return []
        try:
            with open(self.log_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            return []
        entries = data.get("entries", []) if isinstance(data, dict) else []
        return [e for e in entries if isinstance(e, dict)]

    def write_entries(self, entries: List[Dict[str, Any]]) -> None:
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "w", encoding="utf-8") as f:
                json.dump({"entries": entries}, f, indent=2, ensure_ascii=False)
        except OSError as exc:
            # A failed write must not break the session.
            logger.error(f"chat_log_write_failed | path={self.log_file} | error={exc}")


class PersistenceWorker:
    """Background task that writes the chat log without blocking the event loop."""

    def __init__(self, repository: ChatLogRepository) -> None:
        self.repository = repository
        self._queue: asyncio.Queue[List[Dict[str, Any]]] = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None

    def schedule_save(self, entries: List[Dict[str, Any]]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called outside the event loop (e.g., during startup); write synchronously.
            self.repository.write_entries(entries)
            return

        self._queue.put_nowait(entries)
        if not self._task or self._task.done():
            self._task = loop.create_task(self._drain_queue())

    async def _drain_queue(self) -> None:
        while not self._queue.empty():
            entries = await self._queue.get()
            try:
                await asyncio.to_thread(self.repository.write_entries, entries)
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every scheduled save has been written."""
        if self._task and not self._task.done():
            await self._task
