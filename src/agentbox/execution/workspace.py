"""Per-task host workspace.

Each task gets ``<workspace_dir>/<task_id>/``, bind-mounted read-write into
its container. The supervisor writes the envelope there before the
container starts; the in-container runner writes the result artifact back.

.. code-block:: text

    workspace/
    └── t1/
        ├── task.json     ← TaskEnvelope (written before start)
        └── result.json   ← result artifact (written by the runner)

Tags:
    agentbox, execution, workspace, filesystem
"""

from __future__ import annotations

import json
import shutil
import time
from pathlib import Path
from typing import Any

from agentbox.core.logging import get_logger
from agentbox.core.models import TaskEnvelope

logger = get_logger(__name__)

TASK_FILE = "task.json"
RESULT_FILE = "result.json"


class TaskWorkspace:
    """Filesystem operations on the workspace root."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def path_for(self, task_id: str) -> Path:
        return self.root / task_id

    def prepare(self, envelope: TaskEnvelope) -> Path:
        """Create the task directory and write ``task.json``."""
        directory = self.path_for(envelope.id)
        directory.mkdir(parents=True, exist_ok=True)
        (directory / RESULT_FILE).unlink(missing_ok=True)
        (directory / TASK_FILE).write_text(envelope.to_json(), encoding="utf-8")
        return directory

    def read_result(self, task_id: str) -> Any:
        """Return the parsed result artifact, or ``None`` if absent or unreadable."""
        path = self.path_for(task_id) / RESULT_FILE
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("workspace.result_unreadable", task_id=task_id, error=str(exc))
            return None

    def remove(self, task_id: str) -> bool:
        directory = self.path_for(task_id)
        if not directory.is_dir():
            return False
        shutil.rmtree(directory, ignore_errors=True)
        return True

    def stale(self, older_than_ms: int, *, now: float | None = None) -> list[str]:
        """Task ids whose directories were last modified more than ``older_than_ms`` ago."""
        if not self.root.is_dir():
            return []
        now = now if now is not None else time.time()
        cutoff = now - older_than_ms / 1000
        return sorted(
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir() and entry.stat().st_mtime < cutoff
        )
