"""Task execution: queue in, containers out, progress everywhere.

ARCHITECTURE
────────────
::

    QueueConsumer (BRPOP, decode TaskEnvelope)
      │
      ▼
    ExecutorWorker (Semaphore(max_containers))
      │
      ▼
    ExecutionSupervisor (state machine, one per task)
      ├── ContainerPool      ─ create / start / wait / logs / remove, ≤ N live
      │     └── ContainerRuntime (DockerCLIRuntime | StubContainerRuntime)
      ├── TaskWorkspace      ─ task.json in, result.json out
      └── ProgressPublisher  ─ state store → event bus → webhook

    CleanupSweeper (independent interval, asks the runtime directly)

MODULE MAP
──────────
  runtimes/      ─ ContainerRuntime protocol, docker CLI adapter, stub
  pool.py        ─ ContainerPool, ContainerHandle
  workspace.py   ─ TaskWorkspace
  webhooks.py    ─ WebhookNotifier (httpx, zero retry)
  progress.py    ─ ProgressPublisher
  queue.py       ─ QueueConsumer
  supervisor.py  ─ ExecutionSupervisor
  sweeper.py     ─ CleanupSweeper, SweepReport
  worker.py      ─ ExecutorWorker, WorkerStats
"""

from agentbox.execution.pool import ContainerHandle, ContainerPool
from agentbox.execution.progress import ProgressPublisher
from agentbox.execution.queue import QueueConsumer
from agentbox.execution.supervisor import ExecutionSupervisor
from agentbox.execution.sweeper import CleanupSweeper, SweepReport
from agentbox.execution.webhooks import WebhookNotifier
from agentbox.execution.worker import ExecutorWorker, WorkerStats
from agentbox.execution.workspace import TaskWorkspace

__all__ = [
    "CleanupSweeper",
    "ContainerHandle",
    "ContainerPool",
    "ExecutionSupervisor",
    "ExecutorWorker",
    "ProgressPublisher",
    "QueueConsumer",
    "SweepReport",
    "TaskWorkspace",
    "WebhookNotifier",
    "WorkerStats",
]
