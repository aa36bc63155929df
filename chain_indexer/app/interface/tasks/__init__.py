from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from .db_task import init_db_task
from .indexer_tasks import create_indexer_task, indexer_status_task, run_indexer_task
from .monitoring_tasks import health_task
from .scheduler_task import scheduler_task

TaskFn = Callable[..., Awaitable[Any]]

TASKS: dict[str, TaskFn] = {
    "indexer__run_indexer_task": run_indexer_task,
    "indexer__create_indexer_task": create_indexer_task,
    "indexer__indexer_status_task": indexer_status_task,
    "monitoring__health_task": health_task,
    "scheduler__scheduler_task": scheduler_task,
    "db__init_db_task": init_db_task,
}
