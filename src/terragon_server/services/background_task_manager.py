"""
Background Task Manager

Runs streamed operations as background tasks that proceed independently of
the HTTP response generator. The response is handed to the client at once
while the operation body keeps running and pushes progress into its
``ProgressStream``.

Key Features:
- Task registry keyed by operation id, guarded by an async lock
- Status tracking (queued, running, completed, failed, cancelled)
- Periodic removal of finished tasks after a TTL
- Graceful shutdown that cancels running operations with a timeout

Usage:
    manager = BackgroundTaskManager.get_instance()
    info = await manager.start_operation(operation_id, run_analysis(...))
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Coroutine, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_RESULT_TTL = 600
DEFAULT_CLEANUP_INTERVAL = 300


class TaskStatus(str, Enum):
    """Background task execution status."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TaskInfo:
    """Information about a background operation."""
    operation_id: str
    status: TaskStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    task: Optional[asyncio.Task] = None
    error: Optional[str] = None

    metadata: Dict[str, Any] = field(default_factory=dict)


class BackgroundTaskManager:
    """
    Manages background operation tasks.

    Singleton service that handles task lifecycle (start, complete,
    cleanup) and shutdown.
    """

    _instance: Optional['BackgroundTaskManager'] = None

    def __init__(
        self,
        result_ttl: int = DEFAULT_RESULT_TTL,
        cleanup_interval: int = DEFAULT_CLEANUP_INTERVAL,
    ):
        self.tasks: Dict[str, TaskInfo] = {}
        self.task_lock = asyncio.Lock()
        self.result_ttl = result_ttl
        self.cleanup_interval = cleanup_interval
        self.cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    def get_instance(cls) -> 'BackgroundTaskManager':
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton (used by tests)."""
        cls._instance = None

    async def start_cleanup_task(self):
        """Start periodic cleanup background task."""
        if self.cleanup_task is None or self.cleanup_task.done():
            self.cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info(
                f"BackgroundTaskManager: Cleanup task started "
                f"(result_ttl={self.result_ttl}s, interval={self.cleanup_interval}s)"
            )

    async def stop_cleanup_task(self):
        if self.cleanup_task and not self.cleanup_task.done():
            self.cleanup_task.cancel()
            try:
                await self.cleanup_task
            except asyncio.CancelledError:
                pass
            logger.info("[BackgroundTaskManager] Stopped cleanup task")

    async def _cleanup_loop(self):
        while True:
            try:
                await asyncio.sleep(self.cleanup_interval)
                await self.cleanup_finished_tasks()
            except asyncio.CancelledError:
                logger.info("[BackgroundTaskManager] Cleanup loop cancelled")
                break
            except Exception as e:
                logger.error(f"[BackgroundTaskManager] Error in cleanup loop: {e}")

    async def cleanup_finished_tasks(self) -> int:
        """Remove finished tasks older than the result TTL."""
        threshold = datetime.now() - timedelta(seconds=self.result_ttl)

        async with self.task_lock:
            to_remove = [
                operation_id
                for operation_id, info in self.tasks.items()
                if info.status in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)
                and info.completed_at is not None
                and info.completed_at < threshold
            ]
            for operation_id in to_remove:
                del self.tasks[operation_id]

        if to_remove:
            logger.info(f"[BackgroundTaskManager] Cleaned up {len(to_remove)} tasks")
        return len(to_remove)

    async def start_operation(
        self,
        operation_id: str,
        operation_coro: Coroutine[Any, Any, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TaskInfo:
        """
        Start an operation in the background.

        Args:
            operation_id: Unique operation identifier
            operation_coro: Coroutine running the operation body
            metadata: Optional metadata kept with the task

        Raises:
            ValueError: If an operation with this id is still running
        """
        async with self.task_lock:
            existing = self.tasks.get(operation_id)
            if existing and existing.status in (TaskStatus.QUEUED, TaskStatus.RUNNING):
                operation_coro.close()
                raise ValueError(f"Operation {operation_id} is already running")

            info = TaskInfo(
                operation_id=operation_id,
                status=TaskStatus.QUEUED,
                created_at=datetime.now(),
                metadata=metadata or {},
            )
            self.tasks[operation_id] = info
            info.task = asyncio.create_task(self._run(info, operation_coro))

        logger.info(f"[BackgroundTaskManager] Started operation {operation_id}")
        return info

    async def _run(self, info: TaskInfo, operation_coro: Coroutine[Any, Any, Any]) -> None:
        info.status = TaskStatus.RUNNING
        info.started_at = datetime.now()
        try:
            await operation_coro
        except asyncio.CancelledError:
            info.status = TaskStatus.CANCELLED
            info.completed_at = datetime.now()
            logger.info(f"[BackgroundTaskManager] Operation {info.operation_id} cancelled")
            raise
        except Exception as e:
            info.status = TaskStatus.FAILED
            info.error = str(e)
            info.completed_at = datetime.now()
            logger.error(
                f"[BackgroundTaskManager] Operation {info.operation_id} failed: {e}",
                exc_info=True,
            )
            return

        info.status = TaskStatus.COMPLETED
        info.completed_at = datetime.now()

    async def get_task_info(self, operation_id: str) -> Optional[TaskInfo]:
        async with self.task_lock:
            return self.tasks.get(operation_id)

    async def cancel_operation(self, operation_id: str) -> bool:
        """Cancel a running operation. Returns False if it is not running."""
        async with self.task_lock:
            info = self.tasks.get(operation_id)
            if info is None or info.task is None or info.task.done():
                return False
            info.task.cancel()
        logger.info(f"[BackgroundTaskManager] Cancellation requested for {operation_id}")
        return True

    async def shutdown(self, timeout: float = 25.0):
        """
        Gracefully shutdown the manager.

        Cancels all running operations and waits up to ``timeout`` seconds
        for them to finish their cleanup.
        """
        logger.info("[BackgroundTaskManager] Starting graceful shutdown...")
        await self.stop_cleanup_task()

        async with self.task_lock:
            running = [
                info.task
                for info in self.tasks.values()
                if info.task is not None and not info.task.done()
            ]

        if not running:
            logger.info("[BackgroundTaskManager] No running operations to cancel")
            return

        logger.info(f"[BackgroundTaskManager] Cancelling {len(running)} running operations")
        for task in running:
            task.cancel()

        try:
            async with asyncio.timeout(timeout):
                await asyncio.gather(*running, return_exceptions=True)
        except asyncio.TimeoutError:
            logger.warning(
                f"[BackgroundTaskManager] Shutdown timeout after {timeout}s, "
                f"{sum(1 for t in running if not t.done())} operations still running"
            )

        logger.info("[BackgroundTaskManager] Shutdown complete")

    async def get_stats(self) -> Dict[str, Any]:
        async with self.task_lock:
            counts: Dict[str, int] = {status.value: 0 for status in TaskStatus}
            for info in self.tasks.values():
                counts[info.status.value] += 1
            return {"total_tasks": len(self.tasks), "by_status": counts}
