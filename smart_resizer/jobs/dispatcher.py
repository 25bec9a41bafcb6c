"""Task dispatcher interface."""

from abc import ABC, abstractmethod

from smart_resizer.jobs.models import ResizeTask


class JobDispatcher(ABC):
    """Abstract interface for task dispatching (in-process or external broker)."""

    @abstractmethod
    async def enqueue(self, task: ResizeTask, priority: int) -> str:
        """Queue a task for processing. Returns a task handle.

        Raises EnqueueError when the task could not be accepted.
        """
        ...

    @abstractmethod
    def depth(self) -> int:
        """Number of tasks waiting to be picked up."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (e.g., start worker loop)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...
