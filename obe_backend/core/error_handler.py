"""Global error handling for the event loop and background tasks."""

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


def setup_global_exception_handler() -> None:
    """Log exceptions that escape asyncio tasks instead of losing them."""

    def handle_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exception = context.get("exception")
        message = context.get("message", "Unhandled exception in async task")

        if exception:
            logger.error(
                "Asyncio exception handler caught: %s",
                message,
                exc_info=exception,
            )
        else:
            logger.error(
                "Asyncio exception handler caught: %s (context: %s)",
                message,
                context,
            )

    try:
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(handle_exception)
        logger.info("Global asyncio exception handler installed")
    except RuntimeError:
        logger.debug("No running loop to install exception handler yet")


def safe_background_task(task_name: str, task_coro: Any) -> asyncio.Task:
    """Create a named background task that logs its own failure."""

    async def wrapped() -> Any:
        try:
            return await task_coro
        except asyncio.CancelledError:
            logger.info("Background task '%s' cancelled", task_name)
            raise
        except Exception:
            logger.exception("Background task '%s' failed with unhandled exception", task_name)
            raise

    return asyncio.create_task(wrapped(), name=task_name)


class GracefulShutdown:
    """Cancel tracked background tasks and wait a bounded time for them."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self.tasks: list[asyncio.Task] = []

    def add_task(self, task: asyncio.Task) -> None:
        self.tasks.append(task)

    async def shutdown(self) -> None:
        if not self.tasks:
            return

        logger.info("Gracefully shutting down %d background tasks...", len(self.tasks))

        for task in self.tasks:
            if not task.done():
                task.cancel()

        try:
            await asyncio.wait_for(
                asyncio.gather(*self.tasks, return_exceptions=True),
                timeout=self.timeout,
            )
            logger.info("All background tasks shut down successfully")
        except asyncio.TimeoutError:
            logger.warning(
                "Timeout waiting for background tasks to shut down after %.1fs",
                self.timeout,
            )
        finally:
            self.tasks.clear()


__all__ = ["GracefulShutdown", "safe_background_task", "setup_global_exception_handler"]
