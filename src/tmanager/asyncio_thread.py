import asyncio
import logging
import threading

from concurrent.futures import Future
from typing import Any, Coroutine


class AsyncioEventLoopThread:
    """
    Event loop running on a daemon thread, so the calling thread stays free
    to drain progress events while transfers run.
    """

    def __init__(self, name: str = "tmanager-loop"):
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(
            target=self._run_loop,
            name=name,
            daemon=True
        )
        self.thread.start()

    def _run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Future:
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def shutdown(self, timeout: float = 30.0):
        logging.debug(f"Stopping event loop thread {self.thread.name}")
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout)
        if self.thread.is_alive():
            raise RuntimeError(f"Failed to join event loop thread after {timeout=}s")
        self.loop.close()

__all__ = ["AsyncioEventLoopThread"]
