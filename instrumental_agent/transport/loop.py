"""
Instrumental Agent - Event Loop Thread

Runs an asyncio event loop on a dedicated daemon thread. This is the single
serialized execution context for all transport I/O and delegate callbacks.
"""

import asyncio
import concurrent.futures
import threading
from typing import Any, Callable, Coroutine, Optional

import structlog

logger = structlog.get_logger(__name__)


class EventLoopThread:
    """An asyncio event loop running on its own thread."""
    
    def __init__(self, name: str = "instrumental-collector"):
        self.name = name
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._stopped = False
        self._thread.start()
        logger.debug("Event loop thread started", name=name)
    
    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop
    
    @property
    def is_running(self) -> bool:
        return not self._stopped and self._thread.is_alive()
    
    def in_loop_thread(self) -> bool:
        return threading.current_thread() is self._thread
    
    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self._loop)
            for task in pending:
                task.cancel()
            if pending:
                self._loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
            self._loop.close()
            logger.debug("Event loop thread finished", name=self.name)
    
    def submit(self, coro: Coroutine) -> concurrent.futures.Future:
        """Schedule a coroutine on the loop from any thread."""
        return asyncio.run_coroutine_threadsafe(coro, self._loop)
    
    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        """Schedule a plain callback on the loop from any thread."""
        self._loop.call_soon_threadsafe(callback, *args)
    
    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the loop and wait for the thread to exit."""
        if self._stopped:
            return
        self._stopped = True
        
        self._loop.call_soon_threadsafe(self._loop.stop)
        if not self.in_loop_thread():
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Event loop thread did not stop in time", name=self.name, timeout=timeout)
