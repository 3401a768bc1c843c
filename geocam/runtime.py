from __future__ import annotations
import asyncio, logging, threading
from typing import Any, Coroutine, Optional

log = logging.getLogger(__name__)


class FlowRuntime:
    """One event loop on one thread; every state transition runs there."""

    def __init__(self):
        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ready = threading.Event()

    # ---------- public API ----------
    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._ready.clear()
            self._thread = threading.Thread(target=self._loop_main, name="FlowRuntime", daemon=True)
            self._thread.start()
        self._ready.wait()

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    def run(self, coro: Coroutine[Any, Any, Any], timeout: Optional[float] = 30.0) -> Any:
        """Run ``coro`` on the loop thread and wait for its result."""
        loop = self._loop
        if loop is None:
            coro.close()
            raise RuntimeError("runtime is not started")
        fut = asyncio.run_coroutine_threadsafe(coro, loop)
        return fut.result(timeout)

    def stop(self) -> None:
        with self._lock:
            loop, t = self._loop, self._thread
        if loop is not None:
            loop.call_soon_threadsafe(loop.stop)
        if t:
            t.join(timeout=2.0)
        with self._lock:
            self._thread = None

    # ---------- internal ----------
    def _loop_main(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._ready.set()
        log.debug("event loop started")
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            self._loop = None
            log.debug("event loop stopped")
