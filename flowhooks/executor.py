"""Run a single hook handler under a timeout and an engine-wide concurrency ceiling."""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import threading
import time
import traceback
from typing import Any

from flowhooks.context import ExecutionContext
from flowhooks.contract import HookDescriptor
from flowhooks.models import ExecutionOutcome, SkipReason

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_CONCURRENT = 3
CONCURRENCY_ERROR = "Maximum concurrent hook executions reached"


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class HookExecutor:
    """Execute hook handlers without ever letting one crash the caller.

    Async handlers run as tasks on the running loop. Plain functions each get
    their own daemon thread, so a handler that never returns holds only that
    thread and later hooks still start immediately. A handler that outlives its
    budget is reported as timed out and its cancel token is set, but it is not
    interrupted.
    """

    def __init__(self, default_timeout_ms: float = DEFAULT_TIMEOUT_MS, max_concurrent: int = DEFAULT_MAX_CONCURRENT) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.default_timeout_ms = default_timeout_ms
        self.max_concurrent = max_concurrent
        self._in_flight = 0
        self._lock = threading.Lock()
        self._threads: set[threading.Thread] = set()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def running_threads(self) -> int:
        """Sync handler threads still alive, including ones abandoned after a timeout."""
        with self._lock:
            return len(self._threads)

    def _acquire(self) -> bool:
        with self._lock:
            if self._in_flight >= self.max_concurrent:
                return False
            self._in_flight += 1
            return True

    def _release(self) -> None:
        with self._lock:
            self._in_flight = max(0, self._in_flight - 1)

    def _start(self, handler: Any, context: ExecutionContext) -> asyncio.Future[Any]:
        loop = asyncio.get_running_loop()
        if inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(getattr(handler, "__call__", None)):
            return asyncio.ensure_future(handler(context))

        future = loop.create_future()
        thread = threading.Thread(
            target=self._run_sync,
            args=(handler, context, loop, future),
            name=f"flowhooks-{context.hook_name or 'anonymous'}",
            daemon=True,
        )
        with self._lock:
            self._threads.add(thread)
        thread.start()
        return future

    def _run_sync(self, handler: Any, context: ExecutionContext, loop: asyncio.AbstractEventLoop, future: asyncio.Future[Any]) -> None:
        try:
            try:
                result = self._call_sync(handler, context)
            except Exception as exc:  # noqa: BLE001 - delivered to the waiting dispatch
                _deliver(loop, future, exc=exc)
            else:
                _deliver(loop, future, result=result)
        finally:
            with self._lock:
                self._threads.discard(threading.current_thread())

    @staticmethod
    def _call_sync(handler: Any, context: ExecutionContext) -> Any:
        result = handler(context)
        if inspect.isawaitable(result):
            # Sync callables returning awaitables get their own loop on the handler thread.
            return asyncio.run(_await(result))
        return result

    async def execute(self, descriptor: HookDescriptor, event: str, context: ExecutionContext) -> ExecutionOutcome:
        hook_name = context.hook_name or "anonymous"
        started = time.perf_counter()
        handler = descriptor.handler_for(event)
        if handler is None:
            return ExecutionOutcome(
                hook_name=hook_name,
                event=event,
                success=True,
                skipped=True,
                reason=SkipReason.METHOD_NOT_IMPLEMENTED,
            )

        if not self._acquire():
            logger.warning("Hook %s rejected for %s: %s", hook_name, event, CONCURRENCY_ERROR)
            return ExecutionOutcome(
                hook_name=hook_name,
                event=event,
                success=False,
                skipped=True,
                reason=SkipReason.CONCURRENCY_LIMIT,
                error=CONCURRENCY_ERROR,
            )

        timeout_ms = descriptor.timeout_for(event, self.default_timeout_ms)
        try:
            try:
                future = self._start(handler, context)
            except Exception as exc:  # noqa: BLE001 - handler faults become outcomes
                return self._failure(hook_name, event, exc, started)

            done, _ = await asyncio.wait({future}, timeout=timeout_ms / 1000)
            if not done:
                context.cancel_token.cancel()
                future.add_done_callback(functools.partial(_discard_late_result, hook_name, event))
                logger.warning("Hook %s timed out after %sms on %s", hook_name, _format_ms(timeout_ms), event)
                return ExecutionOutcome(
                    hook_name=hook_name,
                    event=event,
                    success=False,
                    error=f"Hook execution timed out after {_format_ms(timeout_ms)}ms",
                    duration_ms=_elapsed_ms(started),
                )

            if future.cancelled():
                return self._failure(hook_name, event, asyncio.CancelledError("Hook execution was cancelled"), started)
            exc = future.exception()
            if exc is not None:
                return self._failure(hook_name, event, exc, started)
            return ExecutionOutcome(
                hook_name=hook_name,
                event=event,
                success=True,
                data=future.result(),
                duration_ms=_elapsed_ms(started),
            )
        finally:
            self._release()

    @staticmethod
    def _failure(hook_name: str, event: str, exc: BaseException, started: float) -> ExecutionOutcome:
        logger.error("Hook %s raised %s on %s: %s", hook_name, type(exc).__name__, event, exc)
        return ExecutionOutcome(
            hook_name=hook_name,
            event=event,
            success=False,
            error=str(exc) or type(exc).__name__,
            stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            duration_ms=_elapsed_ms(started),
        )

    def shutdown(self, wait: bool = False, timeout: float | None = None) -> None:
        """Join sync handler threads that are still running when ``wait`` is set."""
        with self._lock:
            threads = list(self._threads)
        if threads:
            logger.info("Executor shutting down with %s handler thread(s) still running", len(threads))
        if not wait:
            return
        for thread in threads:
            thread.join(timeout)


async def _await(awaitable: Any) -> Any:
    return await awaitable


def _settle(future: asyncio.Future[Any], result: Any, exc: BaseException | None) -> None:
    if future.done():
        return
    if exc is not None:
        future.set_exception(exc)
    else:
        future.set_result(result)


def _deliver(
    loop: asyncio.AbstractEventLoop,
    future: asyncio.Future[Any],
    result: Any = None,
    exc: BaseException | None = None,
) -> None:
    try:
        loop.call_soon_threadsafe(_settle, future, result, exc)
    except RuntimeError:
        # The dispatching loop already closed; nobody is waiting for this result.
        logger.debug("Dropping result from handler thread: event loop is closed")


def _format_ms(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def _discard_late_result(hook_name: str, event: str, future: asyncio.Future[Any]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug("Discarding late failure from timed out hook %s on %s: %s", hook_name, event, exc)
    else:
        logger.debug("Discarding late result from timed out hook %s on %s", hook_name, event)
