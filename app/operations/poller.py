"""
Operation poll worker.

Watches one operation at a time by asking a status checker on a timer until
the operation reaches a terminal status or the attempt ceiling. Delays follow
the staged backoff policy. Everything runs on the event loop: the timer is a
`loop.call_later` handle, and checks run as tasks created when it fires.
"""

import asyncio
import inspect
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

import structlog

from app.operations.backoff import estimated_remaining, next_delay
from app.operations.clients.base import APIError
from app.operations.config import PollerConfig, get_poller_config
from app.operations.models import OperationStatus, StatusCheckResult

logger = structlog.get_logger()

Callback = Callable[[Any], Union[None, Awaitable[None]]]


class StatusChecker(Protocol):
    async def check_status(
        self, operation_id: str, linked_account_ref: Optional[str] = None
    ) -> StatusCheckResult: ...


class OperationPoller:
    """
    Timer-driven status polling for a single operation.

    Callbacks fire at most once per start/resume and always after the poller
    has stopped itself:
        on_complete(result)    success-terminal status
        on_error(message)      failure-terminal status or non-retryable error
        on_timeout(op_id)      attempt ceiling reached without a terminal status
    Callbacks may be plain functions or coroutine functions.
    """

    def __init__(
        self,
        status_checker: StatusChecker,
        config: Optional[PollerConfig] = None,
        on_complete: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
        on_timeout: Optional[Callback] = None,
    ):
        """
        Args:
            status_checker: Anything with `check_status(operation_id, linked_account_ref=None)`
            config: Poller configuration (defaults to loaded config)
            on_complete: Called with the StatusCheckResult on success
            on_error: Called with an error message
            on_timeout: Called with the operation id
        """
        self.status_checker = status_checker
        self.config = config or get_poller_config()
        self.on_complete = on_complete
        self.on_error = on_error
        self.on_timeout = on_timeout

        self.operation_id: Optional[str] = None
        self.linked_account_ref: Optional[str] = None
        self.result: Optional[StatusCheckResult] = None
        self.last_error: Optional[str] = None

        self._attempts = 0
        self._status: Optional[OperationStatus] = None
        self._stopped = True
        self._timed_out = False
        self._generation = 0
        self._checking: Optional[int] = None
        self._next_delay_ms: Optional[int] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    # Observable state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def status(self) -> Optional[OperationStatus]:
        return self._status

    @property
    def is_polling(self) -> bool:
        return not self._stopped

    @property
    def progress(self) -> float:
        """Fraction of the attempt budget used, 1.0 once the operation completed."""
        if self.result is not None and self.result.is_terminal:
            return 1.0
        return min(self._attempts / self.config.max_attempts, 1.0)

    @property
    def estimated_time_remaining_ms(self) -> int:
        if self._stopped:
            return 0
        return estimated_remaining(
            self._attempts,
            self.config.max_attempts,
            self.config.base_interval_ms,
            self.config.backoff,
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "status": self._status.value if self._status else None,
            "attempts": self._attempts,
            "max_attempts": self.config.max_attempts,
            "is_polling": self.is_polling,
            "progress": round(self.progress, 4),
            "next_delay_ms": self._next_delay_ms if self.is_polling else None,
            "estimated_time_remaining_ms": self.estimated_time_remaining_ms,
            "timed_out": self._timed_out,
            "last_error": self.last_error,
        }

    # Lifecycle

    def start(self, operation_id: str, linked_account_ref: Optional[str] = None) -> None:
        """
        Begin watching an operation; the first check runs after the base interval.

        Any loop already running on this poller is stopped first.
        """
        self._reset(operation_id, linked_account_ref, attempts=0)
        self._status = OperationStatus.REQUESTING
        logger.info(
            "poller.started",
            operation_id=operation_id,
            max_attempts=self.config.max_attempts,
            base_interval_ms=self.config.base_interval_ms,
        )
        self._schedule(self.config.base_interval_ms)

    def resume(
        self,
        operation_id: str,
        linked_account_ref: Optional[str] = None,
        attempts: int = 0,
    ) -> asyncio.Task:
        """
        Re-attach to an operation that is already in flight and check it now.

        Returns:
            The task running the immediate check
        """
        self._reset(operation_id, linked_account_ref, attempts=max(attempts, 0))
        logger.info("poller.resumed", operation_id=operation_id, attempts=self._attempts)
        self._task = asyncio.get_running_loop().create_task(self.check())
        return self._task

    def stop(self) -> None:
        """Cancel the pending timer. Safe to call any number of times."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._stopped:
            self._stopped = True
            logger.debug("poller.stopped", operation_id=self.operation_id)

    def close(self) -> None:
        """Stop and cancel any check still in flight."""
        self.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _reset(
        self, operation_id: str, linked_account_ref: Optional[str], attempts: int
    ) -> None:
        self.stop()
        self._generation += 1
        self.operation_id = operation_id
        self.linked_account_ref = linked_account_ref
        self.result = None
        self.last_error = None
        self._attempts = attempts
        self._timed_out = False
        self._stopped = False

    def _schedule(self, delay_ms: int) -> None:
        if self._stopped:
            return
        if self._timer is not None:
            self._timer.cancel()

        self._next_delay_ms = delay_ms
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay_ms / 1000, self._fire, self._generation)

    def _fire(self, generation: int) -> None:
        self._timer = None
        if self._stopped or generation != self._generation:
            return
        self._task = asyncio.get_running_loop().create_task(self.check())

    # Checking

    async def check(self) -> Optional[StatusCheckResult]:
        """
        Run one status check and act on the answer.

        Returns:
            The result, or None when the check was skipped, failed or its
            answer arrived after the poller was stopped or restarted
        """
        if self._stopped or self.operation_id is None:
            return None
        if self._checking == self._generation:
            logger.debug("poller.check.in_flight", operation_id=self.operation_id)
            return None

        generation = self._generation
        operation_id = self.operation_id
        self._checking = generation
        result: Optional[StatusCheckResult] = None
        error: Optional[Exception] = None

        try:
            result = await self.status_checker.check_status(
                operation_id, linked_account_ref=self.linked_account_ref
            )
        except APIError as e:
            error = e
        except Exception as e:
            logger.error(
                "poller.check.unexpected_error",
                operation_id=operation_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            error = e
        finally:
            if self._checking == generation:
                self._checking = None

        if self._stopped or generation != self._generation:
            logger.debug("poller.check.stale", operation_id=operation_id)
            return None

        if error is not None:
            await self._handle_error(operation_id, error)
        else:
            await self._handle_result(operation_id, result)
        return result

    async def _handle_result(self, operation_id: str, result: StatusCheckResult) -> None:
        self._status = result.status

        if result.is_terminal:
            self.stop()
            self.result = result
            if result.is_success:
                logger.info(
                    "poller.check.completed",
                    operation_id=operation_id,
                    status=result.status.value,
                    attempts=self._attempts,
                )
                await self._emit(self.on_complete, result)
            else:
                message = (
                    result.error_message
                    or f"Operation ended with status {result.status.value}"
                )
                self.last_error = message
                logger.warning(
                    "poller.check.failed",
                    operation_id=operation_id,
                    status=result.status.value,
                    error=message,
                )
                await self._emit(self.on_error, message)
            return

        await self._count_pending_attempt(operation_id)

    async def _handle_error(self, operation_id: str, error: Exception) -> None:
        if isinstance(error, APIError) and error.retryable:
            logger.warning(
                "poller.check.retryable_error",
                operation_id=operation_id,
                error=str(error),
                status_code=error.status_code,
                attempts=self._attempts,
            )
            await self._count_pending_attempt(operation_id)
            return

        self.stop()
        message = error.message if isinstance(error, APIError) else str(error)
        self.last_error = message
        logger.error(
            "poller.check.error",
            operation_id=operation_id,
            error=message,
            error_type=type(error).__name__,
        )
        await self._emit(self.on_error, message)

    async def _count_pending_attempt(self, operation_id: str) -> None:
        self._attempts += 1

        if self._attempts >= self.config.max_attempts:
            self.stop()
            self._timed_out = True
            logger.warning(
                "poller.timeout",
                operation_id=operation_id,
                attempts=self._attempts,
            )
            await self._emit(self.on_timeout, operation_id)
            return

        delay = next_delay(
            self._attempts, self.config.base_interval_ms, self.config.backoff
        )
        logger.debug(
            "poller.check.pending",
            operation_id=operation_id,
            status=self._status.value if self._status else None,
            attempts=self._attempts,
            next_delay_ms=delay,
        )
        self._schedule(delay)

    async def _emit(self, callback: Optional[Callback], argument: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(argument)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(
                "poller.callback_failed",
                operation_id=self.operation_id,
                callback=getattr(callback, "__name__", repr(callback)),
                error=str(e),
                exc_info=True,
            )


class PollerRegistry:
    """
    One poller per operation for the API process.

    A poller is dropped as soon as it completes, fails or times out; its final
    snapshot is kept in a bounded most-recent map so progress can still be
    read afterwards.
    """

    def __init__(self, max_finished: int = 500):
        self._pollers: Dict[str, OperationPoller] = {}
        self._finished: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self.max_finished = max_finished

    def get(self, operation_id: str) -> Optional[OperationPoller]:
        return self._pollers.get(operation_id)

    def snapshot(self, operation_id: str) -> Optional[Dict[str, Any]]:
        """Live poller state, or the final state of a recently finished one."""
        poller = self._pollers.get(operation_id)
        if poller is not None:
            return poller.snapshot()
        return self._finished.get(operation_id)

    def watch(
        self,
        operation_id: str,
        status_checker: StatusChecker,
        config: Optional[PollerConfig] = None,
        linked_account_ref: Optional[str] = None,
        resume: bool = False,
        attempts: int = 0,
        on_complete: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
        on_timeout: Optional[Callback] = None,
    ) -> OperationPoller:
        """
        Start (or resume) polling an operation, replacing any existing poller.
        """
        self.stop(operation_id)
        self._finished.pop(operation_id, None)

        poller = OperationPoller(status_checker, config=config)
        poller.on_complete = self._retiring(
            operation_id, poller, on_complete or self._log_complete
        )
        poller.on_error = self._retiring(
            operation_id, poller, on_error or self._log_error(operation_id)
        )
        poller.on_timeout = self._retiring(
            operation_id, poller, on_timeout or self._log_timeout
        )
        self._pollers[operation_id] = poller

        if resume:
            poller.resume(operation_id, linked_account_ref, attempts=attempts)
        else:
            poller.start(operation_id, linked_account_ref)
        return poller

    def stop(self, operation_id: str) -> bool:
        """
        Returns:
            True if a running poller was registered for the operation
        """
        poller = self._pollers.pop(operation_id, None)
        if poller is None:
            return False
        poller.close()
        return True

    def close_all(self) -> None:
        for poller in self._pollers.values():
            poller.close()
        count = len(self._pollers)
        self._pollers.clear()
        self._finished.clear()
        logger.info("poller_registry.closed", pollers=count)

    def active(self) -> list[str]:
        return [op_id for op_id, p in self._pollers.items() if p.is_polling]

    def __len__(self) -> int:
        return len(self._pollers)

    def _retiring(
        self, operation_id: str, poller: OperationPoller, callback: Callback
    ) -> Callback:
        async def retire_then_notify(argument: Any) -> None:
            self._retire(operation_id, poller)
            outcome = callback(argument)
            if inspect.isawaitable(outcome):
                await outcome

        retire_then_notify.__name__ = getattr(callback, "__name__", "callback")
        return retire_then_notify

    def _retire(self, operation_id: str, poller: OperationPoller) -> None:
        # A replacement poller may already own the slot
        if self._pollers.get(operation_id) is not poller:
            return
        del self._pollers[operation_id]
        self._finished[operation_id] = poller.snapshot()
        self._finished.move_to_end(operation_id)
        while len(self._finished) > self.max_finished:
            self._finished.popitem(last=False)

    @staticmethod
    def _log_complete(result: StatusCheckResult) -> None:
        logger.info(
            "operation.watch.completed",
            operation_id=result.operation_id,
            status=result.status.value,
        )

    @staticmethod
    def _log_error(operation_id: str) -> Callback:
        def log_error(message: str) -> None:
            logger.warning("operation.watch.failed", operation_id=operation_id, error=message)

        return log_error

    @staticmethod
    def _log_timeout(operation_id: str) -> None:
        logger.warning("operation.watch.timed_out", operation_id=operation_id)


# Global registry instance
_registry: Optional[PollerRegistry] = None


def get_poller_registry() -> PollerRegistry:
    """
    Get or create the global poller registry.

    Returns:
        PollerRegistry singleton
    """
    global _registry
    if _registry is None:
        _registry = PollerRegistry()
    return _registry
