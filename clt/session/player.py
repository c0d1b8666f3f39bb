"""
Replay of flattened session documents.

This module submits the command steps of a flattened document to an executor
one at a time, in document order, and collects their output into an
ActualDocument for comparison.
"""

import threading
import time
from datetime import datetime
from typing import Any, Callable, Optional, Union

from ..document.models import (
    ActualDocument,
    ActualStep,
    CommandStep,
    ExecutionStatus,
    FlattenedDocument,
)
from ..interfaces import ExecutionResult, Executor, ExecutorError
from ..logging_config import get_logger
from .executors import CallableExecutor

DEFAULT_INTER_STEP_DELAY = 0.005


class ReplayDriver:
    """
    Sequential replay of a flattened document.

    A step is submitted only after the previous one has settled and the
    inter-step delay has elapsed. Execution problems are recorded on the step
    they happened in; they never abort the run unless ``fail_fast`` is set.
    """

    def __init__(self, executor: Executor, inter_step_delay: float = DEFAULT_INTER_STEP_DELAY,
                 step_timeout: Optional[float] = None, overall_timeout: Optional[float] = None,
                 fail_fast: bool = False, cancel_event: Optional[threading.Event] = None):
        """Initialize replay driver."""
        if inter_step_delay < 0:
            raise ValueError("Inter-step delay must not be negative")

        self.executor = executor
        self.inter_step_delay = inter_step_delay
        self.step_timeout = step_timeout
        self.overall_timeout = overall_timeout
        self.fail_fast = fail_fast
        self.cancel_event = cancel_event or threading.Event()
        self.logger = get_logger(__name__)

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next step is submitted."""
        self.cancel_event.set()

    def replay(self, flattened: FlattenedDocument) -> ActualDocument:
        """
        Replay every command step of the document.

        Returns:
            One ActualStep per command step, in document order

        Raises:
            ExecutorError: If the executor cannot be started
        """
        commands = [step for step in flattened.steps if isinstance(step, CommandStep)]
        actual = ActualDocument(source_path=flattened.path)
        self.logger.info(f"Starting replay of {flattened.path or '<document>'} ({len(commands)} commands)")

        deadline = time.monotonic() + self.overall_timeout if self.overall_timeout else None
        terminated = False

        try:
            try:
                self.executor.start()
                for index, step in enumerate(commands):
                    if self.cancel_event.is_set():
                        self.logger.warning(f"Replay cancelled before step {index}")
                        self.executor.terminate()
                        terminated = True
                        actual.cancelled = True
                        self._mark_remaining(actual, commands, index, ExecutionStatus.CANCELLED,
                                             "Replay cancelled")
                        break

                    timeout = self.step_timeout
                    if deadline is not None:
                        remaining = deadline - time.monotonic()
                        if remaining <= 0:
                            self.logger.warning(f"Overall timeout of {self.overall_timeout}s expired")
                            self._mark_remaining(actual, commands, index, ExecutionStatus.SKIPPED,
                                                 "Overall timeout expired")
                            break
                        timeout = remaining if timeout is None else min(timeout, remaining)

                    actual_step = self._execute_step(index, step, timeout)
                    actual.steps.append(actual_step)

                    if self.fail_fast and self._is_failure(actual_step):
                        self.logger.warning(f"Stopping replay after step {index} (fail_fast)")
                        self._mark_remaining(actual, commands, index + 1, ExecutionStatus.SKIPPED,
                                             "Skipped after earlier failure")
                        break

                    if index < len(commands) - 1:
                        self._settle()
            except KeyboardInterrupt:
                # Interrupts during startup or between steps land here too
                done = len(actual.steps)
                self.logger.warning(f"Replay interrupted after {done} of {len(commands)} steps")
                self.executor.terminate()
                terminated = True
                actual.cancelled = True
                self._mark_remaining(actual, commands, done, ExecutionStatus.CANCELLED,
                                     "Replay cancelled")
        finally:
            if not terminated:
                self.executor.close()
            actual.finished_at = datetime.now()

        self.logger.info(f"Replay completed: {actual.get_summary()}")
        return actual

    def _execute_step(self, index: int, step: CommandStep, timeout: Optional[float]) -> ActualStep:
        """Execute a single command step."""
        self.logger.debug(f"Executing step {index}: {step.input}")

        start_time = time.monotonic()
        try:
            result: ExecutionResult = self.executor.execute(step.input, timeout)
        except ExecutorError as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            self.logger.error(f"Step {index} failed to execute: {e}")
            return ActualStep(
                index=index,
                input=step.input,
                duration_ms=duration_ms,
                status=ExecutionStatus.ERROR,
                error_message=str(e)
            )

        status = ExecutionStatus.TIMED_OUT if result.timed_out else ExecutionStatus.COMPLETED
        error_message = f"Step timed out after {timeout}s" if result.timed_out else None

        if result.exit_status not in (None, 0):
            self.logger.info(f"Step {index} exited with status {result.exit_status}")
        self.logger.debug(f"Step {index} completed in {result.duration_ms:.1f}ms")

        return ActualStep(
            index=index,
            input=step.input,
            actual_output=result.output,
            exit_status=result.exit_status,
            duration_ms=result.duration_ms,
            status=status,
            error_message=error_message
        )

    def _settle(self) -> None:
        """Wait the inter-step delay; returns early on cancellation."""
        if self.inter_step_delay > 0:
            self.cancel_event.wait(self.inter_step_delay)

    def _is_failure(self, step: ActualStep) -> bool:
        return not step.executed or step.exit_status not in (None, 0)

    @staticmethod
    def _mark_remaining(actual: ActualDocument, commands: list, start: int,
                        status: ExecutionStatus, message: str) -> None:
        for index in range(start, len(commands)):
            actual.steps.append(ActualStep(
                index=index,
                input=commands[index].input,
                status=status,
                error_message=message
            ))


ExecutorLike = Union[Executor, Callable[[str], Any]]


def replay(flattened: FlattenedDocument, executor: ExecutorLike,
           inter_step_delay: float = DEFAULT_INTER_STEP_DELAY, **options: Any) -> ActualDocument:
    """
    Replay a flattened document.

    Args:
        flattened: Document without block references
        executor: An Executor, or a function ``command -> output`` /
            ``command -> (output, exit_status)``
        inter_step_delay: Seconds to wait after a step settles
        **options: step_timeout, overall_timeout, fail_fast, cancel_event

    Returns:
        Actual document parallel to the command steps
    """
    if not isinstance(executor, Executor):
        executor = CallableExecutor(executor)
    driver = ReplayDriver(executor, inter_step_delay=inter_step_delay, **options)
    return driver.replay(flattened)
