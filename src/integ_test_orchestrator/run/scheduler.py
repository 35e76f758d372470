"""
Dispatch scheduler: one isolated test task per component, staggered starts,
fan-out/fan-in barrier.

Every component gets its own task, launched concurrently on a thread pool
sized by the agent's capacity. Task i waits start_delay(i) = i * interval
after the run starts before doing any work, so artifact downloads and
container starts ramp up instead of spiking. A task's failure is recorded
as its own outcome and never stops its siblings. The scheduler returns only
once every task is terminal, or raises RunTimeoutError once the whole-run
deadline has cancelled the rest.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence, Tuple

from ..errors import CollectorClosedError, ManifestError, RunTimeoutError
from ..path_utils import task_workspace_name
from ..utils.timing import format_duration
from .executor import outcome_for_error
from .manifest import ComponentRef
from .results import Outcome, ResultCollector


log = logging.getLogger(__name__)

DEFAULT_STAGGER_INTERVAL = 20.0
DEFAULT_RUN_TIMEOUT = 4 * 3600.0
DEFAULT_CANCEL_GRACE = 60.0

_TRANSITIONS = {
    Outcome.PENDING: (Outcome.RUNNING, Outcome.ERRORED),
    Outcome.RUNNING: (Outcome.PASSED, Outcome.FAILED, Outcome.ERRORED),
}

TaskExecutor = Callable[['ComponentTestTask', threading.Event], Tuple[Outcome, Dict[str, Any]]]


def stagger_delay(index: int, interval: float = DEFAULT_STAGGER_INTERVAL) -> float:
    """Start delay of the task at manifest position `index` (0-based)."""
    if index < 0:
        raise ValueError(f"Task index must be >= 0, got {index}")
    if interval < 0:
        raise ValueError(f"Stagger interval must be >= 0, got {interval}")
    return index * interval


@dataclass(eq=False)
class ComponentTestTask:
    """
    One component's test run in one orchestration run.

    component, index, start_delay and workspace_path are bound when the
    task is created; only the outcome changes afterwards.
    """
    component: ComponentRef
    index: int
    start_delay: float
    workspace_path: Path
    outcome: Outcome = Outcome.PENDING
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def name(self) -> str:
        return self.component.name

    def transition(self, new: Outcome):
        """Move to a new state, enforcing PENDING -> RUNNING -> terminal."""
        with self._lock:
            self._transition(new)

    def start(self) -> bool:
        """PENDING -> RUNNING; False if the task was already forced terminal."""
        with self._lock:
            if self.outcome is not Outcome.PENDING:
                return False
            self._transition(Outcome.RUNNING)
            return True

    def settle(self, new: Outcome) -> bool:
        """Move to a terminal state unless the task already has one; returns whether it moved."""
        with self._lock:
            if self.outcome.is_terminal:
                return False
            self._transition(new)
            return True

    def _transition(self, new: Outcome):
        if new not in _TRANSITIONS.get(self.outcome, ()):
            raise ValueError(f"Task {self.name}: illegal transition {self.outcome.value} -> {new.value}")
        self.outcome = new


class DispatchScheduler:
    """
    Launches all component tasks concurrently and waits for all of them.

    Example:
        scheduler = DispatchScheduler(executor, capacity=4, stagger_interval=20)
        tasks = scheduler.build_tasks(components, Path('runs/workspaces/6039'))
        collector = ResultCollector([t.name for t in tasks])
        scheduler.run(tasks, collector)
    """

    def __init__(
        self,
        executor: TaskExecutor,
        capacity: int = 4,
        stagger_interval: float = DEFAULT_STAGGER_INTERVAL,
        run_timeout: float = DEFAULT_RUN_TIMEOUT,
        cancel_grace: float = DEFAULT_CANCEL_GRACE,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError(f"Capacity must be >= 1, got {capacity}")
        self.executor = executor
        self.capacity = capacity
        self.stagger_interval = stagger_interval
        self.run_timeout = run_timeout
        self.cancel_grace = cancel_grace
        self.clock = clock
        self._cancel = threading.Event()

    # =========================================================================
    # Task construction
    # =========================================================================

    def build_tasks(self, components: Sequence[ComponentRef], workspaces_dir: Path) -> List[ComponentTestTask]:
        """
        Create exactly one task per component, in manifest order.

        Raises:
            ManifestError: If there are no components or names repeat
        """
        if not components:
            raise ManifestError("No components to test")

        names = [c.name for c in components]
        if len(set(names)) != len(names):
            raise ManifestError(f"Duplicate component names: {names}")

        workspaces_dir = Path(workspaces_dir)
        return [
            ComponentTestTask(
                component=component,
                index=idx,
                start_delay=stagger_delay(idx, self.stagger_interval),
                workspace_path=workspaces_dir / task_workspace_name(idx, component),
            )
            for idx, component in enumerate(components)
        ]

    # =========================================================================
    # Dispatch
    # =========================================================================

    def cancel(self):
        """Ask every task to stop at its next cancellation point."""
        self._cancel.set()

    def run(self, tasks: Sequence[ComponentTestTask], collector: ResultCollector) -> ResultCollector:
        """
        Run all tasks and block until each one is terminal.

        Returns:
            The collector, holding exactly one result per task

        Raises:
            ManifestError: If there are no tasks
            RunTimeoutError: If the run deadline passed with tasks still pending
        """
        if not tasks:
            raise ManifestError("No component tasks to dispatch")

        self._cancel = cancel = threading.Event()
        run_start = self.clock()
        workers = min(self.capacity, len(tasks))
        log.info("Dispatching %d component tasks (capacity %d, stagger %s)",
                 len(tasks), workers, format_duration(self.stagger_interval))

        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='component')
        try:
            futures = [pool.submit(self._run_task, task, run_start, collector, cancel) for task in tasks]
            done, not_done = wait(futures, timeout=self.run_timeout)

            if not_done:
                self._abort(tasks, not_done, collector, cancel)

            # Collector invariant violations are defects; surface them
            for future in done:
                future.result()
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        log.info("All %d component tasks finished", len(tasks))
        return collector

    def _abort(self, tasks, not_done, collector: ResultCollector, cancel: threading.Event):
        reason = f"Run timeout of {format_duration(self.run_timeout)} exceeded"
        log.error("%s; cancelling %d unfinished tasks", reason, len(not_done))

        cancel.set()
        for future in not_done:
            future.cancel()

        started = [f for f in not_done if not f.cancelled()]
        if started:
            wait(started, timeout=self.cancel_grace)

        collector.close(reason)
        for task in tasks:
            task.settle(Outcome.ERRORED)

        raise RunTimeoutError(f"{reason} with {len(not_done)} task(s) pending")

    def _run_task(self, task: ComponentTestTask, run_start: float, collector: ResultCollector,
                  cancel: threading.Event):
        remaining = run_start + task.start_delay - self.clock()
        if remaining > 0:
            log.debug("%s waiting %s before start", task.name, format_duration(remaining))
            cancel.wait(remaining)

        if cancel.is_set() or not task.start():
            task.settle(Outcome.ERRORED)
            self._record(collector, task, Outcome.ERRORED, {
                'reason': 'Cancelled before start: run deadline exceeded',
                'timed_out': True,
            })
            return

        log.info("Starting %s (task %d, delay %s)", task.name, task.index, format_duration(task.start_delay))

        try:
            outcome, payload = self.executor(task, cancel)
        except Exception as e:
            log.exception("Component task %s raised", task.name)
            outcome, payload = outcome_for_error(e), {'reason': f"{type(e).__name__}: {e}"}

        # The run deadline may already have forced this task to ERRORED
        task.settle(outcome)
        self._record(collector, task, outcome, payload)

    def _record(self, collector: ResultCollector, task: ComponentTestTask, outcome: Outcome, payload):
        try:
            collector.record(task.name, outcome, payload)
        except CollectorClosedError:
            log.warning("Result for %s (%s) arrived after the run was closed; dropped",
                        task.name, outcome.value)
