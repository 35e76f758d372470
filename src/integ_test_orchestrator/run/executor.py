"""
Work done by one component test task once its start delay has elapsed.

resolve artifact -> acquire sandbox -> fetch artifact into the workspace ->
run harness -> outcome. Errors are classified into the task's outcome here
and never leave the task.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from ..artifacts.store import ArtifactStore
from ..errors import (
    ComponentTimeoutError,
    OrchestratorError,
    TaskCancelledError,
    TestExecutionFailure,
)
from ..path_utils import artifact_basename, locate
from ..sandbox.isolation import isolated_environment
from ..sandbox.runtime import SandboxRuntime
from .harness import ComponentTestHarness
from .manifest import ImageSpec
from .results import Outcome


log = logging.getLogger(__name__)


def outcome_for_error(error: BaseException) -> Outcome:
    """TestExecutionFailure is a FAILED test; anything else is an infrastructure ERROR."""
    if isinstance(error, TestExecutionFailure):
        return Outcome.FAILED
    return Outcome.ERRORED


def _is_retryable(error: BaseException) -> bool:
    return not isinstance(error, (ComponentTimeoutError, TaskCancelledError))


class ComponentTestExecutor:
    """
    Callable run by the scheduler for each task: (task, cancel_event) -> (outcome, payload).

    Example:
        executor = ComponentTestExecutor(
            store=LocalArtifactStore('/mnt/artifacts'),
            runtime=DockerRuntime(),
            harness=harness,
            artifact_root=build.artifact_root_for('distribution-build-opensearch', build.build_id),
            image_spec=ImageSpec('opensearchstaging/ci-runner:v2'),
            component_timeout=3600,
        )
    """

    def __init__(
        self,
        store: ArtifactStore,
        runtime: SandboxRuntime,
        harness: ComponentTestHarness,
        artifact_root: str,
        image_spec: Optional[ImageSpec] = None,
        component_timeout: Optional[float] = None,
        max_retries: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.runtime = runtime
        self.harness = harness
        self.artifact_root = str(artifact_root)
        self.image_spec = image_spec
        self.component_timeout = component_timeout
        self.max_retries = max_retries
        self.clock = clock

    def __call__(self, task, cancel_event: threading.Event) -> Tuple[Outcome, Dict[str, Any]]:
        component = task.component
        started = self.clock()
        deadline = started + self.component_timeout if self.component_timeout else None

        remote_path = locate(component, self.artifact_root)
        payload: Dict[str, Any] = {
            'version': component.version,
            'artifact': self.store.describe(remote_path),
            'log_file': str(self.harness.reset_log(component)),
            'started_at': datetime.now().isoformat(timespec='seconds'),
            'attempts': 0,
        }

        outcome = Outcome.ERRORED
        for attempt in range(1, self.max_retries + 2):
            payload['attempts'] = attempt
            try:
                payload['exit_code'] = self._attempt(task, remote_path, deadline, cancel_event)
                payload.pop('reason', None)
                outcome = Outcome.PASSED
                break
            except OrchestratorError as e:
                outcome = outcome_for_error(e)
                payload['reason'] = f"{type(e).__name__}: {e}"
                if isinstance(e, TestExecutionFailure):
                    payload['exit_code'] = e.exit_code
                if isinstance(e, (ComponentTimeoutError, TaskCancelledError)):
                    payload['timed_out'] = True

                if attempt > self.max_retries or not _is_retryable(e):
                    log.warning("%s %s: %s", component.name, outcome.value, e)
                    break
                log.warning("%s attempt %d/%d %s: %s; retrying",
                            component.name, attempt, self.max_retries + 1, outcome.value, e)

        payload['duration'] = round(self.clock() - started, 3)
        return outcome, payload

    def _check(self, deadline: Optional[float], cancel_event: threading.Event, what: str):
        if cancel_event.is_set():
            raise TaskCancelledError(f"Cancelled before {what}: run deadline exceeded")
        if deadline is not None and self.clock() >= deadline:
            raise ComponentTimeoutError(
                f"Component timeout of {self.component_timeout:.0f}s exceeded before {what}"
            )

    def _attempt(self, task, remote_path: str, deadline: Optional[float],
                 cancel_event: threading.Event) -> int:
        component = task.component
        artifact_name = artifact_basename(component)

        self._check(deadline, cancel_event, 'sandbox acquisition')
        with isolated_environment(self.runtime, self.image_spec, task.workspace_path) as handle:
            self._check(deadline, cancel_event, 'artifact download')
            self.store.fetch(remote_path, task.workspace_path / artifact_name)

            self._check(deadline, cancel_event, 'test execution')
            return self.harness.run(
                self.runtime,
                handle,
                component,
                artifact_name,
                deadline=deadline,
                cancel_event=cancel_event,
            )
