"""Tests for the per-component task executor."""

import itertools
import threading
import time

from integ_test_orchestrator.run.executor import ComponentTestExecutor, outcome_for_error
from integ_test_orchestrator.errors import (
    ArtifactFetchError,
    ComponentTimeoutError,
    IsolationEnvironmentError,
    TestExecutionFailure,
)
from integ_test_orchestrator.run.harness import ComponentTestHarness
from integ_test_orchestrator.run.results import Outcome
from integ_test_orchestrator.run.scheduler import ComponentTestTask

from conftest import FakeRuntime, FakeStore, make_component


ROOT = 'distribution-build-opensearch/2.3.1/6039'


def _executor(tmp_path, store=None, runtime=None, **kwargs):
    return ComponentTestExecutor(
        store=store or FakeStore(),
        runtime=runtime or FakeRuntime(),
        harness=ComponentTestHarness('run-tests {component}', logs_dir=tmp_path / 'logs'),
        artifact_root=ROOT,
        **kwargs,
    )


def _task(tmp_path, name, index=0):
    return ComponentTestTask(make_component(name), index, 0.0, tmp_path / 'ws' / f"{index:03d}-{name}")


def test_outcome_for_error():
    assert outcome_for_error(TestExecutionFailure('failed')) is Outcome.FAILED
    assert outcome_for_error(ArtifactFetchError('missing')) is Outcome.ERRORED
    assert outcome_for_error(IsolationEnvironmentError('no docker')) is Outcome.ERRORED
    assert outcome_for_error(ComponentTimeoutError('slow')) is Outcome.ERRORED


def test_passed(tmp_path):
    store = FakeStore()
    runtime = FakeRuntime()
    executor = _executor(tmp_path, store=store, runtime=runtime)
    task = _task(tmp_path, 'alpha')

    outcome, payload = executor(task, threading.Event())

    assert outcome is Outcome.PASSED
    assert payload['exit_code'] == 0
    assert payload['attempts'] == 1
    assert payload['version'] == '2.3.1.0'
    assert payload['log_file'] == str(tmp_path / 'logs' / 'alpha.log')
    assert 'reason' not in payload
    assert store.fetched == [f"{ROOT}/builds/alpha/alpha-2.3.1.0.zip"]
    assert runtime.created == runtime.destroyed == ['fake:000-alpha']
    assert not task.workspace_path.exists()


def test_test_failure(tmp_path):
    runtime = FakeRuntime(exit_codes={'beta': 1})
    outcome, payload = _executor(tmp_path, runtime=runtime)(_task(tmp_path, 'beta'), threading.Event())

    assert outcome is Outcome.FAILED
    assert payload['exit_code'] == 1
    assert 'TestExecutionFailure' in payload['reason']
    assert runtime.destroyed == ['fake:000-beta']


def test_fetch_error_tears_down_once(tmp_path):
    runtime = FakeRuntime()
    executor = _executor(tmp_path, store=FakeStore(fail={'alpha'}), runtime=runtime)

    outcome, payload = executor(_task(tmp_path, 'alpha'), threading.Event())

    assert outcome is Outcome.ERRORED
    assert 'ArtifactFetchError' in payload['reason']
    assert runtime.created == ['fake:000-alpha']
    assert runtime.destroyed == ['fake:000-alpha']
    assert runtime.commands == []


def test_sandbox_error(tmp_path):
    runtime = FakeRuntime(create_fail={'alpha'})
    outcome, payload = _executor(tmp_path, runtime=runtime)(_task(tmp_path, 'alpha'), threading.Event())

    assert outcome is Outcome.ERRORED
    assert 'IsolationEnvironmentError' in payload['reason']
    assert runtime.destroyed == []


def test_retry_until_pass(tmp_path):
    class FlakyRuntime(FakeRuntime):
        def run(self, handle, command, log_file, deadline=None, cancel_event=None):
            self.exit_codes['alpha'] = 0 if self.commands else 1
            return super().run(handle, command, log_file, deadline, cancel_event)

    runtime = FlakyRuntime()
    executor = _executor(tmp_path, runtime=runtime, max_retries=2)

    outcome, payload = executor(_task(tmp_path, 'alpha'), threading.Event())

    assert outcome is Outcome.PASSED
    assert payload['attempts'] == 2
    assert 'reason' not in payload
    assert len(runtime.created) == len(runtime.destroyed) == 2


def test_no_retry_by_default(tmp_path):
    runtime = FakeRuntime(exit_codes={'alpha': 1})
    outcome, payload = _executor(tmp_path, runtime=runtime)(_task(tmp_path, 'alpha'), threading.Event())

    assert outcome is Outcome.FAILED
    assert payload['attempts'] == 1


def test_component_timeout_is_not_retried(tmp_path):
    runtime = FakeRuntime()
    clock = itertools.count(0, 100).__next__
    executor = _executor(tmp_path, runtime=runtime, component_timeout=10, max_retries=3, clock=clock)

    outcome, payload = executor(_task(tmp_path, 'alpha'), threading.Event())

    assert outcome is Outcome.ERRORED
    assert payload['timed_out'] is True
    assert payload['attempts'] == 1
    assert 'ComponentTimeoutError' in payload['reason']
    assert runtime.created == []


def test_cancelled_before_start(tmp_path):
    runtime = FakeRuntime()
    cancel = threading.Event()
    cancel.set()

    outcome, payload = _executor(tmp_path, runtime=runtime)(_task(tmp_path, 'alpha'), cancel)

    assert outcome is Outcome.ERRORED
    assert payload['timed_out'] is True
    assert runtime.created == []


def test_cancelled_while_running_tears_down(tmp_path):
    runtime = FakeRuntime(hang={'alpha'})
    cancel = threading.Event()
    executor = _executor(tmp_path, runtime=runtime)
    result = {}

    def worker():
        result['value'] = executor(_task(tmp_path, 'alpha'), cancel)

    thread = threading.Thread(target=worker)
    thread.start()
    for _ in range(200):
        if runtime.commands:
            break
        time.sleep(0.01)
    cancel.set()
    thread.join(timeout=5)

    outcome, payload = result['value']
    assert outcome is Outcome.ERRORED
    assert 'TaskCancelledError' in payload['reason']
    assert runtime.destroyed == ['fake:000-alpha']


def test_log_from_earlier_run_is_replaced(tmp_path):
    log_file = tmp_path / 'logs' / 'beta.log'
    log_file.parent.mkdir()
    log_file.write_text("ERROR stale failure from yesterday's run\n")
    executor = _executor(tmp_path, runtime=FakeRuntime(exit_codes={'beta': 1}))

    outcome, payload = executor(_task(tmp_path, 'beta'), threading.Event())

    assert outcome is Outcome.FAILED
    text = log_file.read_text()
    assert 'stale failure' not in text
    assert 'BUILD FAILED: beta' in text


def test_retries_share_one_log(tmp_path):
    executor = _executor(tmp_path, runtime=FakeRuntime(exit_codes={'alpha': 1}), max_retries=1)

    outcome, payload = executor(_task(tmp_path, 'alpha'), threading.Event())

    assert payload['attempts'] == 2
    assert (tmp_path / 'logs' / 'alpha.log').read_text().count('$ run-tests alpha') == 2
