"""Tests for the result collector."""

import threading

import pytest

from integ_test_orchestrator.errors import CollectorClosedError, DuplicateResultError
from integ_test_orchestrator.run.results import ComponentResult, Outcome, ResultCollector


def test_outcome_is_terminal():
    assert not Outcome.PENDING.is_terminal
    assert not Outcome.RUNNING.is_terminal
    assert Outcome.PASSED.is_terminal
    assert Outcome.FAILED.is_terminal
    assert Outcome.ERRORED.is_terminal


def test_record_and_results_in_expected_order():
    collector = ResultCollector(['alpha', 'beta', 'gamma'])
    collector.record('gamma', Outcome.PASSED)
    collector.record('alpha', Outcome.FAILED, {'exit_code': 1, 'log_file': 'logs/alpha.log'})

    assert len(collector) == 2
    assert list(collector.results()) == ['alpha', 'gamma']
    assert collector.missing() == ['beta']
    assert collector.get('alpha').payload['exit_code'] == 1
    assert collector.get('beta') is None


def test_record_twice_raises():
    collector = ResultCollector(['alpha'])
    collector.record('alpha', Outcome.PASSED)

    with pytest.raises(DuplicateResultError):
        collector.record('alpha', Outcome.FAILED)
    assert collector.get('alpha').outcome is Outcome.PASSED


def test_record_rejects_non_terminal_and_unknown():
    collector = ResultCollector(['alpha'])
    with pytest.raises(ValueError):
        collector.record('alpha', Outcome.RUNNING)
    with pytest.raises(ValueError):
        collector.record('delta', Outcome.PASSED)


def test_close_forces_missing_to_errored():
    collector = ResultCollector(['alpha', 'beta', 'gamma'])
    collector.record('alpha', Outcome.PASSED)

    forced = collector.close('Run timeout of 4.00h exceeded')

    assert forced == ['beta', 'gamma']
    assert collector.closed
    results = collector.results()
    assert results['alpha'].outcome is Outcome.PASSED
    assert results['beta'].outcome is Outcome.ERRORED
    assert results['beta'].reason == 'Run timeout of 4.00h exceeded'
    assert results['gamma'].payload['timed_out'] is True


def test_record_after_close_raises():
    collector = ResultCollector(['alpha'])
    collector.close('deadline')
    with pytest.raises(CollectorClosedError):
        collector.record('alpha', Outcome.PASSED)


def test_concurrent_records():
    names = [f"component-{i}" for i in range(50)]
    collector = ResultCollector(names)
    barrier = threading.Barrier(len(names))

    def worker(name):
        barrier.wait()
        collector.record(name, Outcome.PASSED)

    threads = [threading.Thread(target=worker, args=(n,)) for n in names]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(collector) == 50
    assert collector.missing() == []


def test_concurrent_duplicates_only_one_wins():
    collector = ResultCollector(['alpha'])
    barrier = threading.Barrier(8)
    errors = []

    def worker():
        barrier.wait()
        try:
            collector.record('alpha', Outcome.PASSED)
        except DuplicateResultError as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(errors) == 7
    assert len(collector) == 1


def test_component_result_to_dict():
    result = ComponentResult('alpha', Outcome.FAILED, {'reason': 'exit 1', 'exit_code': 1})
    assert result.reason == 'exit 1'
    assert result.to_dict() == {'outcome': 'failed', 'reason': 'exit 1', 'exit_code': 1}
